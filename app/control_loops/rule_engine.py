"""
Rule Engine
===========

One *run* evaluates every enabled rule in position order and writes a
complete desired-output map:

1. every configured output channel starts at 0 (default-off);
2. each matching rule sets ``desired[action.channel]``, later rules
   overriding earlier ones, so position order is priority order;
3. the set of active rule ids and the annotated condition trees replace the
   previous run's results in one step;
4. every desired value goes through the output dispatcher.

A rule that cannot be parsed or evaluated is logged and skipped; the run
continues. Runs never overlap: :meth:`RuleEngine.trigger` hands work to a
single worker thread and coalesces requests that arrive while a run is
already queued.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from app.control_loops.conditions import ConditionEvaluator, local_now
from app.control_loops.output_dispatcher import OutputDispatcher
from app.domain.exceptions import RuleEvaluationError
from app.domain.rules import Action, Calculated, rule_from_row
from app.enums.control import ChangelogUser
from app.services.event_store import EventStore
from infrastructure.database.repositories.outputs import OutputConfigRepository
from infrastructure.database.repositories.rules import RuleRepository

if TYPE_CHECKING:
    from app.services.protocols import ChangelogWriter

logger = logging.getLogger(__name__)


class RuleEngine:
    def __init__(
        self,
        rules: RuleRepository,
        outputs: OutputConfigRepository,
        store: EventStore,
        dispatcher: OutputDispatcher,
        *,
        changelog: "ChangelogWriter | None" = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self._rules = rules
        self._outputs = outputs
        self._store = store
        self._dispatcher = dispatcher
        self._changelog = changelog
        self._clock = clock
        self._evaluator = ConditionEvaluator(store, clock=clock)

        self._run_lock = threading.Lock()
        self._lock = threading.Lock()
        self._active_rule_ids: frozenset[int] = frozenset()
        self._rule_statuses: dict[int, dict[str, Any]] = {}
        self._rule_names: dict[int, str] = {}
        self._last_run_at: datetime | None = None

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="RuleEngine")
        self._queued = False
        self._closed = False

    # ----------------------------------------------------------- accessors
    @property
    def active_rule_ids(self) -> frozenset[int]:
        with self._lock:
            return self._active_rule_ids

    @property
    def rule_statuses(self) -> dict[int, dict[str, Any]]:
        with self._lock:
            return dict(self._rule_statuses)

    @property
    def last_run_at(self) -> datetime | None:
        with self._lock:
            return self._last_run_at

    # ------------------------------------------------------------- running
    def trigger(self) -> bool:
        """Request a run soon; returns False once the engine is shut down."""
        with self._lock:
            if self._closed:
                return False
            if self._queued:
                return True
            self._queued = True
        try:
            self._executor.submit(self._run_queued)
        except RuntimeError:
            # executor shut down between the check and the submit
            with self._lock:
                self._queued = False
            return False
        return True

    def _run_queued(self) -> None:
        with self._lock:
            self._queued = False
        try:
            self.run()
        except Exception:
            logger.exception("Rule run failed")

    def wait_idle(self, timeout: float | None = None) -> None:
        """Block until every run requested so far has finished."""
        self._executor.submit(lambda: None).result(timeout=timeout)

    def run(self) -> dict[str, float]:
        """Run all rules once and return the desired output map."""
        with self._run_lock:
            return self._run_once()

    def _run_once(self) -> dict[str, float]:
        desired: dict[str, float] = {ch.channel: 0 for ch in self._outputs.channels()}
        active: set[int] = set()
        statuses: dict[int, dict[str, Any]] = {}
        names: dict[int, str] = {}

        for row in self._rules.enabled():
            try:
                rule = rule_from_row(row)
                names[rule.id] = rule.name
                matched, annotated = self._evaluator.evaluate(rule.conditions)
                statuses[rule.id] = annotated
                if matched:
                    active.add(rule.id)
                    if rule.action is not None:
                        desired[rule.action.channel] = self._resolve(rule.action)
            except RuleEvaluationError as exc:
                logger.error("Error evaluating rule %s: %s", row.get("id"), exc)
            except Exception:
                logger.exception("Unexpected error evaluating rule %s", row.get("id"))

        self._publish(frozenset(active), statuses, names)

        for channel, value in desired.items():
            try:
                self._dispatcher.write_output_value(channel, value)
            except Exception:
                logger.exception("Failed to write output %s", channel)
        return desired

    def _resolve(self, action: Action) -> float:
        if isinstance(action.value, Calculated):
            calc = action.value
            value_a = self._store.latest_sensor(calc.sensor_a)
            value_b = self._store.latest_sensor(calc.sensor_b) if calc.sensor_b else None
            return calc.resolve(value_a, value_b)
        return action.value

    def _publish(self, active: frozenset[int], statuses: dict[int, dict[str, Any]], names: dict[int, str]) -> None:
        with self._lock:
            previous = self._active_rule_ids
            previous_names = self._rule_names
            self._active_rule_ids = active
            self._rule_statuses = statuses
            self._rule_names = names
            self._last_run_at = self._clock()

        if self._changelog is None:
            return
        for rule_id in sorted(active - previous):
            self._changelog.insert(ChangelogUser.SYSTEM.value, f'Rule "{names.get(rule_id, rule_id)}" activated')
        for rule_id in sorted(previous - active):
            name = names.get(rule_id) or previous_names.get(rule_id, rule_id)
            self._changelog.insert(ChangelogUser.SYSTEM.value, f'Rule "{name}" deactivated')

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True, cancel_futures=True)
