"""
Task scheduler for the server's periodic work.

One loop thread watches a heap of due times and hands due jobs to a bounded
worker pool:

- rule engine tick (``rules.tick``)
- output state sync (``outputs.sync``) plus a one-shot sync after startup
- gateway liveness ping (``gateway.ping``)

Interval jobs are fixed-rate: the next run is computed from the *scheduled*
time, not from completion. A job that is still executing when it comes due
again is skipped for that slot rather than stacked. The loop waits on an
event, so :meth:`TaskScheduler.stop` takes effect immediately and no job is
started after it returns.
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from app.utils.time import to_iso, utc_now

logger = logging.getLogger(__name__)


class ScheduleType(Enum):
    INTERVAL = "interval"
    ONCE = "once"


@dataclass
class ScheduledJob:
    """A registered job and its execution statistics."""

    job_id: str
    func: Callable[..., Any]
    schedule_type: ScheduleType
    interval_seconds: float | None = None
    args: tuple = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)

    # monotonic due time of the next run
    next_due: float | None = None
    running: bool = False
    last_run: datetime | None = None
    run_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "schedule_type": self.schedule_type.value,
            "interval_seconds": self.interval_seconds,
            "last_run": to_iso(self.last_run) if self.last_run else None,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "last_error": self.last_error,
        }


class TaskScheduler:
    """Owned (non-singleton) scheduler; build one per service container."""

    def __init__(self, *, check_interval_seconds: float = 0.5, max_workers: int = 2) -> None:
        self._check_interval = float(check_interval_seconds)
        self._max_workers = int(max_workers)

        self._jobs: dict[str, ScheduledJob] = {}
        # Entries: (due_ts, seq, job_id); stale entries are skipped on pop
        self._job_heap: list[tuple[float, int, str]] = []
        self._heap_seq = 0
        self._job_lock = threading.RLock()
        self._wakeup = threading.Event()

        self._running = False
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None

    # ==================== Job Scheduling ====================

    def schedule_interval(
        self,
        job_id: str,
        func: Callable[..., Any],
        interval_seconds: float,
        *,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        start_immediately: bool = False,
    ) -> ScheduledJob:
        """Run *func* every *interval_seconds*; replaces an existing job with the same id."""
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        job = ScheduledJob(
            job_id=job_id,
            func=func,
            schedule_type=ScheduleType.INTERVAL,
            interval_seconds=float(interval_seconds),
            args=args,
            kwargs=kwargs or {},
        )
        first = time.monotonic() + (0 if start_immediately else float(interval_seconds))
        self._add_job(job, first)
        logger.info("Scheduled interval job: %s (every %ss)", job_id, interval_seconds)
        return job

    def schedule_once(
        self,
        job_id: str,
        func: Callable[..., Any],
        delay_seconds: float,
        *,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
    ) -> ScheduledJob:
        """Run *func* once after *delay_seconds*."""
        job = ScheduledJob(
            job_id=job_id,
            func=func,
            schedule_type=ScheduleType.ONCE,
            args=args,
            kwargs=kwargs or {},
        )
        self._add_job(job, time.monotonic() + max(0.0, float(delay_seconds)))
        logger.info("Scheduled one-time job: %s (in %ss)", job_id, delay_seconds)
        return job

    def _add_job(self, job: ScheduledJob, due: float) -> None:
        with self._job_lock:
            self._jobs[job.job_id] = job
            job.next_due = due
            self._push_heap(job)
        self._wakeup.set()

    def _push_heap(self, job: ScheduledJob) -> None:
        if job.next_due is None:
            return
        self._heap_seq += 1
        heapq.heappush(self._job_heap, (job.next_due, self._heap_seq, job.job_id))

    def remove_job(self, job_id: str) -> bool:
        with self._job_lock:
            job = self._jobs.pop(job_id, None)
            if job is None:
                return False
            job.next_due = None
        logger.info("Removed job: %s", job_id)
        return True

    def get_job(self, job_id: str) -> ScheduledJob | None:
        with self._job_lock:
            return self._jobs.get(job_id)

    def get_jobs(self) -> list[ScheduledJob]:
        with self._job_lock:
            return list(self._jobs.values())

    # ==================== Scheduler Control ====================

    def start(self) -> None:
        if self._running:
            logger.warning("Scheduler already running")
            return
        self._stopping.clear()
        self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="SchedulerJob")
        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="TaskScheduler")
        self._thread.start()
        logger.info("TaskScheduler started")

    def stop(self, wait: bool = True, timeout: float = 5.0) -> None:
        if not self._running:
            return
        self._running = False
        self._stopping.set()
        self._wakeup.set()

        if wait and self._thread:
            self._thread.join(timeout=timeout)
        self._thread = None

        if self._executor:
            self._executor.shutdown(wait=wait, cancel_futures=True)
            self._executor = None
        logger.info("TaskScheduler stopped")

    def is_running(self) -> bool:
        return self._running

    def _run_loop(self) -> None:
        logger.debug("Scheduler loop started")
        while not self._stopping.is_set():
            try:
                self._process_due_jobs()
            except Exception as e:
                logger.error("Error in scheduler loop: %s", e, exc_info=True)
            self._wakeup.wait(self._next_wait())
            self._wakeup.clear()
        logger.debug("Scheduler loop ended")

    def _next_wait(self) -> float:
        with self._job_lock:
            if not self._job_heap:
                return self._check_interval
            return min(self._check_interval, max(0.0, self._job_heap[0][0] - time.monotonic()))

    # ==================== Core Scheduling Logic ====================

    def _process_due_jobs(self) -> None:
        now = time.monotonic()
        with self._job_lock:
            while self._job_heap:
                due, _seq, job_id = self._job_heap[0]
                if due > now:
                    break
                heapq.heappop(self._job_heap)

                job = self._jobs.get(job_id)
                if job is None or job.next_due is None or abs(job.next_due - due) > 1e-9:
                    continue  # removed or rescheduled -> stale entry

                if job.schedule_type == ScheduleType.INTERVAL:
                    job.next_due = due + job.interval_seconds
                    # Catch up without bursting after a long stall
                    if job.next_due <= now:
                        job.next_due = now + job.interval_seconds
                    self._push_heap(job)
                else:
                    job.next_due = None
                    self._jobs.pop(job_id, None)

                if job.running:
                    job.skipped_count += 1
                    logger.debug("Job %s still running; skipping this slot", job_id)
                    continue
                if self._stopping.is_set() or self._executor is None:
                    return
                job.running = True
                try:
                    self._executor.submit(self._execute_job, job)
                except RuntimeError as e:
                    job.running = False
                    logger.error("Failed to submit job %s: %s", job_id, e)

    def _execute_job(self, job: ScheduledJob) -> None:
        if self._stopping.is_set():
            job.running = False
            return
        started_at = utc_now()
        try:
            job.func(*job.args, **job.kwargs)
            with self._job_lock:
                job.last_error = None
        except Exception as e:
            with self._job_lock:
                job.failure_count += 1
                job.last_error = str(e)
            logger.error("Job %s failed: %s", job.job_id, e, exc_info=True)
        finally:
            with self._job_lock:
                job.running = False
                job.last_run = started_at
                job.run_count += 1
