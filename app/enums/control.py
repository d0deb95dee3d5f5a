from enum import Enum


class EventKind(str, Enum):
    """Storage kind of an event row (``data_type`` column)."""

    NUMBER = "number"
    JSON = "json"


class RecordOutcome(str, Enum):
    """Result of an RLE ``record`` call."""

    INSERTED = "inserted"
    EXTENDED = "extended"


class GroupOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class ConditionType(str, Enum):
    TIME = "time"
    DATE = "date"
    SENSOR = "sensor"
    OUTPUT = "output"


class BindingKind(str, Enum):
    """How a logical output value is presented to the physical device."""

    LEVEL = "level"  # passed through unchanged
    SWITCH = "switch"  # clamped to 0/1


class OutputValueType(str, Enum):
    BOOLEAN = "boolean"
    NUMBER = "number"


class ChangelogUser(str, Enum):
    SYSTEM = "system"
