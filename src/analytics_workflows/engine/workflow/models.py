from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

DEFAULT_MAX_LOOP = 10

INDEXED_VARIABLE_PATTERN = re.compile(r"^(\w+)\[(\d+)\]$")
PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_]\w*(?:\[\d+\])?)\}")


class StepType(str, Enum):
    QUERY = "Query"
    SCRIPT = "Script"
    CONDITION = "Condition"
    VARIABLE = "Variable"
    TIMESERIES = "TimeSeries"

    @staticmethod
    def parse(text: str | None) -> StepType | None:
        """Case-insensitive lookup that also accepts legacy kind names."""

        if not text:
            return None
        key = text.strip().lower()
        return _STEP_TYPE_ALIASES.get(key)


_STEP_TYPE_ALIASES: dict[str, StepType] = {
    **{t.value.lower(): t for t in StepType},
    "sqlquery": StepType.QUERY,
    "csharp": StepType.SCRIPT,
}

SCRIPTED_STEP_TYPES = frozenset({StepType.SCRIPT, StepType.VARIABLE, StepType.CONDITION})
DATA_STEP_TYPES = frozenset({StepType.QUERY, StepType.TIMESERIES})


class InterpolationMethod(str, Enum):
    NONE = "None"
    LINEAR = "Linear"
    NEAREST = "Nearest"
    PREVIOUS = "Previous"
    NEXT = "Next"

    @staticmethod
    def parse(text: str | None) -> InterpolationMethod | None:
        if text is None:
            return None
        key = text.strip().lower()
        for method in InterpolationMethod:
            if method.value.lower() == key:
                return method
        return None


class ChangeOperation(str, Enum):
    INSERT = "Insert"
    UPDATE = "Update"
    DELETE = "Delete"


class Step(BaseModel):
    """One instruction of a workflow.

    For Condition steps `result_variable` holds the branch target step number.
    """

    order: int
    type: str
    expression: str = ""
    result_variable: str = ""
    max_loop: int = DEFAULT_MAX_LOOP

    @property
    def step_type(self) -> StepType | None:
        return StepType.parse(self.type)

    @property
    def label(self) -> str:
        return f"Step {self.order} ({self.type})"


class WorkflowDefinition(BaseModel):
    """Persisted analytics definition together with its ordered steps."""

    id: str
    name: str
    interval_seconds: int = 0
    embeddable: bool = False
    value: str = "0"
    status: str = "OK"
    last_run: datetime | None = None
    steps: list[Step] = Field(default_factory=list)
    # Bumped by the store on every replace; run results are checked against it.
    revision: int = 0

    @property
    def is_timer(self) -> bool:
        return self.interval_seconds > 0

    @property
    def is_change_triggered(self) -> bool:
        return self.interval_seconds < 0

    @property
    def is_manual(self) -> bool:
        return self.interval_seconds == 0

    def is_due(self, now: datetime) -> bool:
        if not self.is_timer:
            return False
        if self.last_run is None:
            return True
        last_run = self.last_run if self.last_run.tzinfo else self.last_run.replace(tzinfo=UTC)
        return (now - last_run).total_seconds() >= self.interval_seconds


@dataclass(frozen=True, slots=True)
class TimeseriesPoint:
    timestamp: datetime
    value: str


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """A row-level change reported by the change feed."""

    table: str
    entity_id: str
    operation: ChangeOperation
    changed_properties: frozenset[str] = frozenset()
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def format_value(value: object) -> str:
    """Textual form of a computed value.

    Integral floats drop the trailing ".0" so that AVG(20, 30) reads "25".
    """

    if value is None:
        return ""
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return str(value.quantize(Decimal(1)))
        return str(value.normalize())
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def split_indexed_variable(name: str) -> tuple[str, int] | None:
    match = INDEXED_VARIABLE_PATTERN.match(name)
    if match is None:
        return None
    return match.group(1), int(match.group(2))
