"""Interfaces of the collaborators the engine is given at construction time.

The engine never talks to a database, a script runtime or an event bus
directly; it only sees these protocols.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import Protocol

from analytics_workflows.engine.workflow.models import (
    ChangeEvent,
    InterpolationMethod,
    TimeseriesPoint,
)

Row = dict[str, object]
ChangeHandler = Callable[[ChangeEvent], None]


class QueryExecutor(Protocol):
    """Read-only, parameterized SQL execution.

    `sql` carries `:p0, :p1, ...` markers bound from `params` in order.
    """

    def execute(self, sql: str, params: Sequence[object]) -> list[Row]: ...


class ScriptExecutor(Protocol):
    def evaluate(self, code: str, context: Mapping[str, object]) -> object: ...

    def is_safe(self, code: str) -> tuple[bool, str | None]: ...


class TimeseriesReader(Protocol):
    def get_range(
        self,
        table: str,
        entity_id: str,
        property_name: str,
        start: datetime,
        end: datetime,
    ) -> list[TimeseriesPoint]: ...

    def get_interpolated(
        self,
        table: str,
        entity_id: str,
        property_name: str,
        start: datetime,
        end: datetime,
        interval: timedelta,
        method: InterpolationMethod,
    ) -> list[TimeseriesPoint]: ...


class SchemaIntrospector(Protocol):
    def table_exists(self, name: str) -> bool: ...

    def column_exists(self, table: str, column: str) -> bool: ...


class Subscription(Protocol):
    def close(self) -> None: ...


class ChangeFeed(Protocol):
    """At-least-once delivery of row changes; no ordering across tables."""

    def subscribe(self, handler: ChangeHandler) -> Subscription: ...
