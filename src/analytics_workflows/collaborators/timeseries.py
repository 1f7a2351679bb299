"""Time-series reader over a flat `timeseries_points` table.

Each row is one observation of one entity property:
`(table_name, entity_id, property_name, timestamp, value)`. Timestamps are
stored as naive UTC.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from sqlalchemy import (
    Column,
    DateTime,
    Engine,
    Integer,
    MetaData,
    String,
    Table,
    insert,
    select,
)
from sqlalchemy.exc import SQLAlchemyError

from analytics_workflows.engine.errors import WorkflowRuntimeError
from analytics_workflows.engine.workflow.models import InterpolationMethod, TimeseriesPoint

logger = logging.getLogger(__name__)

metadata = MetaData()

timeseries_points_table = Table(
    "timeseries_points",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("table_name", String(128), nullable=False, index=True),
    Column("entity_id", String(128), nullable=False),
    Column("property_name", String(128), nullable=False),
    Column("timestamp", DateTime, nullable=False),
    Column("value", String, nullable=False),
)


class TimeseriesReadError(WorkflowRuntimeError):
    pass


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _to_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _as_float(value: str) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def interpolate(
    points: Sequence[TimeseriesPoint],
    start: datetime,
    end: datetime,
    interval: timedelta,
    method: InterpolationMethod,
) -> list[TimeseriesPoint]:
    """Resample `points` onto the grid start, start+interval, ..., <= end.

    `None` keeps grid instants that have an exact observation, with the raw
    value. Other methods produce values formatted with two decimals; grid
    instants a method cannot fill (no neighbour, non-numeric value) are
    omitted.
    """

    if interval <= timedelta(0):
        raise ValueError("interval must be positive")

    ordered = sorted(points, key=lambda p: p.timestamp)
    result: list[TimeseriesPoint] = []
    if not ordered:
        return result

    current = start
    while current <= end:
        previous = next((p for p in reversed(ordered) if p.timestamp <= current), None)
        following = next((p for p in ordered if p.timestamp >= current), None)

        if method is InterpolationMethod.NONE:
            if previous is not None and previous.timestamp == current:
                result.append(TimeseriesPoint(timestamp=current, value=previous.value))
            current += interval
            continue

        value: float | None = None
        if method is InterpolationMethod.LINEAR:
            if previous is not None and following is not None:
                prev_value = _as_float(previous.value)
                next_value = _as_float(following.value)
                if prev_value is not None and next_value is not None:
                    span = (following.timestamp - previous.timestamp).total_seconds()
                    if span > 0:
                        fraction = (current - previous.timestamp).total_seconds() / span
                        value = prev_value + (next_value - prev_value) * fraction
                    else:
                        value = prev_value
        elif method is InterpolationMethod.NEAREST:
            if previous is not None and following is not None:
                prev_gap = abs((current - previous.timestamp).total_seconds())
                next_gap = abs((following.timestamp - current).total_seconds())
                chosen = previous if prev_gap <= next_gap else following
                value = _as_float(chosen.value)
            elif previous is not None:
                value = _as_float(previous.value)
            elif following is not None:
                value = _as_float(following.value)
        elif method is InterpolationMethod.PREVIOUS:
            if previous is not None:
                value = _as_float(previous.value)
        elif method is InterpolationMethod.NEXT:
            if following is not None:
                value = _as_float(following.value)

        if value is not None:
            result.append(TimeseriesPoint(timestamp=current, value=f"{value:.2f}"))
        current += interval

    return result


class SqlTimeseriesReader:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create_schema(self) -> None:
        metadata.create_all(self._engine, tables=[timeseries_points_table])

    def append(
        self,
        table: str,
        entity_id: str,
        property_name: str,
        timestamp: datetime,
        value: object,
    ) -> None:
        stmt = insert(timeseries_points_table).values(
            table_name=table,
            entity_id=entity_id,
            property_name=property_name,
            timestamp=_to_naive_utc(timestamp),
            value=str(value),
        )
        with self._engine.begin() as conn:
            conn.execute(stmt)

    def get_range(
        self,
        table: str,
        entity_id: str,
        property_name: str,
        start: datetime,
        end: datetime,
    ) -> list[TimeseriesPoint]:
        t = timeseries_points_table
        query = (
            select(t.c.timestamp, t.c.value)
            .where(
                (t.c.table_name == table)
                & (t.c.entity_id == entity_id)
                & (t.c.property_name == property_name)
                & (t.c.timestamp >= _to_naive_utc(start))
                & (t.c.timestamp <= _to_naive_utc(end))
            )
            .order_by(t.c.timestamp, t.c.id)
        )
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(query).all()
        except SQLAlchemyError as e:
            raise TimeseriesReadError(f"Timeseries read failed: {e}") from e

        return [TimeseriesPoint(timestamp=_to_aware_utc(row.timestamp), value=row.value) for row in rows]

    def get_interpolated(
        self,
        table: str,
        entity_id: str,
        property_name: str,
        start: datetime,
        end: datetime,
        interval: timedelta,
        method: InterpolationMethod,
    ) -> list[TimeseriesPoint]:
        points = self.get_range(table, entity_id, property_name, start, end)
        logger.debug(
            "Interpolating timeseries",
            extra={"table": table, "entity_id": entity_id, "points": len(points), "method": method.value},
        )
        return interpolate(points, _to_aware_utc(start), _to_aware_utc(end), interval, method)
