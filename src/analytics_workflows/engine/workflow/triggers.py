"""Dependency extraction and the per-definition trigger index.

A change-triggered definition depends on (table, property) pairs taken from
its Query and TimeSeries steps. The index is rebuilt whenever a definition's
steps change and is read concurrently by change-event handlers.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from .expressions import aggregated_columns, referenced_tables, split_fields
from .models import DATA_STEP_TYPES, ChangeEvent, ChangeOperation, Step, StepType

logger = logging.getLogger(__name__)

Dependency = tuple[str, str]


def extract_dependencies(expression: str, step_type: StepType) -> list[Dependency]:
    """(table, property) pairs a data step's expression reads.

    Query steps contribute every FROM/JOIN table paired with every aggregated
    column. TimeSeries steps contribute (field 1, field 3).
    """

    result: list[Dependency] = []
    try:
        if step_type is StepType.QUERY:
            columns = aggregated_columns(expression)
            for table in referenced_tables(expression):
                result.extend((table, column) for column in columns)
        elif step_type is StepType.TIMESERIES:
            parts = split_fields(expression)
            if len(parts) >= 3 and parts[0] and parts[2]:
                result.append((parts[0], parts[2]))
    except Exception:
        logger.warning(
            "Failed to extract tables and properties from expression",
            exc_info=True,
            extra={"expression": expression},
        )
    return result


def dependencies_for_steps(steps: Iterable[Step]) -> frozenset[Dependency]:
    pairs: set[Dependency] = set()
    for step in steps:
        step_type = step.step_type
        if step_type in DATA_STEP_TYPES:
            pairs.update(extract_dependencies(step.expression, step_type))
    return frozenset(pairs)


def event_matches(dependencies: Iterable[Dependency], event: ChangeEvent) -> bool:
    table = event.table.lower()
    if event.operation is ChangeOperation.UPDATE:
        changed = {p.lower() for p in event.changed_properties}
        return any(
            dep_table.lower() == table and prop.lower() in changed
            for dep_table, prop in dependencies
        )
    return any(dep_table.lower() == table for dep_table, _ in dependencies)


class TriggerIndex:
    """Thread-safe map of definition id to its dependency set.

    Entries are immutable frozensets swapped in whole, so a reader sees either
    the old or the new set and never a partially rebuilt one.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, frozenset[Dependency]] = {}

    def rebuild(self, definition_id: str, steps: Iterable[Step]) -> frozenset[Dependency]:
        dependencies = dependencies_for_steps(steps)
        with self._lock:
            self._entries[definition_id] = dependencies
        logger.debug(
            "Trigger index rebuilt",
            extra={"definition_id": definition_id, "dependencies": sorted(dependencies)},
        )
        return dependencies

    def remove(self, definition_id: str) -> None:
        with self._lock:
            self._entries.pop(definition_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get(self, definition_id: str) -> frozenset[Dependency]:
        with self._lock:
            return self._entries.get(definition_id, frozenset())

    def matches(self, definition_id: str, event: ChangeEvent) -> bool:
        return event_matches(self.get(definition_id), event)
