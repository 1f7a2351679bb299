"""Static validation of a step sequence.

Validation accumulates every violation instead of stopping at the first one,
so an author editing a workflow sees the complete list in one pass.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from analytics_workflows.collaborators.protocols import SchemaIntrospector, ScriptExecutor

from .expressions import (
    aggregated_columns,
    check_read_only_query,
    check_timeseries_expression,
    referenced_tables,
    split_fields,
)
from .models import SCRIPTED_STEP_TYPES, Step, StepType, split_indexed_variable
from .substitution import placeholder_names

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ValidationReport:
    ok: bool
    errors: list[str] = field(default_factory=list)

    def summary(self) -> str:
        if self.ok:
            return "OK"
        return f"Validation Failed: {'; '.join(self.errors)}"


def parse_branch_target(step: Step, step_count: int) -> int | None:
    """The Condition step's GOTO target when it is usable, else None."""

    try:
        target = int(step.result_variable.strip())
    except (AttributeError, ValueError):
        return None
    if target < 1 or target > step_count or target == step.order:
        return None
    return target


class Validator:
    def __init__(self, *, schema: SchemaIntrospector, scripts: ScriptExecutor) -> None:
        self._schema = schema
        self._scripts = scripts

    def validate(self, steps: Sequence[Step]) -> ValidationReport:
        if not steps:
            return ValidationReport(ok=False, errors=["Definition must have at least one step."])

        errors: list[str] = []
        defined: set[str] = set()
        reachable: set[int] = {1}
        count = len(steps)

        for idx, step in enumerate(steps):
            position = idx + 1
            # A forward scan reaches every step by fallthrough.
            reachable.add(position)
            prefix = step.label

            if step.order != position:
                errors.append(f"{prefix}: Incorrect order {step.order}. Expected {position}.")

            step_type = step.step_type
            if step_type is None:
                errors.append(f"{prefix}: Invalid step type {step.type}.")

            if not step.expression or not step.expression.strip():
                errors.append(f"{prefix}: Expression cannot be null or empty.")
                continue

            if step_type in (StepType.SCRIPT, StepType.CONDITION) and idx > 0:
                for name in placeholder_names(step.expression):
                    if name not in defined:
                        errors.append(
                            f"{prefix}: Unknown variable {name} in expression "
                            f"'{step.expression}'. Ensure it is defined in a previous step."
                        )

            result_variable = (step.result_variable or "").strip()
            if result_variable and step_type is not StepType.CONDITION:
                indexed = split_indexed_variable(result_variable)
                if indexed is not None and idx > 0 and indexed[0] not in defined:
                    errors.append(
                        f"{prefix}: Array {indexed[0]} must be defined before index access."
                    )

            if step_type is StepType.QUERY:
                errors.extend(self._check_query(step))
            elif step_type is StepType.TIMESERIES:
                errors.extend(self._check_timeseries(step))
            elif step_type in SCRIPTED_STEP_TYPES:
                safe, reason = self._scripts.is_safe(step.expression)
                if not safe:
                    errors.append(f"{prefix}: {reason or 'Script is not allowed.'}")

            if step_type is StepType.CONDITION:
                target = parse_branch_target(step, count)
                if target is None:
                    errors.append(
                        f"{prefix}: Invalid GoTo step number {step.result_variable!r}. "
                        f"Must be between 1 and {count}, not the current step."
                    )
                else:
                    reachable.add(target)
                if step.max_loop <= 0:
                    errors.append(f"{prefix}: MaxLoop must be positive.")
            elif position == count and not result_variable:
                errors.append(f"{prefix}: Last {step.type} step must have a ResultVariable.")

            if step_type is not StepType.CONDITION and result_variable:
                indexed = split_indexed_variable(result_variable)
                defined.add(indexed[0] if indexed else result_variable)

        for number in range(1, count + 1):
            if number not in reachable:
                errors.append(f"Step {number}: Unreachable due to loop configuration.")

        if errors:
            logger.debug("Validation failed", extra={"error_count": len(errors)})
        return ValidationReport(ok=not errors, errors=errors)

    def _check_query(self, step: Step) -> list[str]:
        prefix = step.label
        errors: list[str] = []

        reason = check_read_only_query(step.expression)
        if reason is not None:
            errors.append(f"{prefix}: {reason}")

        columns = aggregated_columns(step.expression)
        for table in referenced_tables(step.expression):
            if not self._schema.table_exists(table):
                errors.append(f"{prefix}: Invalid table reference {table}.")
                continue
            for column in columns:
                if not self._schema.column_exists(table, column):
                    errors.append(f"{prefix}: Property {column} does not exist on table {table}.")
        return errors

    def _check_timeseries(self, step: Step) -> list[str]:
        prefix = step.label
        errors: list[str] = []

        reason = check_timeseries_expression(step.expression)
        if reason is not None:
            errors.append(f"{prefix}: {reason}")

        table = split_fields(step.expression)[0]
        if table and "{" not in table and not self._schema.table_exists(table):
            errors.append(f"{prefix}: Invalid table reference {table}.")
        return errors
