"""Step interpreter: executes one workflow run to completion.

The run is an explicit bounded state machine over `(pc, context, guard)`.
Condition steps may jump to any other step; each Condition step may redirect
control at most `max_loop` times per run, after which it is skipped and control
falls through even if its condition would still hold.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from analytics_workflows.collaborators.protocols import (
    QueryExecutor,
    ScriptExecutor,
    TimeseriesReader,
)
from analytics_workflows.engine.errors import (
    RunCancelledError,
    StepExecutionError,
    WorkflowRuntimeError,
)

from .expressions import parse_timeseries_request
from .models import (
    InterpolationMethod,
    Step,
    StepType,
    TimeseriesPoint,
    WorkflowDefinition,
    format_value,
    split_indexed_variable,
)
from .substitution import bind_query_parameters, substitute_literals
from .validator import parse_branch_target

logger = logging.getLogger(__name__)

_QUERY_PARAMETER_TYPES = (type(None), bool, int, float, str, Decimal, datetime)


@dataclass(slots=True)
class RunOutcome:
    value: str
    guard: dict[int, int] = field(default_factory=dict)
    context: dict[str, object] = field(default_factory=dict)
    steps_executed: int = 0


def assign_result(context: dict[str, object], target: str, value: object) -> None:
    """Store a step result, growing `name[k]` lists with None padding."""

    indexed = split_indexed_variable(target)
    if indexed is None:
        context[target] = value
        return

    name, index = indexed
    existing = context.get(name)
    items = existing if isinstance(existing, list) else []
    context[name] = items
    while len(items) <= index:
        items.append(None)
    items[index] = value


def resolve_final_value(step: Step | None, result: object, context: dict[str, object]) -> str:
    if step is None:
        return ""

    step_type = step.step_type
    target = (step.result_variable or "").strip()

    if step_type is StepType.QUERY:
        if isinstance(result, list) and result:
            first_row = result[0]
            if isinstance(first_row, dict):
                if target and target in first_row:
                    return format_value(first_row[target])
                return format_value(next(iter(first_row.values()), None))
        return ""

    if step_type is StepType.TIMESERIES:
        if isinstance(result, list) and result:
            points = [p for p in result if isinstance(p, TimeseriesPoint)]
            if points:
                return max(points, key=lambda p: p.timestamp).value
        return ""

    if target:
        indexed = split_indexed_variable(target)
        if indexed is not None:
            name, index = indexed
            items = context.get(name)
            if isinstance(items, list) and index < len(items):
                return format_value(items[index])
        elif target in context:
            return format_value(context[target])
    return format_value(result)


class Interpreter:
    def __init__(
        self,
        *,
        queries: QueryExecutor,
        scripts: ScriptExecutor,
        timeseries: TimeseriesReader,
    ) -> None:
        self._queries = queries
        self._scripts = scripts
        self._timeseries = timeseries

    def run(
        self,
        definition: WorkflowDefinition,
        steps: Sequence[Step] | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> RunOutcome:
        program = sorted(steps if steps is not None else definition.steps, key=lambda s: s.order)
        count = len(program)

        context: dict[str, object] = {}
        guard: dict[int, int] = {}
        last_step: Step | None = None
        last_result: object = None
        executed = 0
        pc = 0

        while pc < count:
            if cancel is not None and cancel.is_set():
                raise RunCancelledError(f"Run of {definition.name!r} cancelled before step {pc + 1}")

            step = program[pc]
            is_condition = step.step_type is StepType.CONDITION

            if is_condition:
                visits = guard.setdefault(step.order, 0)
                if visits >= step.max_loop:
                    logger.warning(
                        "Max loop count reached for Condition step; falling through",
                        extra={
                            "definition_id": definition.id,
                            "step_order": step.order,
                            "max_loop": step.max_loop,
                        },
                    )
                    pc += 1
                    continue

            result = self._execute_step(step, context)
            last_step, last_result = step, result
            executed += 1

            if is_condition:
                if not isinstance(result, bool):
                    raise StepExecutionError(
                        f"Condition step {step.order} must return a boolean value.",
                        step_order=step.order,
                        step_type=step.type,
                    )
                target = parse_branch_target(step, count)
                if result and target is not None:
                    guard[step.order] += 1
                    pc = target - 1
                    continue
                pc += 1
                continue

            if step.result_variable and step.result_variable.strip():
                assign_result(context, step.result_variable.strip(), result)
            pc += 1

        value = resolve_final_value(last_step, last_result, context)
        logger.debug(
            "Run finished",
            extra={"definition_id": definition.id, "steps_executed": executed, "guard": guard},
        )
        return RunOutcome(value=value, guard=guard, context=context, steps_executed=executed)

    def _execute_step(self, step: Step, context: dict[str, object]) -> object:
        step_type = step.step_type
        try:
            if step_type is StepType.QUERY:
                sql, params = bind_query_parameters(step.expression, context)
                for param in params:
                    if not isinstance(param, _QUERY_PARAMETER_TYPES):
                        raise StepExecutionError(
                            f"Unsupported parameter type {type(param).__name__} for SQL query.",
                            step_order=step.order,
                            step_type=step.type,
                        )
                return self._queries.execute(sql, params)

            if step_type is StepType.TIMESERIES:
                return self._read_timeseries(step, substitute_literals(step.expression, context))

            if step_type in (StepType.SCRIPT, StepType.VARIABLE, StepType.CONDITION):
                return self._scripts.evaluate(step.expression, context)

            raise StepExecutionError(
                f"Unsupported step type: {step.type}", step_order=step.order, step_type=step.type
            )
        except WorkflowRuntimeError:
            logger.error(
                "Error executing step",
                exc_info=True,
                extra={"step_order": step.order, "step_type": step.type},
            )
            raise
        except Exception as e:
            logger.error(
                "Error executing step",
                exc_info=True,
                extra={"step_order": step.order, "step_type": step.type},
            )
            raise StepExecutionError(
                f"Step {step.order} ({step.type}) failed: {e}",
                step_order=step.order,
                step_type=step.type,
            ) from e

    def _read_timeseries(self, step: Step, expression: str) -> list[TimeseriesPoint]:
        try:
            request = parse_timeseries_request(expression)
        except ValueError as e:
            raise StepExecutionError(str(e), step_order=step.order, step_type=step.type) from e

        if request.method is InterpolationMethod.NONE:
            return self._timeseries.get_range(
                request.table, request.entity_id, request.property_name, request.start, request.end
            )
        return self._timeseries.get_interpolated(
            request.table,
            request.entity_id,
            request.property_name,
            request.start,
            request.end,
            request.interval,
            request.method,
        )
