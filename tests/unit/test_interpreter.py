"""Unit tests for the step interpreter."""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest

from analytics_workflows.collaborators.scripting import ScriptRuntimeError
from analytics_workflows.engine.errors import RunCancelledError, StepExecutionError
from analytics_workflows.engine.workflow.documents import DefinitionConfig, StepConfig, build_steps
from analytics_workflows.engine.workflow.interpreter import Interpreter, assign_result
from analytics_workflows.engine.workflow.models import (
    InterpolationMethod,
    TimeseriesPoint,
    WorkflowDefinition,
)

from conftest import FakeQueryExecutor, FakeTimeseriesReader


def _definition(config: DefinitionConfig) -> WorkflowDefinition:
    return WorkflowDefinition(id="wf-1", name=config.name, steps=build_steps(config))


def _single(kind: str, expression: str, target: str = "result") -> WorkflowDefinition:
    return _definition(
        DefinitionConfig(
            name="single",
            steps=[StepConfig(type=kind, expression=expression, result_variable=target)],
        )
    )


def test_counting_loop_yields_three(interpreter: Interpreter, counting_loop) -> None:
    outcome = interpreter.run(_definition(counting_loop(max_loop=5)))

    assert outcome.value == "3"
    assert outcome.guard == {3: 2}
    assert outcome.context["x"] == 3


def test_max_loop_forces_fallthrough(interpreter: Interpreter, counting_loop) -> None:
    outcome = interpreter.run(_definition(counting_loop(max_loop=1)))

    assert outcome.value == "2"
    assert outcome.guard == {3: 1}


def test_guard_exhaustion_logs_warning(
    interpreter: Interpreter, counting_loop, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level("WARNING"):
        interpreter.run(_definition(counting_loop(max_loop=1)))

    assert any("Max loop count reached" in r.getMessage() for r in caplog.records)


def test_query_average_is_formatted_without_fraction(
    interpreter: Interpreter, queries: FakeQueryExecutor, average_temperature
) -> None:
    outcome = interpreter.run(_definition(average_temperature()))

    assert outcome.value == "25"
    assert queries.calls == [("SELECT AVG(Temperature) AS AvgTemp FROM Sensors", [])]


def test_query_result_prefers_named_column(interpreter: Interpreter, queries: FakeQueryExecutor) -> None:
    queries.rows = [{"total": 7, "avg": 3.5}, {"total": 1, "avg": 1.0}]

    outcome = interpreter.run(_single("Query", "SELECT SUM(Balance) AS total FROM Customers", "avg"))

    assert outcome.value == "3.5"


def test_query_without_rows_yields_empty_string(
    interpreter: Interpreter, queries: FakeQueryExecutor
) -> None:
    queries.rows = []

    assert interpreter.run(_single("Query", "SELECT Name FROM Sensors")).value == ""


def test_query_placeholders_are_bound_as_parameters(
    interpreter: Interpreter, queries: FakeQueryExecutor
) -> None:
    definition = _definition(
        DefinitionConfig(
            name="bound",
            steps=[
                StepConfig(type="Variable", expression="'Lab'", result_variable="room"),
                StepConfig(type="Variable", expression="[10, 20]", result_variable="limits"),
                StepConfig(
                    type="Query",
                    expression=(
                        "SELECT COUNT(Id) AS n FROM Sensors "
                        "WHERE Name = {room} AND Temperature > {limits[1]} AND Name <> {room} {missing}"
                    ),
                    result_variable="n",
                ),
            ],
        )
    )

    interpreter.run(definition)

    sql, params = queries.calls[0]
    assert sql == (
        "SELECT COUNT(Id) AS n FROM Sensors "
        "WHERE Name = :p0 AND Temperature > :p1 AND Name <> :p2 "
    )
    assert params == ["Lab", 20, "Lab"]


def test_unsupported_query_parameter_type_fails(
    interpreter: Interpreter, queries: FakeQueryExecutor
) -> None:
    definition = _definition(
        DefinitionConfig(
            name="bad-param",
            steps=[
                StepConfig(type="Variable", expression="{'a': 1}", result_variable="blob"),
                StepConfig(type="Query", expression="SELECT Name FROM Sensors WHERE Id = {blob}", result_variable="r"),
            ],
        )
    )

    with pytest.raises(StepExecutionError) as excinfo:
        interpreter.run(definition)

    assert excinfo.value.step_order == 2
    assert queries.calls == []


def test_indexed_assignment_pads_with_none(interpreter: Interpreter) -> None:
    definition = _definition(
        DefinitionConfig(
            name="indexed",
            steps=[
                StepConfig(type="Variable", expression="5", result_variable="values[2]"),
                StepConfig(type="Variable", expression="7", result_variable="values[0]"),
                StepConfig(type="Script", expression="values[0] + values[2]", result_variable="values[3]"),
            ],
        )
    )

    outcome = interpreter.run(definition)

    assert outcome.context["values"] == [7, None, 5, 12]
    assert outcome.value == "12"


def test_assign_result_overwrites_scalar_with_list() -> None:
    context: dict[str, object] = {"v": 3}

    assign_result(context, "v[1]", "b")

    assert context["v"] == [None, "b"]


def test_condition_must_return_boolean(interpreter: Interpreter) -> None:
    definition = _definition(
        DefinitionConfig(
            name="non-bool",
            steps=[
                StepConfig(type="Variable", expression="1", result_variable="x"),
                StepConfig(type="Condition", expression="x + 1", result_variable="1"),
                StepConfig(type="Script", expression="x", result_variable="result"),
            ],
        )
    )

    with pytest.raises(StepExecutionError, match="must return a boolean"):
        interpreter.run(definition)


def test_false_condition_falls_through(interpreter: Interpreter) -> None:
    definition = _definition(
        DefinitionConfig(
            name="no-jump",
            steps=[
                StepConfig(type="Variable", expression="10", result_variable="x"),
                StepConfig(type="Condition", expression="x < 3", result_variable="1"),
                StepConfig(type="Script", expression="x * 2", result_variable="result"),
            ],
        )
    )

    outcome = interpreter.run(definition)

    assert outcome.value == "20"
    assert outcome.guard == {2: 0}


def test_last_executed_condition_resolves_to_its_value(interpreter: Interpreter) -> None:
    definition = _definition(
        DefinitionConfig(
            name="ends-on-condition",
            steps=[
                StepConfig(type="Variable", expression="4", result_variable="x"),
                StepConfig(type="Condition", expression="x > 5", result_variable="1"),
            ],
        )
    )

    assert interpreter.run(definition).value == "False"


def test_script_failure_propagates_unwrapped(interpreter: Interpreter) -> None:
    definition = _definition(
        DefinitionConfig(
            name="boom",
            steps=[
                StepConfig(type="Variable", expression="0", result_variable="x"),
                StepConfig(type="Script", expression="1 / x", result_variable="result"),
            ],
        )
    )

    with pytest.raises(ScriptRuntimeError, match="ZeroDivisionError"):
        interpreter.run(definition)


def test_collaborator_error_is_wrapped(interpreter: Interpreter, queries: FakeQueryExecutor) -> None:
    queries.error = ConnectionError("database unavailable")

    with pytest.raises(StepExecutionError) as excinfo:
        interpreter.run(_single("Query", "SELECT Name FROM Sensors"))

    assert excinfo.value.step_order == 1
    assert excinfo.value.step_type == "Query"
    assert "database unavailable" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_timeseries_range_returns_latest_point(
    interpreter: Interpreter, timeseries: FakeTimeseriesReader
) -> None:
    t0 = datetime(2025, 1, 1, tzinfo=UTC)
    timeseries.points = [
        TimeseriesPoint(timestamp=t0 + timedelta(seconds=20), value="21.5"),
        TimeseriesPoint(timestamp=t0, value="19.0"),
    ]
    definition = _definition(
        DefinitionConfig(
            name="ts",
            steps=[
                StepConfig(type="Variable", expression="'s-1'", result_variable="sensor"),
                StepConfig(
                    type="TimeSeries",
                    expression="Sensors,{sensor},Temperature,2025-01-01T00:00:00,2025-01-01T01:00:00",
                    result_variable="series",
                ),
            ],
        )
    )

    outcome = interpreter.run(definition)

    assert outcome.value == "21.5"
    assert timeseries.range_calls == [
        ("Sensors", "s-1", "Temperature", t0, t0 + timedelta(hours=1))
    ]
    assert timeseries.interpolated_calls == []


def test_timeseries_interpolation_request(
    interpreter: Interpreter, timeseries: FakeTimeseriesReader
) -> None:
    definition = _single(
        "TimeSeries",
        "Sensors,7,Temperature,2025-01-01T00:00:00Z,2025-01-01T00:10:00Z,00:01:00,linear",
        "series",
    )

    outcome = interpreter.run(definition)

    assert outcome.value == ""
    (call,) = timeseries.interpolated_calls
    assert call[1] == "7"
    assert call[5] == timedelta(minutes=1)
    assert call[6] is InterpolationMethod.LINEAR


def test_malformed_timeseries_dates_fail_at_runtime(interpreter: Interpreter) -> None:
    with pytest.raises(StepExecutionError, match="Invalid start date"):
        interpreter.run(_single("TimeSeries", "Sensors,7,Temperature,yesterday,today"))


def test_cancellation_is_checked_between_steps(interpreter: Interpreter, counting_loop) -> None:
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(RunCancelledError):
        interpreter.run(_definition(counting_loop()), cancel=cancel)


def test_runs_do_not_share_context(interpreter: Interpreter, counting_loop) -> None:
    definition = _definition(counting_loop())

    first = interpreter.run(definition)
    second = interpreter.run(definition)

    assert first.context is not second.context
    assert first.guard == second.guard == {3: 2}
