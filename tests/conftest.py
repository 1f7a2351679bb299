"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine, text

from analytics_workflows.collaborators.scripting import PythonScriptExecutor
from analytics_workflows.engine.debounce import RunTracker
from analytics_workflows.engine.service import AnalyticsService
from analytics_workflows.engine.workflow.documents import DefinitionConfig, StepConfig
from analytics_workflows.engine.workflow.interpreter import Interpreter
from analytics_workflows.engine.workflow.models import InterpolationMethod, TimeseriesPoint
from analytics_workflows.engine.workflow.triggers import TriggerIndex
from analytics_workflows.engine.workflow.validator import Validator
from analytics_workflows.state.store import JsonDefinitionStore


class FakeSchema:
    def __init__(self, tables: Mapping[str, Sequence[str]]) -> None:
        self._tables = {t.lower(): {c.lower() for c in cols} for t, cols in tables.items()}

    def table_exists(self, name: str) -> bool:
        return name.lower() in self._tables

    def column_exists(self, table: str, column: str) -> bool:
        return column.lower() in self._tables.get(table.lower(), set())


class FakeQueryExecutor:
    def __init__(self, rows: list[dict[str, object]] | None = None) -> None:
        self.rows = rows or []
        self.calls: list[tuple[str, list[object]]] = []
        self.error: Exception | None = None

    def execute(self, sql: str, params: Sequence[object]) -> list[dict[str, object]]:
        self.calls.append((sql, list(params)))
        if self.error is not None:
            raise self.error
        return [dict(r) for r in self.rows]


class FakeTimeseriesReader:
    def __init__(self, points: list[TimeseriesPoint] | None = None) -> None:
        self.points = points or []
        self.range_calls: list[tuple[object, ...]] = []
        self.interpolated_calls: list[tuple[object, ...]] = []

    def get_range(
        self, table: str, entity_id: str, property_name: str, start: datetime, end: datetime
    ) -> list[TimeseriesPoint]:
        self.range_calls.append((table, entity_id, property_name, start, end))
        return list(self.points)

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
        self.interpolated_calls.append((table, entity_id, property_name, start, end, interval, method))
        return list(self.points)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def schema() -> FakeSchema:
    return FakeSchema(
        {
            "Sensors": ["Id", "Name", "Temperature", "Humidity"],
            "Customers": ["Id", "Name", "Balance"],
        }
    )


@pytest.fixture
def scripts() -> PythonScriptExecutor:
    return PythonScriptExecutor()


@pytest.fixture
def validator(schema: FakeSchema, scripts: PythonScriptExecutor) -> Validator:
    return Validator(schema=schema, scripts=scripts)


@pytest.fixture
def queries() -> FakeQueryExecutor:
    return FakeQueryExecutor([{"AvgTemp": 25.0}])


@pytest.fixture
def timeseries() -> FakeTimeseriesReader:
    return FakeTimeseriesReader()


@pytest.fixture
def interpreter(
    queries: FakeQueryExecutor, scripts: PythonScriptExecutor, timeseries: FakeTimeseriesReader
) -> Interpreter:
    return Interpreter(queries=queries, scripts=scripts, timeseries=timeseries)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path) -> JsonDefinitionStore:
    return JsonDefinitionStore(tmp_path / "analytics_state" / "definitions.json")


@pytest.fixture
def make_service(
    store: JsonDefinitionStore,
    validator: Validator,
    interpreter: Interpreter,
    clock: FakeClock,
) -> Callable[..., AnalyticsService]:
    def _make(minimum_interval_seconds: float = 10.0) -> AnalyticsService:
        return AnalyticsService(
            store=store,
            validator=validator,
            interpreter=interpreter,
            triggers=TriggerIndex(),
            tracker=RunTracker(timedelta(seconds=minimum_interval_seconds)),
            clock=clock,
        )

    return _make


@pytest.fixture
def service(make_service: Callable[..., AnalyticsService]) -> AnalyticsService:
    return make_service()


def _counting_loop(name: str = "Counter", *, max_loop: int = 5, interval_seconds: int = 0) -> DefinitionConfig:
    """x = 0; x = x + 1 while x < 3 (jump back to step 2); result = x."""

    return DefinitionConfig(
        name=name,
        interval_seconds=interval_seconds,
        steps=[
            StepConfig(type="Variable", expression="0", result_variable="x"),
            StepConfig(type="Script", expression="x + 1", result_variable="x"),
            StepConfig(type="Condition", expression="x < 3", result_variable="2", max_loop=max_loop),
            StepConfig(type="Script", expression="return x", result_variable="result"),
        ],
    )


def _average_temperature(name: str = "Average temperature", *, interval_seconds: int = 0) -> DefinitionConfig:
    return DefinitionConfig(
        name=name,
        interval_seconds=interval_seconds,
        steps=[
            StepConfig(
                type="Query",
                expression="SELECT AVG(Temperature) AS AvgTemp FROM Sensors",
                result_variable="avgTemp",
            )
        ],
    )


@pytest.fixture
def counting_loop() -> Callable[..., DefinitionConfig]:
    return _counting_loop


@pytest.fixture
def average_temperature() -> Callable[..., DefinitionConfig]:
    return _average_temperature


@pytest.fixture
def analytics_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point every setting at `tmp_path` and seed a small Sensors table."""

    monkeypatch.chdir(tmp_path)
    for name in (
        "ANALYTICS_POLL_SECONDS",
        "ANALYTICS_MIN_RUN_INTERVAL_SECONDS",
        "ANALYTICS_ENABLE_CHANGE_TRACKING",
        "ANALYTICS_CORS_ORIGINS",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    db_path = tmp_path / "analytics.db"
    monkeypatch.setenv("ANALYTICS_DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("ANALYTICS_STATE_PATH", str(tmp_path / "analytics_state"))
    monkeypatch.setenv("ANALYTICS_ENABLE_CALCULATIONS", "false")

    engine = create_engine(f"sqlite:///{db_path}")
    with engine.begin() as conn:
        conn.execute(
            text("CREATE TABLE Sensors (Id INTEGER PRIMARY KEY, Name TEXT, Temperature REAL)")
        )
        conn.execute(
            text("INSERT INTO Sensors (Id, Name, Temperature) VALUES (1, 'a', 20.0), (2, 'b', 30.0)")
        )
    engine.dispose()
    return tmp_path
