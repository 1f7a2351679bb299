"""Configuration and wiring for the analytics engine.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import Engine, create_engine

from analytics_workflows.collaborators.events import InMemoryChangeFeed
from analytics_workflows.collaborators.scripting import PythonScriptExecutor
from analytics_workflows.collaborators.sql import SqlQueryExecutor, SqlSchemaIntrospector
from analytics_workflows.collaborators.timeseries import SqlTimeseriesReader
from analytics_workflows.engine.debounce import RunTracker
from analytics_workflows.engine.scheduler import AnalyticsScheduler
from analytics_workflows.engine.service import AnalyticsService
from analytics_workflows.engine.workflow.interpreter import Interpreter
from analytics_workflows.engine.workflow.triggers import TriggerIndex
from analytics_workflows.engine.workflow.validator import Validator
from analytics_workflows.state.store import JsonDefinitionStore


class EngineSettings(BaseSettings):
    """Settings for the analytics engine.

    Environment variables:
    - ANALYTICS_DATABASE_URL
    - ANALYTICS_STATE_PATH
    - ANALYTICS_POLL_SECONDS
    - ANALYTICS_MIN_RUN_INTERVAL_SECONDS
    - ANALYTICS_ENABLE_CALCULATIONS
    - ANALYTICS_ENABLE_CHANGE_TRACKING
    - LOG_LEVEL

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`.
    """

    database_url: str = Field(
        default="sqlite:///analytics.db",
        validation_alias="ANALYTICS_DATABASE_URL",
        description="SQLAlchemy URL of the data store queried by workflows",
    )

    state_path: Path = Field(
        default=Path("analytics_state"),
        validation_alias="ANALYTICS_STATE_PATH",
        description="Directory where definitions and value history are persisted",
    )

    poll_seconds: float = Field(
        default=10.0,
        validation_alias="ANALYTICS_POLL_SECONDS",
        description="Timer tick period (seconds)",
        gt=0,
    )
    minimum_run_interval_seconds: float = Field(
        default=10.0,
        validation_alias="ANALYTICS_MIN_RUN_INTERVAL_SECONDS",
        description="Minimum time between two runs of the same definition",
        ge=0,
    )

    enable_calculations: bool = Field(
        default=True,
        validation_alias="ANALYTICS_ENABLE_CALCULATIONS",
        description="If false, the scheduler never starts; manual runs still work",
    )
    enable_change_tracking: bool = Field(
        default=False,
        validation_alias="ANALYTICS_ENABLE_CHANGE_TRACKING",
        description="Record a value-change entry whenever a run changes a definition's value",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def definitions_file(self) -> Path:
        """Path where analytics definitions are persisted."""

        return self.state_path / "definitions.json"

    @property
    def minimum_run_interval(self) -> timedelta:
        return timedelta(seconds=self.minimum_run_interval_seconds)


@dataclass
class AnalyticsRuntime:
    settings: EngineSettings
    engine: Engine
    store: JsonDefinitionStore
    timeseries: SqlTimeseriesReader
    feed: InMemoryChangeFeed
    service: AnalyticsService
    scheduler: AnalyticsScheduler

    def close(self) -> None:
        self.scheduler.stop()
        self.feed.close()
        self.engine.dispose()


def build_runtime(settings: EngineSettings) -> AnalyticsRuntime:
    engine = create_engine(settings.database_url)
    scripts = PythonScriptExecutor()
    timeseries = SqlTimeseriesReader(engine)
    timeseries.create_schema()

    store = JsonDefinitionStore(
        settings.definitions_file, track_changes=settings.enable_change_tracking
    )
    service = AnalyticsService(
        store=store,
        validator=Validator(schema=SqlSchemaIntrospector(engine), scripts=scripts),
        interpreter=Interpreter(
            queries=SqlQueryExecutor(engine),
            scripts=scripts,
            timeseries=timeseries,
        ),
        triggers=TriggerIndex(),
        tracker=RunTracker(settings.minimum_run_interval),
    )
    feed = InMemoryChangeFeed()
    scheduler = AnalyticsScheduler(
        service=service,
        feed=feed,
        poll_seconds=settings.poll_seconds,
        enabled=settings.enable_calculations,
    )
    return AnalyticsRuntime(
        settings=settings,
        engine=engine,
        store=store,
        timeseries=timeseries,
        feed=feed,
        service=service,
        scheduler=scheduler,
    )
