#!/usr/bin/env python3
"""Programmatic analytics example.

This demonstrates using the engine components directly:

* load settings from `.env`
* seed a small `Sensors` table in the configured database
* add a definition that averages the sensor temperatures in Fahrenheit and
  run it once

The database URL is passed as an argument (not read from `.env`).
"""

from __future__ import annotations

import argparse
from typing import Sequence

from sqlalchemy import create_engine, text

from analytics_workflows.engine.config import EngineSettings, build_runtime
from analytics_workflows.engine.errors import DuplicateNameError
from analytics_workflows.engine.logging import configure_logging
from analytics_workflows.engine.workflow.documents import DefinitionConfig, StepConfig


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an analytics definition (programmatic example).")
    parser.add_argument(
        "--database-url",
        default="sqlite:///example_analytics.db",
        help="SQLAlchemy URL of the database to seed and query",
    )
    parser.add_argument("--name", default="Average temperature", help="Definition name")
    return parser.parse_args(argv)


def _seed(database_url: str) -> None:
    engine = create_engine(database_url)
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE IF NOT EXISTS Sensors "
                "(Id INTEGER PRIMARY KEY, Name TEXT, Temperature REAL)"
            )
        )
        conn.execute(text("DELETE FROM Sensors"))
        conn.execute(
            text("INSERT INTO Sensors (Id, Name, Temperature) VALUES (1, 'lab', 20.0), (2, 'office', 30.0)")
        )
    engine.dispose()


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    _seed(args.database_url)
    settings = EngineSettings(ANALYTICS_DATABASE_URL=args.database_url)
    configure_logging(settings.log_level)

    runtime = build_runtime(settings)
    service = runtime.service
    config = DefinitionConfig(
        name=args.name,
        steps=[
            StepConfig(
                type="Query",
                expression="SELECT AVG(Temperature) AS AvgTemp FROM Sensors",
                result_variable="avgTemp",
            ),
            StepConfig(
                type="Script",
                expression="round(avgTemp[0]['AvgTemp'] * 9 / 5 + 32, 1)",
                result_variable="fahrenheit",
            ),
        ],
    )

    try:
        try:
            definition_id = service.add_definition(config)
        except DuplicateNameError:
            existing = next(d for d in service.list_definitions() if d.name == args.name)
            definition_id = existing.id

        value = service.execute_once(definition_id)
        print(f"{args.name}: {value}")
        print(f"Persisted to: {settings.definitions_file}")
    finally:
        runtime.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
