"""SQLAlchemy-backed query executor and schema introspector."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import Engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError

from analytics_workflows.engine.errors import WorkflowRuntimeError

from .protocols import Row

logger = logging.getLogger(__name__)

# Tables owned by the engine itself; never offered to workflow authors.
INTERNAL_TABLES = frozenset({"timeseries_points"})


class QueryExecutionError(WorkflowRuntimeError):
    pass


class SqlQueryExecutor:
    """Runs parameterized read-only statements.

    The statement text uses `:p0, :p1, ...` markers; values are bound by the
    driver and never spliced into the SQL.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def execute(self, sql: str, params: Sequence[object]) -> list[Row]:
        bound = {f"p{idx}": value for idx, value in enumerate(params)}
        try:
            with self._engine.connect() as conn:
                result = conn.execute(text(sql), bound)
                rows = [dict(row) for row in result.mappings()]
        except SQLAlchemyError as e:
            raise QueryExecutionError(f"Query failed: {e}") from e
        logger.debug("Query executed", extra={"row_count": len(rows)})
        return rows


class SqlSchemaIntrospector:
    """Case-insensitive table and column lookup against the live schema."""

    def __init__(self, engine: Engine, *, hidden_tables: frozenset[str] = INTERNAL_TABLES) -> None:
        self._engine = engine
        self._hidden = {t.lower() for t in hidden_tables}

    def _find_table(self, name: str) -> str | None:
        wanted = name.lower()
        if wanted in self._hidden:
            return None
        for table in inspect(self._engine).get_table_names():
            if table.lower() == wanted:
                return table
        return None

    def table_exists(self, name: str) -> bool:
        return self._find_table(name) is not None

    def column_exists(self, table: str, column: str) -> bool:
        actual = self._find_table(table)
        if actual is None:
            return False
        wanted = column.lower()
        return any(col["name"].lower() == wanted for col in inspect(self._engine).get_columns(actual))
