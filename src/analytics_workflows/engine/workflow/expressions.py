"""Light pattern extraction over Query and TimeSeries expressions.

This is not a SQL parser. It recognizes just enough structure to keep queries
read-only, to check table/column references and to build trigger indices.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from .models import InterpolationMethod

SQL_KEYWORDS: frozenset[str] = frozenset(
    {
        "SELECT", "INSERT", "UPDATE", "DELETE", "CREATE", "DROP", "ALTER",
        "WHERE", "GROUP", "ORDER", "HAVING", "SET", "WITH", "FROM", "JOIN",
        "INNER", "OUTER", "LEFT", "RIGHT", "FULL", "ON", "AS", "UNION",
        "INTERSECT", "EXCEPT", "INTO", "VALUES",
    }
)  # fmt: skip

_FORBIDDEN_SQL = re.compile(
    r"\b(INSERT|UPDATE|DELETE|CREATE|DROP|ALTER|SET|WITH)\b", re.IGNORECASE
)
_EXEC_SQL = re.compile(r"\bEXEC(?:UTE)?\b", re.IGNORECASE)
_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_TABLE_REF = re.compile(r"\b(?:FROM|JOIN)\s+[\"`\[]?([A-Za-z_][A-Za-z0-9_]*)", re.IGNORECASE)
_AGGREGATE_COLUMN = re.compile(r"\b(?:AVG|SUM|COUNT|MIN|MAX)\s*\(\s*(\w+)\s*\)", re.IGNORECASE)
_DURATION = re.compile(r"^(?:(\d+)\.)?(\d{1,2}):(\d{1,2})(?::(\d{1,2})(?:\.(\d{1,7}))?)?$")

TIMESERIES_FORMAT = "tableName,entityId,propertyName,start,end[,interval,method]"
DEFAULT_TIMESERIES_INTERVAL = timedelta(seconds=1)


def normalize_sql(sql: str) -> str:
    without_comments = _BLOCK_COMMENT.sub(" ", _LINE_COMMENT.sub(" ", sql))
    return " ".join(without_comments.split())


def check_read_only_query(sql: str) -> str | None:
    """Return an error message, or None when `sql` is a single SELECT."""

    if _FORBIDDEN_SQL.search(sql):
        return "Only SELECT queries are allowed."
    normalized = normalize_sql(sql)
    if not normalized.upper().startswith("SELECT"):
        return "Only SELECT queries are allowed."
    if ";" in sql or _EXEC_SQL.search(sql):
        return "Multi-statement queries or stored procedures are not allowed."
    return None


def _distinct(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        key = value.lower()
        if key not in seen:
            seen.add(key)
            out.append(value)
    return out


def referenced_tables(sql: str) -> list[str]:
    matches = [m.group(1) for m in _TABLE_REF.finditer(normalize_sql(sql))]
    return _distinct([t for t in matches if t.upper() not in SQL_KEYWORDS])


def aggregated_columns(sql: str) -> list[str]:
    return _distinct([m.group(1) for m in _AGGREGATE_COLUMN.finditer(sql)])


def parse_duration(text: str) -> timedelta | None:
    """Parse `[d.]hh:mm[:ss[.fffffff]]` or a plain number of seconds."""

    value = text.strip()
    if not value:
        return None
    match = _DURATION.match(value)
    if match is not None:
        days, hours, minutes, seconds, fraction = match.groups()
        if int(hours) > 23 or int(minutes) > 59 or (seconds and int(seconds) > 59):
            return None
        return timedelta(
            days=int(days or 0),
            hours=int(hours),
            minutes=int(minutes),
            seconds=int(seconds or 0),
            microseconds=int((fraction or "0").ljust(6, "0")[:6]),
        )
    try:
        seconds_only = float(value)
    except ValueError:
        return None
    if seconds_only < 0:
        return None
    return timedelta(seconds=seconds_only)


def parse_timestamp(text: str) -> datetime:
    parsed = datetime.fromisoformat(text.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def split_fields(expression: str) -> list[str]:
    return [part.strip() for part in expression.split(",")]


def check_timeseries_expression(expression: str) -> str | None:
    parts = split_fields(expression)
    if len(parts) < 5 or len(parts) > 7:
        return f"Timeseries expression must have 5 to 7 components: {TIMESERIES_FORMAT}"
    if len(parts) > 5 and parse_duration(parts[5]) is None:
        return "Invalid interval format in timeseries expression."
    if len(parts) > 6 and InterpolationMethod.parse(parts[6]) is None:
        return "Invalid interpolation method in timeseries expression."
    return None


@dataclass(frozen=True, slots=True)
class TimeseriesRequest:
    table: str
    entity_id: str
    property_name: str
    start: datetime
    end: datetime
    interval: timedelta = DEFAULT_TIMESERIES_INTERVAL
    method: InterpolationMethod = InterpolationMethod.NONE


def parse_timeseries_request(expression: str) -> TimeseriesRequest:
    """Parse a fully substituted TimeSeries expression.

    Raises:
        ValueError: with a human-readable reason.
    """

    parts = split_fields(expression)
    if len(parts) < 5 or len(parts) > 7:
        raise ValueError(f"Timeseries expression must have 5 to 7 components: {TIMESERIES_FORMAT}")

    try:
        start = parse_timestamp(parts[3])
    except ValueError:
        raise ValueError(f"Invalid start date format: {parts[3]!r}") from None
    try:
        end = parse_timestamp(parts[4])
    except ValueError:
        raise ValueError(f"Invalid end date format: {parts[4]!r}") from None

    interval = DEFAULT_TIMESERIES_INTERVAL
    if len(parts) > 5:
        parsed_interval = parse_duration(parts[5])
        if parsed_interval is None or parsed_interval <= timedelta(0):
            raise ValueError(f"Invalid interval format: {parts[5]!r}")
        interval = parsed_interval

    method = InterpolationMethod.NONE
    if len(parts) > 6:
        parsed_method = InterpolationMethod.parse(parts[6])
        if parsed_method is None:
            raise ValueError(f"Invalid interpolation method: {parts[6]}")
        method = parsed_method

    return TimeseriesRequest(
        table=parts[0],
        entity_id=parts[1],
        property_name=parts[2],
        start=start,
        end=end,
        interval=interval,
        method=method,
    )
