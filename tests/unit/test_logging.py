from __future__ import annotations

import json
import logging
import sys

from analytics_workflows.engine.logging import JsonFormatter


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        "analytics_workflows.engine.service", logging.INFO, __file__, 1, "Run %s", ("done",), None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_nests_extra_fields() -> None:
    line = JsonFormatter().format(_record(definition_id="abc", value="25"))

    payload = json.loads(line)
    assert payload["level"] == "INFO"
    assert payload["logger"] == "analytics_workflows.engine.service"
    assert payload["message"] == "Run done"
    assert payload["extra"] == {"definition_id": "abc", "value": "25"}


def test_json_formatter_omits_empty_extra_and_serializes_unknown_types() -> None:
    plain = json.loads(JsonFormatter().format(_record()))
    assert "extra" not in plain

    odd = json.loads(JsonFormatter().format(_record(errors={"a"})))
    assert odd["extra"]["errors"] == "{'a'}"


def test_json_formatter_includes_exception() -> None:
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

    payload = json.loads(JsonFormatter().format(record))

    assert "ValueError: boom" in payload["exception"]
