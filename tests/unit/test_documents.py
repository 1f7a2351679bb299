from __future__ import annotations

import json

import pytest

from analytics_workflows.engine.errors import InvalidDocumentError
from analytics_workflows.engine.workflow.documents import (
    DefinitionConfig,
    StepConfig,
    build_steps,
    export_document,
    parse_document,
)
from analytics_workflows.engine.workflow.models import Step, WorkflowDefinition


def test_build_steps_numbers_in_document_order() -> None:
    config = DefinitionConfig(
        name="n",
        steps=[
            StepConfig(type="Variable", expression="1", result_variable="a", max_loop=99),
            StepConfig(type="condition", expression="a < 2", result_variable="1", max_loop=3),
        ],
    )

    steps = build_steps(config)

    assert [s.order for s in steps] == [1, 2]
    assert steps[0].max_loop == 10
    assert steps[1].max_loop == 3


def test_export_orders_steps_and_uses_document_field_names() -> None:
    definition = WorkflowDefinition(
        id="abc",
        name="Export me",
        interval_seconds=-1,
        value="12",
        steps=[
            Step(order=2, type="Script", expression="x * 2", result_variable="y"),
            Step(order=1, type="Variable", expression="6", result_variable="x"),
        ],
    )

    document = json.loads(export_document(definition))

    assert document["id"] == "abc"
    assert document["name"] == "Export me"
    assert document["interval_seconds"] == -1
    assert [s["expression"] for s in document["steps"]] == ["6", "x * 2"]
    assert "value" not in document


def test_parse_document_accepts_exported_text() -> None:
    text = json.dumps(
        {
            "name": "Imported",
            "interval_seconds": 30,
            "steps": [{"type": "Variable", "expression": "1", "result_variable": "x"}],
        }
    )

    config = parse_document(text)

    assert config.name == "Imported"
    assert config.id is None
    assert config.steps[0].max_loop == 10


@pytest.mark.parametrize(
    "text",
    [
        "{not json",
        "[1, 2]",
        json.dumps({"steps": []}),
        json.dumps({"name": "   ", "steps": []}),
        json.dumps({"name": "x", "steps": [{"expression": "1"}]}),
    ],
)
def test_parse_document_rejects_malformed_input(text: str) -> None:
    with pytest.raises(InvalidDocumentError):
        parse_document(text)
