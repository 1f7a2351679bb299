"""Portable document form of a definition (export / import / add)."""

from __future__ import annotations

import json

from pydantic import BaseModel, Field, ValidationError

from analytics_workflows.engine.errors import InvalidDocumentError

from .models import DEFAULT_MAX_LOOP, Step, StepType, WorkflowDefinition


class StepConfig(BaseModel):
    type: str
    expression: str = ""
    result_variable: str = ""
    max_loop: int = DEFAULT_MAX_LOOP


class DefinitionConfig(BaseModel):
    id: str | None = None
    name: str
    interval_seconds: int = 0
    embeddable: bool = False
    steps: list[StepConfig] = Field(default_factory=list)


def build_steps(config: DefinitionConfig) -> list[Step]:
    """Number steps 1..N in document order.

    Only Condition steps keep a configured loop limit; every other kind gets
    the default.
    """

    steps: list[Step] = []
    for idx, step in enumerate(config.steps):
        is_condition = StepType.parse(step.type) is StepType.CONDITION
        steps.append(
            Step(
                order=idx + 1,
                type=step.type,
                expression=step.expression,
                result_variable=step.result_variable,
                max_loop=step.max_loop if is_condition else DEFAULT_MAX_LOOP,
            )
        )
    return steps


def to_config(definition: WorkflowDefinition) -> DefinitionConfig:
    return DefinitionConfig(
        id=definition.id,
        name=definition.name,
        interval_seconds=definition.interval_seconds,
        embeddable=definition.embeddable,
        steps=[
            StepConfig(
                type=s.type,
                expression=s.expression,
                result_variable=s.result_variable,
                max_loop=s.max_loop,
            )
            for s in sorted(definition.steps, key=lambda s: s.order)
        ],
    )


def export_document(definition: WorkflowDefinition) -> str:
    return to_config(definition).model_dump_json(indent=2)


def parse_document(text: str) -> DefinitionConfig:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidDocumentError(f"Invalid JSON format for analytics import: {e}") from e

    if not isinstance(raw, dict):
        raise InvalidDocumentError("Invalid JSON format for analytics import: expected an object")

    try:
        config = DefinitionConfig.model_validate(raw)
    except ValidationError as e:
        raise InvalidDocumentError(f"Invalid analytics document: {e}") from e

    if not config.name.strip():
        raise InvalidDocumentError("Invalid analytics document: name is required")
    return config
