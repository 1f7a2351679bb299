"""Pydantic models for the REST server."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from analytics_workflows.engine.workflow.models import ChangeOperation


class ApiStep(BaseModel):
    order: int
    type: str
    expression: str
    result_variable: str
    max_loop: int


class ApiDefinition(BaseModel):
    id: str
    name: str
    interval_seconds: int
    embeddable: bool
    value: str
    status: str
    last_run: datetime | None = None
    steps: list[ApiStep] = Field(default_factory=list)


class CreatedResponse(BaseModel):
    id: str


class RunResponse(BaseModel):
    id: str
    value: str


class VerifyResponse(BaseModel):
    ok: bool
    status: str
    errors: list[str] = Field(default_factory=list)


class ImportRequest(BaseModel):
    document: str


class ExportResponse(BaseModel):
    document: str


class ValueChange(BaseModel):
    original_value: str
    new_value: str
    changed_by: str
    changed_at: datetime


class ChangeEventRequest(BaseModel):
    table: str = Field(min_length=1)
    entity_id: str = ""
    operation: ChangeOperation
    changed_properties: list[str] = Field(default_factory=list)


class ChangeEventAccepted(BaseModel):
    handlers: int
