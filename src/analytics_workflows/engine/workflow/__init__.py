"""Workflow definitions and their validation, triggering and interpretation."""

from analytics_workflows.engine.workflow.interpreter import Interpreter, RunOutcome
from analytics_workflows.engine.workflow.models import Step, StepType, WorkflowDefinition
from analytics_workflows.engine.workflow.validator import ValidationReport, Validator

__all__ = [
    "Interpreter",
    "RunOutcome",
    "Step",
    "StepType",
    "ValidationReport",
    "Validator",
    "WorkflowDefinition",
]
