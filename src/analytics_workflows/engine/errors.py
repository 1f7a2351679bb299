"""Error taxonomy for the analytics engine.

Authoring errors are reported as lists and never escape `add_definition`.
Runtime errors come from collaborator calls during a run and are recorded into
the definition status by the service before they propagate.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class AnalyticsError(Exception):
    """Base class for every error raised by this package."""


@dataclass(eq=False)
class DuplicateNameError(AnalyticsError):
    """Raised when a definition with the same name already exists."""

    name: str

    def __str__(self) -> str:
        return f"Analytics definition {self.name!r} already exists"


@dataclass(eq=False)
class ValidationFailedError(AnalyticsError):
    """Raised by `add_definition` when static validation rejects the steps."""

    errors: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"Validation Failed: {'; '.join(self.errors)}"


class InvalidDocumentError(AnalyticsError):
    """The import document is malformed or missing a name."""


@dataclass(eq=False)
class DefinitionNotFoundError(AnalyticsError):
    definition_id: str

    def __str__(self) -> str:
        return f"Analytics definition {self.definition_id} does not exist"


class ConcurrentModificationError(AnalyticsError):
    """The definition was deleted or replaced by another caller mid-run.

    Raised by the definition store only. Callers may retry.
    """


class WorkflowRuntimeError(AnalyticsError):
    """A collaborator call failed while a workflow was running."""


class StepExecutionError(WorkflowRuntimeError):
    def __init__(self, message: str, *, step_order: int | None = None, step_type: str = "") -> None:
        super().__init__(message)
        self.step_order = step_order
        self.step_type = step_type


class RunCancelledError(WorkflowRuntimeError):
    """The cooperative cancellation signal was set between two steps."""
