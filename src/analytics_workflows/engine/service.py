"""Analytics service: the operations exposed to callers.

The service owns the authoring lifecycle (add, update, verify, delete,
export, import) and `execute_once`, the single entry point every activation
source funnels into. It records run outcomes into the definition store and
keeps the trigger index and debounce state in step with the stored
definitions.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from datetime import datetime

from analytics_workflows.engine.debounce import RunTracker
from analytics_workflows.engine.errors import (
    ConcurrentModificationError,
    DuplicateNameError,
    ValidationFailedError,
)
from analytics_workflows.engine.workflow.documents import (
    DefinitionConfig,
    build_steps,
    export_document,
    parse_document,
)
from analytics_workflows.engine.workflow.interpreter import Interpreter
from analytics_workflows.engine.workflow.models import ChangeEvent, WorkflowDefinition, utc_now
from analytics_workflows.engine.workflow.triggers import TriggerIndex
from analytics_workflows.engine.workflow.validator import ValidationReport, Validator
from analytics_workflows.state.store import JsonDefinitionStore, ValueChangeRecord

logger = logging.getLogger(__name__)

RUNTIME_ERROR_PREFIX = "Runtime Error: "


class AnalyticsService:
    def __init__(
        self,
        *,
        store: JsonDefinitionStore,
        validator: Validator,
        interpreter: Interpreter,
        triggers: TriggerIndex,
        tracker: RunTracker,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._validator = validator
        self._interpreter = interpreter
        self._triggers = triggers
        self._tracker = tracker
        self._clock = clock

    @property
    def triggers(self) -> TriggerIndex:
        return self._triggers

    # Authoring

    def add_definition(self, config: DefinitionConfig) -> str:
        """Validate and persist a new definition; return its id.

        Raises:
            DuplicateNameError: a definition with this name exists. Checked
                before validation; nothing is persisted.
            ValidationFailedError: the steps were rejected; nothing is
                persisted.
        """

        if self._store.find_by_name(config.name) is not None:
            raise DuplicateNameError(config.name)

        steps = build_steps(config)
        report = self._validator.validate(steps)
        if not report.ok:
            logger.info(
                "Analytics definition rejected",
                extra={"definition_name": config.name, "errors": report.errors},
            )
            raise ValidationFailedError(report.errors)

        definition = WorkflowDefinition(
            id=uuid.uuid4().hex,
            name=config.name,
            interval_seconds=config.interval_seconds,
            embeddable=config.embeddable,
            value="0",
            status="OK",
            steps=steps,
        )
        self._store.add(definition)
        self._sync_triggers(definition)

        logger.info(
            "Analytics definition added",
            extra={"definition_id": definition.id, "definition_name": definition.name},
        )
        return definition.id

    def update_definition(self, definition_id: str, config: DefinitionConfig) -> WorkflowDefinition:
        """Replace a definition's configuration.

        The definition is persisted even when validation fails; the failure is
        recorded in its status instead.
        """

        current = self._store.get(definition_id)
        other = self._store.find_by_name(config.name)
        if other is not None and other.id != definition_id:
            raise DuplicateNameError(config.name)

        steps = build_steps(config)
        report = self._validator.validate(steps)
        updated = current.model_copy(
            update={
                "name": config.name,
                "interval_seconds": config.interval_seconds,
                "embeddable": config.embeddable,
                "steps": steps,
                "status": report.summary(),
            }
        )
        updated = self._store.replace(updated)
        self._sync_triggers(updated)

        logger.info(
            "Analytics definition updated",
            extra={"definition_id": definition_id, "status": updated.status},
        )
        return updated

    def verify_definition(self, definition_id: str) -> ValidationReport:
        definition = self._store.get(definition_id)
        report = self._validator.validate(definition.steps)
        # A passing check leaves the status of a failed run in place.
        if report.ok and definition.status.startswith(RUNTIME_ERROR_PREFIX):
            return report
        if definition.status != report.summary():
            self._store.record_status(
                definition_id, report.summary(), revision=definition.revision
            )
        return report

    def delete_definition(self, definition_id: str) -> None:
        self._store.delete(definition_id)
        self._triggers.remove(definition_id)
        self._tracker.forget(definition_id)
        logger.info("Analytics definition deleted", extra={"definition_id": definition_id})

    def export_definition(self, definition_id: str) -> str:
        return export_document(self._store.get(definition_id))

    def import_definition(self, document: str) -> str:
        """Add the definition described by an exported document under a new id."""

        config = parse_document(document)
        return self.add_definition(config.model_copy(update={"id": None}))

    # Queries

    def get_definition(self, definition_id: str) -> WorkflowDefinition:
        return self._store.get(definition_id)

    def list_definitions(self) -> list[WorkflowDefinition]:
        return self._store.list()

    def list_value_changes(self, definition_id: str) -> list[ValueChangeRecord]:
        self._store.get(definition_id)
        return self._store.list_value_changes(definition_id)

    def due_definitions(self, now: datetime) -> list[WorkflowDefinition]:
        return [d for d in self._store.list() if d.is_due(now)]

    def definitions_triggered_by(self, event: ChangeEvent) -> list[WorkflowDefinition]:
        return [
            d
            for d in self._store.list()
            if d.is_change_triggered and self._triggers.matches(d.id, event)
        ]

    # Triggers

    def rebuild_trigger_index(self) -> int:
        self._triggers.clear()
        count = 0
        for definition in self._store.list():
            if definition.is_change_triggered:
                self._triggers.rebuild(definition.id, definition.steps)
                count += 1
        logger.info("Trigger index rebuilt", extra={"definitions": count})
        return count

    def _sync_triggers(self, definition: WorkflowDefinition) -> None:
        if definition.is_change_triggered:
            self._triggers.rebuild(definition.id, definition.steps)
        else:
            self._triggers.remove(definition.id)

    # Execution

    def execute_once(self, definition_id: str, *, cancel: threading.Event | None = None) -> str:
        """Run a definition now, unless it ran within the minimum run interval.

        Returns the new value, or the stored value when the run was skipped.
        A failure is recorded as a `Runtime Error: ...` status and re-raised;
        the stored value and last run time are left untouched. A definition
        deleted or updated while it ran raises `ConcurrentModificationError`
        and its stored state is not overwritten.
        """

        definition = self._store.get(definition_id)
        claimed, previous = self._tracker.try_claim(definition_id, self._clock())
        if not claimed:
            logger.debug(
                "Skipping analytics run; minimum run interval not met",
                extra={"definition_id": definition_id, "definition_name": definition.name},
            )
            return definition.value

        try:
            outcome = self._interpreter.run(definition, cancel=cancel)
        except Exception as e:
            self._tracker.abandon(definition_id, previous)
            self._record_failure(definition, e)
            raise

        finished = self._clock()
        try:
            self._store.record_success(
                definition_id,
                value=outcome.value,
                last_run=finished,
                revision=definition.revision,
            )
        except ConcurrentModificationError:
            self._tracker.forget(definition_id)
            raise
        self._tracker.complete(definition_id, finished)

        logger.info(
            "Analytics run completed",
            extra={
                "definition_id": definition_id,
                "definition_name": definition.name,
                "value": outcome.value,
            },
        )
        return outcome.value

    def _record_failure(self, definition: WorkflowDefinition, error: Exception) -> None:
        logger.error(
            "Error executing analytics",
            exc_info=error,
            extra={"definition_id": definition.id, "definition_name": definition.name},
        )
        try:
            self._store.record_status(
                definition.id, f"{RUNTIME_ERROR_PREFIX}{error}", revision=definition.revision
            )
        except ConcurrentModificationError:
            logger.warning(
                "Analytics definition changed before its failure could be recorded",
                extra={"definition_id": definition.id},
            )
