"""JSON-file persistence for analytics definitions and their value history.

The whole document is rewritten on every mutation under one lock, so readers
always see a complete file and result writes are atomic per definition.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from analytics_workflows.engine.errors import (
    ConcurrentModificationError,
    DefinitionNotFoundError,
    DuplicateNameError,
)
from analytics_workflows.engine.workflow.models import WorkflowDefinition, utc_now

logger = logging.getLogger(__name__)


class ValueChangeRecord(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    definition_id: str
    property_name: str = "Value"
    original_value: str
    new_value: str
    changed_by: str = "System"
    changed_at: datetime = Field(default_factory=utc_now)


class _StoreDocument(BaseModel):
    definitions: list[WorkflowDefinition] = Field(default_factory=list)
    value_changes: list[ValueChangeRecord] = Field(default_factory=list)


@dataclass
class JsonDefinitionStore:
    path: Path
    track_changes: bool = False

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> _StoreDocument:
        if not self.path.exists():
            return _StoreDocument()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Definition store is not valid JSON", extra={"path": str(self.path)})
            return _StoreDocument()
        if not isinstance(raw, dict):
            return _StoreDocument()
        return _StoreDocument.model_validate(raw)

    def _save_unlocked(self, document: _StoreDocument) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = document.model_dump(mode="json")
        self.path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    @staticmethod
    def _index_of(document: _StoreDocument, definition_id: str) -> int | None:
        for idx, definition in enumerate(document.definitions):
            if definition.id == definition_id:
                return idx
        return None

    def list(self) -> list[WorkflowDefinition]:
        with self._lock:
            return self._load_unlocked().definitions

    def get(self, definition_id: str) -> WorkflowDefinition:
        with self._lock:
            document = self._load_unlocked()
            idx = self._index_of(document, definition_id)
            if idx is None:
                raise DefinitionNotFoundError(definition_id)
            return document.definitions[idx]

    def find_by_name(self, name: str) -> WorkflowDefinition | None:
        with self._lock:
            for definition in self._load_unlocked().definitions:
                if definition.name == name:
                    return definition
            return None

    def add(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        with self._lock:
            document = self._load_unlocked()
            if any(d.name == definition.name for d in document.definitions):
                raise DuplicateNameError(definition.name)
            document.definitions.append(definition)
            self._save_unlocked(document)
            return definition

    def replace(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        with self._lock:
            document = self._load_unlocked()
            idx = self._index_of(document, definition.id)
            if idx is None:
                raise DefinitionNotFoundError(definition.id)
            if any(d.name == definition.name and d.id != definition.id for d in document.definitions):
                raise DuplicateNameError(definition.name)
            stored = definition.model_copy(
                update={"revision": document.definitions[idx].revision + 1}
            )
            document.definitions[idx] = stored
            self._save_unlocked(document)
            return stored

    def delete(self, definition_id: str) -> None:
        with self._lock:
            document = self._load_unlocked()
            idx = self._index_of(document, definition_id)
            if idx is None:
                raise DefinitionNotFoundError(definition_id)
            del document.definitions[idx]
            document.value_changes = [
                c for c in document.value_changes if c.definition_id != definition_id
            ]
            self._save_unlocked(document)

    @staticmethod
    def _running_index(
        document: _StoreDocument, definition_id: str, revision: int | None
    ) -> int:
        idx = JsonDefinitionStore._index_of(document, definition_id)
        if idx is None:
            raise ConcurrentModificationError(
                f"Analytics definition {definition_id} was removed while it was running"
            )
        current = document.definitions[idx].revision
        if revision is not None and current != revision:
            raise ConcurrentModificationError(
                f"Analytics definition {definition_id} was changed while it was running "
                f"(revision {revision}, now {current})"
            )
        return idx

    def record_success(
        self,
        definition_id: str,
        *,
        value: str,
        last_run: datetime,
        revision: int | None = None,
    ) -> WorkflowDefinition:
        """Store a run result: value, last run time and an OK status.

        When `revision` is given, the stored definition must still be at that
        revision.
        """

        with self._lock:
            document = self._load_unlocked()
            idx = self._running_index(document, definition_id, revision)
            current = document.definitions[idx]
            updated = current.model_copy(update={"value": value, "last_run": last_run, "status": "OK"})
            document.definitions[idx] = updated

            if self.track_changes and current.value != value:
                document.value_changes.append(
                    ValueChangeRecord(
                        definition_id=definition_id,
                        original_value=current.value,
                        new_value=value,
                        changed_at=last_run,
                    )
                )
            self._save_unlocked(document)
            return updated

    def record_status(
        self, definition_id: str, status: str, *, revision: int | None = None
    ) -> WorkflowDefinition:
        with self._lock:
            document = self._load_unlocked()
            idx = self._running_index(document, definition_id, revision)
            updated = document.definitions[idx].model_copy(update={"status": status})
            document.definitions[idx] = updated
            self._save_unlocked(document)
            return updated

    def list_value_changes(self, definition_id: str) -> list[ValueChangeRecord]:
        with self._lock:
            return [
                c for c in self._load_unlocked().value_changes if c.definition_id == definition_id
            ]
