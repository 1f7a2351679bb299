"""Per-definition minimum run interval shared by every activation source."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta


class RunTracker:
    """Atomic check-and-stamp of the last run time of each definition.

    `try_claim` stamps the claim time immediately, so a second trigger arriving
    while the first run is still in flight is rejected instead of racing it.
    """

    def __init__(self, minimum_interval: timedelta) -> None:
        if minimum_interval < timedelta(0):
            raise ValueError("minimum_interval must not be negative")
        self._minimum_interval = minimum_interval
        self._lock = threading.Lock()
        self._last_runs: dict[str, datetime] = {}

    @property
    def minimum_interval(self) -> timedelta:
        return self._minimum_interval

    def try_claim(self, definition_id: str, now: datetime) -> tuple[bool, datetime | None]:
        """Return `(claimed, previous_stamp)`."""

        with self._lock:
            previous = self._last_runs.get(definition_id)
            if (
                self._minimum_interval > timedelta(0)
                and previous is not None
                and now - previous < self._minimum_interval
            ):
                return False, previous
            self._last_runs[definition_id] = now
            return True, previous

    def complete(self, definition_id: str, now: datetime) -> None:
        with self._lock:
            self._last_runs[definition_id] = now

    def abandon(self, definition_id: str, previous: datetime | None) -> None:
        """Undo a claim after a failed run."""

        with self._lock:
            if previous is None:
                self._last_runs.pop(definition_id, None)
            else:
                self._last_runs[definition_id] = previous

    def last_run(self, definition_id: str) -> datetime | None:
        with self._lock:
            return self._last_runs.get(definition_id)

    def forget(self, definition_id: str) -> None:
        with self._lock:
            self._last_runs.pop(definition_id, None)
