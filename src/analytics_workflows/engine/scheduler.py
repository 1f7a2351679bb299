"""Timer and change-event activation of analytics definitions.

Both activation sources call `AnalyticsService.execute_once`, which applies
the shared debounce and records every outcome. A failing definition is logged
here and never stops the timer loop or the handling of other definitions.
"""

from __future__ import annotations

import logging
import threading

from analytics_workflows.collaborators.protocols import ChangeFeed, Subscription
from analytics_workflows.engine.errors import AnalyticsError
from analytics_workflows.engine.service import AnalyticsService
from analytics_workflows.engine.workflow.models import ChangeEvent, WorkflowDefinition, utc_now

logger = logging.getLogger(__name__)


class AnalyticsScheduler:
    def __init__(
        self,
        *,
        service: AnalyticsService,
        feed: ChangeFeed,
        poll_seconds: float = 10.0,
        enabled: bool = True,
    ) -> None:
        if poll_seconds <= 0:
            raise ValueError("poll_seconds must be positive")
        self._service = service
        self._feed = feed
        self._poll_seconds = poll_seconds
        self._enabled = enabled

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._subscription: Subscription | None = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if not self._enabled:
            logger.info("Calculations disabled; scheduler not started")
            return

        with self._lock:
            if self._thread is not None:
                return
            self._stop.clear()
            self._service.rebuild_trigger_index()
            self._subscription = self._feed.subscribe(self.handle_change)
            self._thread = threading.Thread(
                target=self._run_timer,
                name="analytics-timer",
                daemon=True,
            )
            self._thread.start()
        logger.info("Scheduler started", extra={"poll_seconds": self._poll_seconds})

    def stop(self, timeout: float | None = None) -> None:
        """Stop starting new ticks; a tick already running finishes first."""

        with self._lock:
            thread, self._thread = self._thread, None
            subscription, self._subscription = self._subscription, None
            self._stop.set()

        if subscription is not None:
            subscription.close()
        if thread is not None:
            thread.join(timeout)
        logger.info("Scheduler stopped")

    def _run_timer(self) -> None:
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Timer tick failed")
            self._stop.wait(self._poll_seconds)

    def tick(self) -> int:
        """Run every due timer definition once; return how many were attempted."""

        due = self._service.due_definitions(utc_now())
        for definition in due:
            if self._stop.is_set():
                break
            self._execute(definition, trigger="timer")
        return len(due)

    def handle_change(self, event: ChangeEvent) -> int:
        """Run change-triggered definitions whose dependencies match `event`."""

        matched = self._service.definitions_triggered_by(event)
        for definition in matched:
            self._execute(definition, trigger="change", event=event)
        return len(matched)

    def _execute(
        self,
        definition: WorkflowDefinition,
        *,
        trigger: str,
        event: ChangeEvent | None = None,
    ) -> None:
        extra: dict[str, object] = {
            "definition_id": definition.id,
            "definition_name": definition.name,
            "trigger": trigger,
        }
        if event is not None:
            extra.update({"table": event.table, "operation": event.operation.value})

        try:
            self._service.execute_once(definition.id)
        except AnalyticsError as e:
            # Status was recorded by the service.
            logger.warning("Scheduled analytics run failed", extra={**extra, "error": str(e)})
        except Exception:
            logger.exception("Scheduled analytics run failed", extra=extra)
        else:
            logger.debug("Scheduled analytics run finished", extra=extra)
