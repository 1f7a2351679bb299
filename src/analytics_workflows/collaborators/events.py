"""In-process change feed.

Publishers push `ChangeEvent`s; every subscribed handler is invoked on a
worker pool so that handlers for different events run concurrently. Handler
exceptions are logged and never reach the publisher.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from analytics_workflows.engine.workflow.models import ChangeEvent

from .protocols import ChangeHandler

logger = logging.getLogger(__name__)


class _FeedSubscription:
    def __init__(self, feed: InMemoryChangeFeed, handler: ChangeHandler) -> None:
        self._feed = feed
        self._handler = handler

    def close(self) -> None:
        self._feed._unsubscribe(self._handler)


class InMemoryChangeFeed:
    def __init__(self, *, max_workers: int = 4) -> None:
        self._lock = threading.Lock()
        self._handlers: list[ChangeHandler] = []
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="change-feed")
        self._closed = False

    def subscribe(self, handler: ChangeHandler) -> _FeedSubscription:
        with self._lock:
            self._handlers.append(handler)
        return _FeedSubscription(self, handler)

    def _unsubscribe(self, handler: ChangeHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def publish(self, event: ChangeEvent) -> list[Future[None]]:
        with self._lock:
            if self._closed:
                raise RuntimeError("Change feed is closed")
            handlers = list(self._handlers)
            futures = [self._pool.submit(self._deliver, handler, event) for handler in handlers]

        logger.debug(
            "Change event published",
            extra={
                "table": event.table,
                "entity_id": event.entity_id,
                "operation": event.operation.value,
                "handlers": len(handlers),
            },
        )
        return futures

    def _deliver(self, handler: ChangeHandler, event: ChangeEvent) -> None:
        try:
            handler(event)
        except Exception:
            logger.exception(
                "Change handler failed",
                extra={"table": event.table, "entity_id": event.entity_id},
            )

    def close(self) -> None:
        with self._lock:
            self._closed = True
        self._pool.shutdown(wait=True)
