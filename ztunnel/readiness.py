"""Readiness tracking: the process is ready once every registered task is done."""

from __future__ import annotations

import logging
import threading
import time
from http import HTTPStatus

log = logging.getLogger(__name__)

APPLICATION_START_TIME = time.monotonic()


class Ready:
    """Tracks the names of tasks that still block readiness."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: set[str] = set()

    def register_task(self, name: str) -> BlockReady:
        """Add a task that must complete before the process is ready."""
        with self._lock:
            self._pending.add(name)
        return BlockReady(self, name)

    def pending(self) -> set[str]:
        """Return a copy of the names still pending."""
        with self._lock:
            return set(self._pending)

    def _complete(self, name: str) -> None:
        with self._lock:
            if name not in self._pending:
                log.error("task %r completed more than once", name)
                return
            self._pending.discard(name)
            left = len(self._pending)
        elapsed = time.monotonic() - APPLICATION_START_TIME
        if left == 0:
            log.info("Task '%s' complete (%.3fs), marking server ready", name, elapsed)
        else:
            log.info(
                "Task '%s' complete (%.3fs), still awaiting %d tasks",
                name,
                elapsed,
                left,
            )


class BlockReady:
    """Blocks readiness until closed; usable as a context manager."""

    def __init__(self, parent: Ready, name: str) -> None:
        self._parent = parent
        self.name = name
        self._closed = False

    def subtask(self, name: str) -> BlockReady:
        """Register another task on the same readiness tracker."""
        return self._parent.register_task(name)

    def close(self) -> None:
        """Mark this task complete. Closing again has no effect."""
        if self._closed:
            return
        self._closed = True
        self._parent._complete(self.name)

    def __enter__(self) -> BlockReady:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


READY_PATH = "/healthz/ready"


def respond(ready: Ready, method: str, path: str) -> tuple[HTTPStatus, str]:
    """Answer a readiness request with a status and a plain-text body."""
    if path != READY_PATH:
        return HTTPStatus.NOT_FOUND, ""
    if method.upper() != "GET":
        return HTTPStatus.METHOD_NOT_ALLOWED, ""
    pending = ready.pending()
    if not pending:
        return HTTPStatus.OK, "ready\n"
    return (
        HTTPStatus.INTERNAL_SERVER_ERROR,
        f"not ready, pending: {', '.join(sorted(pending))}\n",
    )