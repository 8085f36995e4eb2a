"""Per-user in-flight request registry with cooperative cancellation."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from errors import RequestInFlightError

LOGGER = logging.getLogger(__name__)


class InFlightRegistry:
    """Reject overlapping runs of the same action for the same user.

    Keys are ``(user_id, action)``. Each claimed key owns a
    ``threading.Event`` that the running pipeline polls between stages;
    ``cancel`` sets it. Only guards a single process.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: dict[tuple[str, str], threading.Event] = {}

    @contextmanager
    def claim(self, user_id: str, action: str) -> Iterator[threading.Event]:
        key = (user_id, action)
        with self._lock:
            if key in self._active:
                raise RequestInFlightError(f"A {action} request is already running for this user")
            cancel_event = threading.Event()
            self._active[key] = cancel_event
        LOGGER.debug("Claimed in-flight key user_id=%s action=%s", user_id, action)
        try:
            yield cancel_event
        finally:
            with self._lock:
                self._active.pop(key, None)

    def cancel(self, user_id: str, action: str) -> bool:
        """Signal the running request, returning False when nothing is running."""
        with self._lock:
            cancel_event = self._active.get((user_id, action))
        if cancel_event is None:
            return False
        cancel_event.set()
        LOGGER.info("Cancellation requested for user_id=%s action=%s", user_id, action)
        return True

    def is_running(self, user_id: str, action: str) -> bool:
        with self._lock:
            return (user_id, action) in self._active
