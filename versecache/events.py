"""Minimal listener registry for lifecycle events."""

import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventTarget:
    """Dispatches named events to registered callbacks.

    A failing listener is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._listeners_lock = threading.Lock()

    def add_listener(self, event: str, callback: Listener) -> None:
        with self._listeners_lock:
            self._listeners.setdefault(event, []).append(callback)

    def remove_listener(self, event: str, callback: Listener) -> None:
        with self._listeners_lock:
            callbacks = self._listeners.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def dispatch(self, event: str, *args: Any) -> None:
        with self._listeners_lock:
            callbacks = list(self._listeners.get(event, []))
        for callback in callbacks:
            try:
                callback(*args)
            except Exception as e:
                logger.error("%s listener failed: %s", event, e)
