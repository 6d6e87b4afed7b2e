from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List

logger = logging.getLogger(__name__)

ReadingHandler = Callable[[int], None]


class SensorSource(ABC):
    """A cumulative step counter that delivers readings to registered handlers."""

    @abstractmethod
    def register(self, handler: ReadingHandler) -> bool:
        """Subscribe ``handler``. Returns False when there is no step counter."""

    @abstractmethod
    def unregister(self, handler: ReadingHandler) -> None:
        """Stop delivering readings to ``handler``."""


class PushSensorSource(SensorSource):
    """In-process step counter fed by :meth:`push`.

    Readings come from whatever owns the source (the HTTP ingestion endpoint,
    a device bridge, tests) and are delivered synchronously on the caller's
    thread.
    """

    def __init__(self, available: bool = True):
        self.available = available
        self._handlers: List[ReadingHandler] = []
        self._lock = threading.Lock()

    def register(self, handler: ReadingHandler) -> bool:
        if not self.available:
            logger.error("[PushSensorSource] No step counter sensor available")
            return False
        with self._lock:
            if handler not in self._handlers:
                self._handlers.append(handler)
        logger.debug("[PushSensorSource] Handler registered")
        return True

    def unregister(self, handler: ReadingHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)
                logger.debug("[PushSensorSource] Handler unregistered")

    @property
    def handler_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def push(self, value: int) -> int:
        """Deliver ``value`` to every handler; returns how many received it."""
        if value < 0:
            raise ValueError(f"step counter value must be non-negative, got {value}")
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            handler(value)
        return len(handlers)
