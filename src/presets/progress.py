"""Progress channel between a running load/sync and whoever is watching.

Publishing never blocks and never raises: subscriber queues are bounded and
events are dropped for a subscriber whose queue is full; listener callbacks
that raise are logged and ignored. Progress is advisory only.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("presets.progress")

_QUEUE_SIZE = 256


@dataclass(frozen=True)
class ProgressEvent:
    phase: str                   # list | diff | delete | sync | load | done | error
    message: str
    processed: int | None = None
    total: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"phase": self.phase, "message": self.message}
        if self.processed is not None:
            d["processed"] = self.processed
            d["total"] = self.total
        return d


Listener = Callable[[ProgressEvent], None]


class ProgressChannel:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queues: list[queue.Queue[ProgressEvent]] = []
        self._listeners: list[Listener] = []

    def subscribe(self, maxsize: int = _QUEUE_SIZE) -> queue.Queue[ProgressEvent]:
        q: queue.Queue[ProgressEvent] = queue.Queue(maxsize=maxsize)
        with self._lock:
            self._queues.append(q)
        return q

    def unsubscribe(self, q: queue.Queue[ProgressEvent]) -> None:
        with self._lock:
            if q in self._queues:
                self._queues.remove(q)

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            queues = list(self._queues)
            listeners = list(self._listeners)
        for q in queues:
            try:
                q.put_nowait(event)
            except queue.Full:
                logger.debug("progress subscriber full, dropped %s event", event.phase)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("progress listener failed")

    def emit(self, phase: str, message: str, processed: int | None = None, total: int | None = None) -> None:
        self.publish(ProgressEvent(phase, message, processed, total))


class NullChannel(ProgressChannel):
    """Channel that discards everything (used when nobody is watching)."""

    def publish(self, event: ProgressEvent) -> None:
        pass
