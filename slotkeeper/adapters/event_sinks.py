"""
Event sinks for local use: one that records, one that logs.
"""

import logging
import threading
from typing import List

from ..domain.events import AppointmentEvent, TransitionKind


class RecordingEventSink:
    """Keeps every published event in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: List[AppointmentEvent] = []

    def publish(self, event: AppointmentEvent) -> None:
        with self._lock:
            self.events.append(event)

    def of_kind(self, kind: TransitionKind) -> List[AppointmentEvent]:
        with self._lock:
            return [e for e in self.events if e.kind is kind]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class LoggingEventSink:
    """Writes every event to the log at INFO level."""

    def __init__(self, logger_name: str = "slotkeeper.events"):
        self._logger = logging.getLogger(logger_name)

    def publish(self, event: AppointmentEvent) -> None:
        self._logger.info("%s %s", event.kind.value, event.to_dict())
