"""
Adapters layer - Storage and event sink implementations.
"""

from .event_sinks import LoggingEventSink, RecordingEventSink
from .memory_store import InMemoryStore
from .yaml_fixture import load_store_from_yaml, save_appointments_to_yaml

__all__ = [
    "InMemoryStore",
    "LoggingEventSink",
    "RecordingEventSink",
    "load_store_from_yaml",
    "save_appointments_to_yaml",
]
