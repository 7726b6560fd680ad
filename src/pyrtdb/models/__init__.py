"""Typed models exchanged with the store."""

from pyrtdb.models.stream import EventType, StreamedSnapshot

__all__ = [
    "EventType",
    "StreamedSnapshot",
]
