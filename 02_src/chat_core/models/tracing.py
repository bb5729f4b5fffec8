"""Tracing and observability data models."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class TraceEvent:
    """A single diagnostic event recorded by the engine."""

    id: str
    event_type: str  # e.g. "realtime_unmatched", "pending_not_found"
    actor: str  # component that recorded it
    data: dict  # self-contained data for display
    timestamp: datetime
