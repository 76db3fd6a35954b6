"""Orchestration events - Event, EventMetadata."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class EventMetadata:
    """Metadata for an event."""

    execution_id: str
    user_id: str
    kind: str
    timestamp: datetime


@dataclass
class Event:
    """Sync run lifecycle event (fee_sync.started, fee_sync.state_changed, ...)."""

    name: str
    payload: dict[str, object]
    metadata: EventMetadata
