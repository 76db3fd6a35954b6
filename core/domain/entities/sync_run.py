"""
Sync run aggregate.

CRITICAL: This file must contain ZERO imports from:
- sqlalchemy
- pydantic
- fastapi
"""
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime, timezone
from typing import Dict, Optional

from ..enums import SyncKind, SyncRunState
from ..exceptions import InvalidStateTransitionError
from ..value_objects import ExecutionID


# Allowed forward transitions. FAILED is reachable from any non-terminal state.
# A chunk abandoned mid-pipeline returns the run to FETCHING for the next one.
_TRANSITIONS = {
    SyncRunState.QUEUED: {SyncRunState.FETCHING},
    SyncRunState.FETCHING: {SyncRunState.PARSING, SyncRunState.DONE},
    SyncRunState.PARSING: {SyncRunState.MATCHING, SyncRunState.FETCHING},
    SyncRunState.MATCHING: {SyncRunState.AGGREGATING, SyncRunState.FETCHING},
    SyncRunState.AGGREGATING: {SyncRunState.WRITING, SyncRunState.FETCHING},
    # next chunk, or finished
    SyncRunState.WRITING: {SyncRunState.FETCHING, SyncRunState.DONE},
    SyncRunState.DONE: set(),
    SyncRunState.FAILED: set(),
}


@dataclass
class SyncCounters:
    """Per-run counts reported to the caller."""
    fetched: int = 0
    parsed: int = 0
    malformed: int = 0
    transfers_skipped: int = 0
    non_fee_skipped: int = 0
    matched: int = 0
    unmatched: int = 0
    updated: int = 0
    account_level: int = 0
    errored: int = 0
    documents_skipped: int = 0
    documents_failed: int = 0
    pages_failed: int = 0

    def increment(self, name: str, by: int = 1) -> None:
        setattr(self, name, getattr(self, name) + by)

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, int]]) -> "SyncCounters":
        known = {f.name for f in fields(cls)}
        return cls(**{k: int(v) for k, v in (data or {}).items() if k in known})


@dataclass
class SyncRun:
    """
    One invocation of a fee sync.

    Walks QUEUED -> FETCHING -> PARSING -> MATCHING -> AGGREGATING
    -> WRITING -> DONE, looping WRITING -> FETCHING per chunk.
    """
    run_id: ExecutionID
    user_id: str
    kind: SyncKind
    state: SyncRunState = SyncRunState.QUEUED
    counters: SyncCounters = field(default_factory=SyncCounters)
    error: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @classmethod
    def start(cls, user_id: str, kind: SyncKind) -> "SyncRun":
        return cls(run_id=ExecutionID.generate(), user_id=user_id, kind=kind)

    def transition(self, target: SyncRunState) -> None:
        """
        Move to the target state.

        Raises:
            InvalidStateTransitionError: If the target is not reachable
        """
        if target == SyncRunState.FAILED and not self.state.is_terminal:
            self.state = target
            self.finished_at = datetime.now(timezone.utc)
            return

        if target not in _TRANSITIONS[self.state]:
            raise InvalidStateTransitionError(
                f"Run {self.run_id}: cannot move from {self.state.value} to {target.value}"
            )

        self.state = target
        if target.is_terminal:
            self.finished_at = datetime.now(timezone.utc)

    def fail(self, error: str) -> None:
        self.error = error
        self.transition(SyncRunState.FAILED)
