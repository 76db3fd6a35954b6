"""
Sync run enums.

States and kinds for fee sync run tracking.
"""
from enum import Enum


class SyncRunState(str, Enum):
    """Sync run state values."""

    QUEUED = "queued"
    FETCHING = "fetching"
    PARSING = "parsing"
    MATCHING = "matching"
    AGGREGATING = "aggregating"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncRunState.DONE, SyncRunState.FAILED)


class SyncKind(str, Enum):
    """Which feed a run reconciles."""

    SETTLEMENT = "settlement"
    LEDGER = "ledger"
    ESTIMATE = "estimate"
