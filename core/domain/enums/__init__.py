"""Domain enums."""

from .sync_run_state import SyncKind, SyncRunState

__all__ = ["SyncKind", "SyncRunState"]
