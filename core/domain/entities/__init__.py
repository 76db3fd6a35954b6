"""Domain entities."""

from .line_item import LineItemFeeBreakdown, OrderLineItem, PendingLineItem
from .sync_run import SyncCounters, SyncRun

__all__ = [
    "LineItemFeeBreakdown",
    "OrderLineItem",
    "PendingLineItem",
    "SyncCounters",
    "SyncRun",
]
