"""Domain layer - pure domain models and interfaces."""

from .entities import LineItemFeeBreakdown, OrderLineItem, SyncRun
from .enums import SyncKind, SyncRunState
from .value_objects import CanonicalFeeEvent, ExecutionID, FeeCategory, FeeSource, RawFeeRecord

__all__ = [
    "CanonicalFeeEvent",
    "ExecutionID",
    "FeeCategory",
    "FeeSource",
    "LineItemFeeBreakdown",
    "OrderLineItem",
    "RawFeeRecord",
    "SyncKind",
    "SyncRun",
    "SyncRunState",
]
