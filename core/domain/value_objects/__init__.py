"""Domain value objects."""

from .value_objects import ExecutionID
from .financial import (
    AccountLevelFee,
    CanonicalFeeEvent,
    FeeAllocation,
    FeeCategory,
    FeeContribution,
    FeeSource,
    MatchKey,
    MatchKeyKind,
    RawFeeRecord,
    TOLERANCE,
    quantize_amount,
)

__all__ = [
    "ExecutionID",
    "AccountLevelFee",
    "CanonicalFeeEvent",
    "FeeAllocation",
    "FeeCategory",
    "FeeContribution",
    "FeeSource",
    "MatchKey",
    "MatchKeyKind",
    "RawFeeRecord",
    "TOLERANCE",
    "quantize_amount",
]
