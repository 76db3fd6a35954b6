"""Application services."""
from .account_fee_recorder import AccountFeeRecorder
from .fee_aggregator import AggregatedFee, FeeAggregator
from .fee_sync_service import FeeSyncService
from .fee_writer import FeeBreakdownWriter, WriteResult, resolve_category_values
from .match_key_resolver import MatchKeyResolver, split_by_quantity

__all__ = [
    "AccountFeeRecorder",
    "AggregatedFee",
    "FeeAggregator",
    "FeeBreakdownWriter",
    "FeeSyncService",
    "MatchKeyResolver",
    "WriteResult",
    "resolve_category_values",
    "split_by_quantity",
]
