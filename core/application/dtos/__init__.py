"""Application DTOs."""

from .fee_sync_dto import (
    AccountLevelFeeDTO,
    BackgroundSyncResponseDTO,
    FeeSyncRequestDTO,
    LineItemFeeBreakdownDTO,
    OrderFeeBreakdownDTO,
    SyncRunDTO,
)

__all__ = [
    "AccountLevelFeeDTO",
    "BackgroundSyncResponseDTO",
    "FeeSyncRequestDTO",
    "LineItemFeeBreakdownDTO",
    "OrderFeeBreakdownDTO",
    "SyncRunDTO",
]
