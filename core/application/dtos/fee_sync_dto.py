"""
DTOs for fee sync operations.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.domain.entities import LineItemFeeBreakdown, SyncRun
from core.domain.enums import SyncKind
from core.domain.value_objects import AccountLevelFee, FeeCategory


# =============================================================================
# REQUEST DTOs
# =============================================================================

class FeeSyncRequestDTO(BaseModel):
    """Request DTO for a fee sync run."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "user_id": "seller-42",
                "credential_ref": "default",
                "kind": "settlement",
                "months_back": 3,
                "marketplace_ids": ["ATVPDKIKX0DER"],
            }
        }
    )

    user_id: str = Field(..., min_length=1, description="Seller whose fees are reconciled")
    credential_ref: str = Field(
        default="default",
        description="Reference resolved to the seller's SP-API refresh token",
    )
    kind: SyncKind = Field(default=SyncKind.SETTLEMENT, description="Which feed to reconcile")
    months_back: int = Field(default=3, ge=1, le=24, description="Backfill depth in months")
    marketplace_ids: Optional[List[str]] = Field(
        default=None,
        description="Marketplaces to list settlement documents for (configured default if empty)",
    )


# =============================================================================
# RESPONSE DTOs
# =============================================================================

class SyncRunDTO(BaseModel):
    """State and counters of one sync run."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "run_id": "123e4567-e89b-12d3-a456-426614174000",
                "user_id": "seller-42",
                "kind": "settlement",
                "state": "done",
                "counters": {"fetched": 412, "parsed": 398, "matched": 120, "updated": 118},
                "error": None,
                "started_at": "2026-01-15T10:30:00Z",
                "finished_at": "2026-01-15T10:31:12Z",
            }
        }
    )

    run_id: str
    user_id: str
    kind: str
    state: str
    counters: Dict[str, int]
    error: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    @classmethod
    def from_run(cls, run: SyncRun) -> "SyncRunDTO":
        return cls(
            run_id=str(run.run_id),
            user_id=run.user_id,
            kind=run.kind.value,
            state=run.state.value,
            counters=run.counters.to_dict(),
            error=run.error,
            started_at=run.started_at,
            finished_at=run.finished_at,
        )

    @classmethod
    def from_result(cls, result) -> "SyncRunDTO":
        """Build from an orchestration WorkflowResult."""
        return cls(
            run_id=str(result.execution_id),
            user_id=result.user_id,
            kind=result.kind.value,
            state=result.state.value,
            counters=result.counters.to_dict(),
            error=result.error,
            started_at=result.started_at,
            finished_at=result.finished_at,
        )


class BackgroundSyncResponseDTO(BaseModel):
    """Response DTO for an enqueued sync job."""

    message_id: str
    user_id: str
    kind: str
    status: str = "queued"


class LineItemFeeBreakdownDTO(BaseModel):
    """Fee breakdown of one line item (non-zero categories only)."""

    line_item_id: int
    fees: Dict[str, Decimal]
    category_sources: Dict[str, str]
    total_fee: Decimal
    authoritative_source: Optional[str] = None
    synced_at: Optional[datetime] = None

    @classmethod
    def from_breakdown(cls, breakdown: LineItemFeeBreakdown) -> "LineItemFeeBreakdownDTO":
        return cls(
            line_item_id=breakdown.line_item_id,
            fees={
                category.value: breakdown.amount_for(category)
                for category in FeeCategory
                if breakdown.amount_for(category) != 0
            },
            category_sources={
                category.value: source.value
                for category, source in breakdown.category_sources.items()
            },
            total_fee=breakdown.total_fee,
            authoritative_source=(
                breakdown.authoritative_source.value if breakdown.authoritative_source else None
            ),
            synced_at=breakdown.synced_at,
        )


class OrderFeeBreakdownDTO(BaseModel):
    """Fee breakdowns of every reconciled line item of an order."""

    user_id: str
    order_id: str
    line_items: List[LineItemFeeBreakdownDTO]
    total_fee: Decimal


class AccountLevelFeeDTO(BaseModel):
    """Monthly account-level fee bucket."""

    period: str
    category: str
    amount: Decimal
    source: str
    description: str = ""

    @classmethod
    def from_fee(cls, fee: AccountLevelFee) -> "AccountLevelFeeDTO":
        return cls(
            period=fee.period,
            category=fee.category.value,
            amount=fee.amount,
            source=fee.source.value,
            description=fee.description,
        )
