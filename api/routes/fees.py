"""
Fee sync endpoints.

Provides REST API for running fee reconciliation and reading its results.
"""
from decimal import Decimal
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from core.application.dtos.fee_sync_dto import (
    AccountLevelFeeDTO,
    BackgroundSyncResponseDTO,
    FeeSyncRequestDTO,
    LineItemFeeBreakdownDTO,
    OrderFeeBreakdownDTO,
    SyncRunDTO,
)
from core.application.services.fee_sync_service import FeeSyncService
from core.domain.exceptions import FeedAuthenticationError, SyncAlreadyRunningError
from core.infrastructure.bus.redis_stream_publisher import RedisStreamPublisher
from core.settings.modules import FeeSyncSettings
from api.dependencies import get_fee_sync_service, get_fee_sync_settings, get_stream_publisher


logger = logging.getLogger(__name__)
router = APIRouter()


# =============================================================================
# SYNC (FOREGROUND)
# =============================================================================

@router.post(
    "/sync",
    response_model=SyncRunDTO,
    status_code=status.HTTP_200_OK,
    summary="Run a fee sync",
    description="""
    Run a fee reconciliation and wait for it to finish.

    **Kinds:**
    - `settlement`: settled fees from settlement documents (authoritative)
    - `ledger`: fees from the financial events ledger (preliminary)
    - `estimate`: estimates for pending orders

    `months_back` is capped for foreground runs; longer backfills go
    through `/sync/background`.
    """
)
async def sync_fees(
    request: FeeSyncRequestDTO,
    service: FeeSyncService = Depends(get_fee_sync_service),
    settings: FeeSyncSettings = Depends(get_fee_sync_settings),
):
    logger.info(f"API: Fee sync request: user={request.user_id}, kind={request.kind.value}")

    if request.months_back > settings.max_months_back_sync:
        raise HTTPException(
            status_code=422,
            detail=(
                f"months_back={request.months_back} exceeds {settings.max_months_back_sync} "
                f"for a foreground sync; use /sync/background"
            ),
        )

    try:
        await service.verify_credentials(request.user_id, request.credential_ref)
        result = await service.run(
            request.kind,
            request.user_id,
            credential_ref=request.credential_ref,
            months_back=request.months_back,
            marketplace_ids=request.marketplace_ids,
        )
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except FeedAuthenticationError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except Exception as e:
        logger.error(f"Fee sync failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Fee sync failed: {str(e)}"
        )

    return SyncRunDTO.from_result(result)


# =============================================================================
# SYNC (BACKGROUND)
# =============================================================================

@router.post(
    "/sync/background",
    response_model=BackgroundSyncResponseDTO,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a fee sync",
    description="Queue a fee reconciliation for the background worker (Redis Stream).",
)
async def queue_fee_sync(
    request: FeeSyncRequestDTO,
    service: FeeSyncService = Depends(get_fee_sync_service),
    publisher: RedisStreamPublisher = Depends(get_stream_publisher),
):
    logger.info(f"API: Queue fee sync: user={request.user_id}, kind={request.kind.value}")

    try:
        await service.verify_credentials(request.user_id, request.credential_ref)
    except FeedAuthenticationError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    try:
        message_id = await publisher.publish_sync_requested(
            user_id=request.user_id,
            kind=request.kind,
            credential_ref=request.credential_ref,
            marketplace_ids=request.marketplace_ids,
            months_back=request.months_back,
        )
    except Exception as e:
        logger.error(f"Queueing fee sync failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Job queue unavailable: {str(e)}"
        )

    return BackgroundSyncResponseDTO(
        message_id=message_id,
        user_id=request.user_id,
        kind=request.kind.value,
    )


# =============================================================================
# READ
# =============================================================================

@router.get(
    "/runs/{run_id}",
    response_model=SyncRunDTO,
    summary="Get a sync run",
)
async def get_sync_run(
    run_id: str,
    service: FeeSyncService = Depends(get_fee_sync_service),
):
    run = await service.get_run(run_id)
    if run is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Sync run not found: {run_id}"
        )
    return SyncRunDTO.from_run(run)


@router.get(
    "/breakdowns/{user_id}/{order_id}",
    response_model=OrderFeeBreakdownDTO,
    summary="Get fee breakdowns of an order",
)
async def get_order_breakdowns(
    user_id: str,
    order_id: str,
    service: FeeSyncService = Depends(get_fee_sync_service),
):
    breakdowns = await service.get_breakdowns(user_id, order_id)
    if not breakdowns:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No fee breakdowns for order {order_id}"
        )

    return OrderFeeBreakdownDTO(
        user_id=user_id,
        order_id=order_id,
        line_items=[LineItemFeeBreakdownDTO.from_breakdown(b) for b in breakdowns],
        total_fee=sum((b.total_fee for b in breakdowns), Decimal("0.00")),
    )


@router.get(
    "/account-fees/{user_id}",
    response_model=List[AccountLevelFeeDTO],
    summary="List account-level fees",
)
async def list_account_fees(
    user_id: str,
    period: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}$", description="YYYY-MM"),
    service: FeeSyncService = Depends(get_fee_sync_service),
):
    fees = await service.get_account_level_fees(user_id, period)
    return [AccountLevelFeeDTO.from_fee(fee) for fee in fees]
