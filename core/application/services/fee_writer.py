"""
Idempotent fee writer.

Writes aggregated fees as contributions, then rebuilds each touched
line item's breakdown from everything on record. Rewriting the same
batch overwrites its own contributions, so re-running a sync never
inflates a total.
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Iterable, List, Tuple
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.application.services.fee_aggregator import AggregatedFee
from core.domain.entities import LineItemFeeBreakdown
from core.domain.value_objects import FeeCategory, FeeContribution, FeeSource
from core.infrastructure.database.unit_of_work import UnitOfWork
from orchestration.controller import chunked


logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """Outcome of one write call."""
    updated: int = 0
    errored: int = 0


def resolve_category_values(
    contributions: Iterable[FeeContribution],
) -> Tuple[Dict[FeeCategory, Decimal], Dict[FeeCategory, FeeSource]]:
    """
    Derive category values from stored contributions.

    Each category takes the sum of its highest-precedence source.
    Estimates only count while the line item has nothing else on record.

    Returns:
        (amount per category, winning source per category)
    """
    contributions = list(contributions)
    has_actual = any(c.source != FeeSource.ESTIMATED for c in contributions)

    by_category: Dict[FeeCategory, Dict[FeeSource, Decimal]] = defaultdict(
        lambda: defaultdict(lambda: Decimal("0.00"))
    )
    for contribution in contributions:
        if has_actual and contribution.source == FeeSource.ESTIMATED:
            continue
        by_category[contribution.category][contribution.source] += contribution.amount

    amounts: Dict[FeeCategory, Decimal] = {}
    sources: Dict[FeeCategory, FeeSource] = {}
    for category, by_source in by_category.items():
        top = FeeSource.highest(by_source.keys())
        amounts[category] = by_source[top]
        sources[category] = top
    return amounts, sources


class FeeBreakdownWriter:
    """
    Batched breakdown writer.

    Each batch of line items is one transaction. When a batch fails
    its line items are retried one per transaction so a single bad row
    only costs itself.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        batch_size: int = 100,
        batch_delay_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._session_factory = session_factory
        self._batch_size = batch_size
        self._batch_delay = batch_delay_seconds
        self._sleep = sleep

    async def write(self, user_id: str, fees: Iterable[AggregatedFee]) -> WriteResult:
        """
        Write aggregated fees.

        Args:
            user_id: Owner
            fees: Aggregated fees of one chunk

        Returns:
            WriteResult with updated and errored line item counts
        """
        per_line_item: Dict[int, List[AggregatedFee]] = defaultdict(list)
        for fee in fees:
            per_line_item[fee.line_item_id].append(fee)

        result = WriteResult()
        line_item_ids = sorted(per_line_item)

        for index, batch in enumerate(chunked(line_item_ids, self._batch_size)):
            if index and self._batch_delay > 0:
                await self._sleep(self._batch_delay)
            try:
                async with self._session_factory() as session:
                    async with UnitOfWork(session) as uow:
                        for line_item_id in batch:
                            await self._apply(uow, user_id, per_line_item[line_item_id])
                        await uow.commit()
                result.updated += len(batch)
            except Exception as exc:
                logger.warning(
                    f"⚠️ [WRITER] Batch of {len(batch)} line item(s) failed ({exc}); "
                    f"retrying one by one"
                )
                for line_item_id in batch:
                    if await self._write_one(user_id, per_line_item[line_item_id]):
                        result.updated += 1
                    else:
                        result.errored += 1

        logger.info(
            f"[WRITER] User {user_id}: updated={result.updated}, errored={result.errored}"
        )
        return result

    async def _write_one(self, user_id: str, fees: List[AggregatedFee]) -> bool:
        try:
            async with self._session_factory() as session:
                async with UnitOfWork(session) as uow:
                    await self._apply(uow, user_id, fees)
                    await uow.commit()
            return True
        except Exception as exc:
            logger.error(f"❌ [WRITER] Line item {fees[0].line_item_id} failed: {exc}")
            return False

    async def _apply(
        self, uow: UnitOfWork, user_id: str, fees: List[AggregatedFee]
    ) -> LineItemFeeBreakdown:
        line_item_id = fees[0].line_item_id
        order_id = fees[0].order_id

        for fee in fees:
            for contribution in fee.contributions():
                await uow.breakdowns.upsert_contribution(user_id, contribution)

        contributions = await uow.breakdowns.contributions_for(user_id, line_item_id)
        amounts, sources = resolve_category_values(contributions)

        stored = await uow.breakdowns.get(user_id, line_item_id)
        breakdown = LineItemFeeBreakdown(
            user_id=user_id,
            order_id=stored.order_id if stored else order_id,
            line_item_id=line_item_id,
            amounts=amounts,
            category_sources=sources,
        )
        breakdown.recompute_total()
        # an unchanged row keeps its synced_at
        if stored is not None and stored.same_values_as(breakdown):
            return stored
        breakdown.synced_at = datetime.now(timezone.utc)

        await uow.breakdowns.save(breakdown)
        return breakdown
