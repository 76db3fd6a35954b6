"""
Match Key Resolver.

Attributes canonical fee events to line items of the order store.
"""
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
import logging

from core.application.interfaces import ILineItemStore
from core.domain.entities import OrderLineItem
from core.domain.value_objects import (
    CanonicalFeeEvent,
    FeeAllocation,
    MatchKey,
    MatchKeyKind,
)


logger = logging.getLogger(__name__)

CENTS = Decimal("100")


def split_by_quantity(amount: Decimal, line_items: Sequence[OrderLineItem]) -> List[Decimal]:
    """
    Split an amount across line items in proportion to their quantities.

    Works in whole cents. Leftover cents go one each to line items in
    line_item_id order, so the parts always sum to the amount.

    Args:
        amount: Amount to split (any sign)
        line_items: Receiving line items

    Returns:
        One part per line item, in the order given
    """
    sign = Decimal("-1") if amount < 0 else Decimal("1")
    cents = int((abs(amount) * CENTS).to_integral_value())
    weights = [max(item.quantity, 1) for item in line_items]
    total_weight = sum(weights)

    shares = [cents * weight // total_weight for weight in weights]
    remainder = cents - sum(shares)

    by_id = sorted(range(len(line_items)), key=lambda i: line_items[i].line_item_id)
    for index in by_id[:remainder]:
        shares[index] += 1

    return [sign * Decimal(share) / CENTS for share in shares]


class MatchKeyResolver:
    """
    Resolves fee events to line items, most specific key first.

    Line items are loaded per order in batches and cached for the
    lifetime of the resolver (one run).
    """

    def __init__(self, line_item_store: ILineItemStore, sample_limit: int = 20):
        """
        Initialize resolver.

        Args:
            line_item_store: Order store to read line items from
            sample_limit: Maximum unmatched keys kept for diagnostics
        """
        self._store = line_item_store
        self._cache: Dict[str, List[OrderLineItem]] = {}
        self._sample_limit = sample_limit
        self.unmatched_samples: List[str] = []

    async def prefetch(self, user_id: str, order_ids: Iterable[str]) -> None:
        """Load line items of every order not yet cached in one query."""
        missing = {order_id for order_id in order_ids if order_id and order_id not in self._cache}
        if not missing:
            return
        loaded = await self._store.get_line_items(user_id, missing)
        for order_id in missing:
            self._cache[order_id] = sorted(
                loaded.get(order_id, []), key=lambda item: item.line_item_id
            )

    @staticmethod
    def _matches(key: MatchKey, line_items: List[OrderLineItem]) -> List[OrderLineItem]:
        if key.kind == MatchKeyKind.ORDER_ITEM:
            return [item for item in line_items if item.order_item_id == key.value]
        if key.kind == MatchKeyKind.ORDER_SKU:
            return [item for item in line_items if item.sku == key.value]
        if key.kind == MatchKeyKind.ORDER_ASIN:
            return [item for item in line_items if item.asin == key.value]
        return list(line_items)

    def _match(self, event: CanonicalFeeEvent) -> Optional[List[OrderLineItem]]:
        line_items = self._cache.get(event.order_id or "", [])
        if not line_items:
            return None
        for key in event.candidate_keys:
            matches = self._matches(key, line_items)
            if matches:
                return matches
        return None

    async def resolve(self, event: CanonicalFeeEvent) -> List[FeeAllocation]:
        """
        Resolve one event to allocations.

        Args:
            event: Line-item fee event (has an order id)

        Returns:
            Allocations summing exactly to the event amount; empty when unmatched
        """
        if event.order_id and event.order_id not in self._cache:
            await self.prefetch(event.user_id, [event.order_id])

        matches = self._match(event)
        if not matches:
            if len(self.unmatched_samples) < self._sample_limit:
                keys = ", ".join(str(key) for key in event.candidate_keys) or "<no keys>"
                self.unmatched_samples.append(f"{event.category.value}: {keys}")
            return []

        if len(matches) == 1:
            parts = [event.amount]
        else:
            parts = split_by_quantity(event.amount, matches)

        return [
            FeeAllocation(
                user_id=event.user_id,
                order_id=event.order_id,
                line_item_id=item.line_item_id,
                category=event.category,
                source=event.source,
                batch_id=event.batch_id,
                amount=part,
            )
            for item, part in zip(matches, parts)
            if part != 0
        ]
