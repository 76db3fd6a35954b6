"""
Reconciliation Aggregator.

Groups a run's allocations by (line item, category) and applies
source precedence within the run.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple
import logging

from core.domain.value_objects import FeeAllocation, FeeCategory, FeeContribution, FeeSource


logger = logging.getLogger(__name__)


@dataclass
class AggregatedFee:
    """Winning source's per-batch sums for one (line item, category)."""
    user_id: str
    order_id: str
    line_item_id: int
    category: FeeCategory
    source: FeeSource
    batch_amounts: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def amount(self) -> Decimal:
        return sum(self.batch_amounts.values(), Decimal("0.00"))

    def contributions(self) -> List[FeeContribution]:
        return [
            FeeContribution(
                line_item_id=self.line_item_id,
                category=self.category,
                source=self.source,
                batch_id=batch_id,
                amount=amount,
            )
            for batch_id, amount in sorted(self.batch_amounts.items())
        ]


class FeeAggregator:
    """Sums allocations; the highest-precedence source of a group wins."""

    def aggregate(self, allocations: Iterable[FeeAllocation]) -> List[AggregatedFee]:
        """
        Aggregate allocations.

        Args:
            allocations: Matched allocations of one chunk

        Returns:
            One AggregatedFee per (line item, category), ordered by line item
        """
        grouped: Dict[Tuple[int, FeeCategory], Dict[FeeSource, Dict[str, Decimal]]] = defaultdict(
            lambda: defaultdict(lambda: defaultdict(lambda: Decimal("0.00")))
        )
        owners: Dict[int, Tuple[str, str]] = {}

        for allocation in allocations:
            key = (allocation.line_item_id, allocation.category)
            grouped[key][allocation.source][allocation.batch_id] += allocation.amount
            owners[allocation.line_item_id] = (allocation.user_id, allocation.order_id)

        results: List[AggregatedFee] = []
        for (line_item_id, category), by_source in sorted(
            grouped.items(), key=lambda kv: (kv[0][0], kv[0][1].value)
        ):
            winner = FeeSource.highest(by_source.keys())
            dropped = [source.value for source in by_source if source != winner]
            if dropped:
                logger.debug(
                    f"[RECON] Line item {line_item_id} {category.value}: "
                    f"{winner.value} outranks {', '.join(dropped)}"
                )
            user_id, order_id = owners[line_item_id]
            results.append(AggregatedFee(
                user_id=user_id,
                order_id=order_id,
                line_item_id=line_item_id,
                category=category,
                source=winner,
                batch_amounts=dict(by_source[winner]),
            ))

        return results
