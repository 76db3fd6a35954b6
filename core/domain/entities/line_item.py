"""
Line item and fee breakdown entities.

CRITICAL: This file must contain ZERO imports from:
- sqlalchemy
- pydantic
- fastapi
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from ..value_objects import FeeCategory, FeeSource, TOLERANCE


@dataclass(frozen=True)
class OrderLineItem:
    """
    Line item as held by the external order store.

    The engine reads these; it never creates them.
    """
    line_item_id: int
    user_id: str
    order_id: str
    sku: Optional[str] = None
    asin: Optional[str] = None
    order_item_id: Optional[str] = None
    quantity: int = 1
    item_price: Decimal = Decimal("0.00")
    order_status: str = "Shipped"


@dataclass(frozen=True)
class PendingLineItem:
    """Line item of a not-yet-shipped order, with its product's fee averages."""
    line_item: OrderLineItem
    avg_fee_per_unit: Optional[Decimal] = None
    avg_fba_fee_per_unit: Optional[Decimal] = None
    avg_referral_fee_per_unit: Optional[Decimal] = None


@dataclass
class LineItemFeeBreakdown:
    """
    Persisted fee state of one line item.

    Balance Equation (MUST ALWAYS HOLD):
        total_fee = sum(category amounts)

    Tolerance: ±0.01 (one cent)
    """
    user_id: str
    order_id: str
    line_item_id: int
    amounts: Dict[FeeCategory, Decimal] = field(default_factory=dict)
    category_sources: Dict[FeeCategory, FeeSource] = field(default_factory=dict)
    total_fee: Decimal = Decimal("0.00")
    authoritative_source: Optional[FeeSource] = None
    synced_at: Optional[datetime] = None

    def amount_for(self, category: FeeCategory) -> Decimal:
        return self.amounts.get(category, Decimal("0.00"))

    def recompute_total(self) -> Decimal:
        """Recompute total_fee and authoritative_source from the category fields."""
        self.total_fee = sum(self.amounts.values(), Decimal("0.00"))
        self.authoritative_source = FeeSource.highest(self.category_sources.values())
        return self.total_fee

    def same_values_as(self, other: "LineItemFeeBreakdown") -> bool:
        """Check amounts, sources and total against another breakdown, ignoring synced_at."""
        categories = set(self.amounts) | set(other.amounts)
        return (
            all(self.amount_for(c) == other.amount_for(c) for c in categories)
            and self.category_sources == other.category_sources
            and self.total_fee == other.total_fee
            and self.authoritative_source == other.authoritative_source
        )

    def is_complete(self) -> bool:
        """Check the balance equation within tolerance."""
        total = sum(self.amounts.values(), Decimal("0.00"))
        return abs(total - self.total_fee) <= TOLERANCE
