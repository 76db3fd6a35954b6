"""
Financial value objects for marketplace fee reconciliation.

CRITICAL: This file must contain ZERO imports from:
- sqlalchemy
- pydantic
- fastapi
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Tuple


CENT = Decimal("0.01")

# Completeness tolerance: total_fee vs. sum of category fields
TOLERANCE = Decimal("0.01")


def quantize_amount(amount: Decimal) -> Decimal:
    """Round a monetary amount to whole cents."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class FeeCategory(str, Enum):
    """
    Canonical fee taxonomy.

    Every marketplace fee, whatever feed reported it and whatever its
    vendor wording, lands in exactly one of these categories.
    """
    FBA_FULFILLMENT = "fba_fulfillment"
    REFERRAL = "referral"
    STORAGE = "storage"
    LONG_TERM_STORAGE = "long_term_storage"
    MCF = "mcf"
    INBOUND = "inbound"
    REMOVAL = "removal"
    DISPOSAL = "disposal"
    DIGITAL_SERVICES = "digital_services"
    REFUND_COMMISSION = "refund_commission"
    PROMOTION = "promotion"
    REIMBURSEMENT_DAMAGED = "reimbursement_damaged"
    REIMBURSEMENT_LOST = "reimbursement_lost"
    REIMBURSEMENT_REVERSAL = "reimbursement_reversal"
    REFUNDED_REFERRAL = "refunded_referral"
    OTHER = "other"

    @property
    def is_credit(self) -> bool:
        """Credits are stored as negative magnitudes so totals subtract them."""
        return self in CREDIT_CATEGORIES

    @property
    def is_account_level(self) -> bool:
        """Removal orders never correspond to a sales line item."""
        return self in ACCOUNT_LEVEL_CATEGORIES


CREDIT_CATEGORIES = frozenset({
    FeeCategory.REIMBURSEMENT_DAMAGED,
    FeeCategory.REIMBURSEMENT_LOST,
    FeeCategory.REIMBURSEMENT_REVERSAL,
    FeeCategory.REFUNDED_REFERRAL,
})

ACCOUNT_LEVEL_CATEGORIES = frozenset({
    FeeCategory.DISPOSAL,
    FeeCategory.REMOVAL,
})


class FeeSource(str, Enum):
    """Feed a fee value came from, ranked by trust."""
    SETTLEMENT_REPORT = "settlement_report"
    FINANCIAL_EVENTS_API = "financial_events_api"
    ESTIMATED = "estimated"

    @property
    def precedence(self) -> int:
        return _SOURCE_PRECEDENCE[self]

    @classmethod
    def highest(cls, sources) -> Optional["FeeSource"]:
        """Return the highest-precedence source of an iterable, or None if empty."""
        ranked = sorted(sources, key=lambda s: s.precedence, reverse=True)
        return ranked[0] if ranked else None


_SOURCE_PRECEDENCE = {
    FeeSource.SETTLEMENT_REPORT: 3,
    FeeSource.FINANCIAL_EVENTS_API: 2,
    FeeSource.ESTIMATED: 1,
}


@dataclass(frozen=True)
class RawFeeRecord:
    """
    One charge or fee line exactly as a feed reported it.

    Attributes:
        source: Feed the record came from
        transaction_type: Feed transaction type ("Order", "Refund", "ServiceFee", ...)
        amount_type: Feed amount type ("ItemFees", "Fee", "Promotion", ...)
        fee_type_text: Vendor fee description ("FBAPerUnitFulfillmentFee", ...)
        signed_amount: Amount with the feed's own sign
        posted_at: When the feed posted the record
        batch_id: Stable identity of the enclosing document or event
        currency: ISO currency code
        order_id: Marketplace order id, None for account-level charges
        order_item_id: Marketplace order item id / order item code
        sku: Seller SKU
        asin: Marketplace product id
    """
    source: FeeSource
    transaction_type: str
    amount_type: str
    fee_type_text: str
    signed_amount: Decimal
    posted_at: Optional[datetime]
    batch_id: str
    currency: str = "USD"
    order_id: Optional[str] = None
    order_item_id: Optional[str] = None
    sku: Optional[str] = None
    asin: Optional[str] = None


class MatchKeyKind(str, Enum):
    """Match key kinds, most specific first."""
    ORDER_ITEM = "order_item"
    ORDER_SKU = "order_sku"
    ORDER_ASIN = "order_asin"
    ORDER = "order"


@dataclass(frozen=True)
class MatchKey:
    """Identifier combination used to look up the line item a fee belongs to."""
    kind: MatchKeyKind
    order_id: str
    value: Optional[str] = None

    def __str__(self) -> str:
        if self.value is None:
            return self.order_id
        return f"{self.order_id}|{self.value}"

    @classmethod
    def candidates(
        cls,
        order_id: Optional[str],
        order_item_id: Optional[str] = None,
        sku: Optional[str] = None,
        asin: Optional[str] = None,
    ) -> Tuple["MatchKey", ...]:
        """
        Build candidate keys from the identifiers a feed supplied.

        Args:
            order_id: Marketplace order id (no keys without one)
            order_item_id: Order item id / order item code
            sku: Seller SKU
            asin: Marketplace product id

        Returns:
            Keys ordered most specific first; always ends with the
            order-level key when an order id is present
        """
        if not order_id:
            return ()

        keys = []
        if order_item_id:
            keys.append(cls(MatchKeyKind.ORDER_ITEM, order_id, order_item_id))
        if sku:
            keys.append(cls(MatchKeyKind.ORDER_SKU, order_id, sku))
        if asin:
            keys.append(cls(MatchKeyKind.ORDER_ASIN, order_id, asin))
        keys.append(cls(MatchKeyKind.ORDER, order_id))
        return tuple(keys)


@dataclass(frozen=True)
class CanonicalFeeEvent:
    """
    Normalized, classified fee.

    Amount sign follows the category: costs positive, credits negative.
    """
    user_id: str
    category: FeeCategory
    amount: Decimal
    source: FeeSource
    batch_id: str
    description: str
    order_id: Optional[str] = None
    candidate_keys: Tuple[MatchKey, ...] = ()
    currency: str = "USD"
    posted_at: Optional[datetime] = None
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_account_level(self) -> bool:
        """True when the fee cannot be attributed to a sales line item."""
        return self.order_id is None or self.category.is_account_level

    @property
    def period(self) -> str:
        """Posting month as YYYY-MM (capture month when the feed gave no date)."""
        moment = self.posted_at or self.captured_at
        return moment.strftime("%Y-%m")


@dataclass(frozen=True)
class FeeAllocation:
    """Part (or all) of a canonical fee attributed to one line item."""
    user_id: str
    order_id: str
    line_item_id: int
    category: FeeCategory
    source: FeeSource
    batch_id: str
    amount: Decimal


@dataclass(frozen=True)
class FeeContribution:
    """Persisted partial sum of one (source, batch) for one line item category."""
    line_item_id: int
    category: FeeCategory
    source: FeeSource
    batch_id: str
    amount: Decimal


@dataclass(frozen=True)
class AccountLevelFee:
    """
    Fee with no order linkage, bucketed per month and category.

    Never holds an order id.
    """
    user_id: str
    period: str
    category: FeeCategory
    amount: Decimal
    source: FeeSource
    description: str = ""

    def __post_init__(self):
        if len(self.period) != 7 or self.period[4] != "-":
            raise ValueError(f"Invalid period (expected YYYY-MM): {self.period}")
