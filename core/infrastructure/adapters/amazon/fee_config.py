"""
Fee classification rules for Amazon fee vocabularies.

CRITICAL: Rule ORDER is part of the contract. The first matching rule
wins, so specific rules must stay above the generic ones they overlap:
- refund commission above referral, refunded referral above referral
- MCF above generic fulfillment
- long-term storage above storage
- disposal/removal/inbound/storage above the generic "fba" rule
- damaged/lost reimbursements above inbound ("LOST_INBOUND") and the
  generic reimbursement rule

Bump FEE_RULES_VERSION whenever a rule is added, removed or reordered.
"""
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Tuple

from core.domain.value_objects.financial import FeeCategory


FEE_RULES_VERSION = "2024.4"

# Transaction types that hand fees back to the seller
REFUND_TRANSACTION_WORDS = ("refund", "guaranteeclaim", "chargeback")


def compact(text: str) -> str:
    """Lowercase and strip everything but letters and digits ("Long-Term Storage" -> "longtermstorage")."""
    return re.sub(r"[^a-z0-9]", "", (text or "").lower())


@dataclass(frozen=True)
class FeeText:
    """Compacted classification inputs of one fee line."""
    transaction_type: str
    amount_type: str
    description: str
    # feed-signed amount is positive (money back to the seller)
    credited: bool = False

    @classmethod
    def of(
        cls,
        transaction_type: str,
        amount_type: str,
        description: str,
        signed_amount: Optional[Decimal] = None,
    ) -> "FeeText":
        return cls(
            transaction_type=compact(transaction_type),
            amount_type=compact(amount_type),
            description=compact(description),
            credited=signed_amount is not None and signed_amount > 0,
        )

    @property
    def is_refund_transaction(self) -> bool:
        return any(word in self.transaction_type for word in REFUND_TRANSACTION_WORDS)

    @property
    def haystack(self) -> str:
        """Amount type and description; transaction types are too generic to match on."""
        return f"{self.amount_type} {self.description}"

    def mentions(self, *keywords: str) -> bool:
        return any(keyword in self.haystack for keyword in keywords)


@dataclass(frozen=True)
class FeeRule:
    """One ordered classification rule."""
    name: str
    category: FeeCategory
    predicate: Callable[[FeeText], bool]


def _keywords(*keywords: str) -> Callable[[FeeText], bool]:
    return lambda text: text.mentions(*keywords)


def _refunded_referral(text: FeeText) -> bool:
    if not text.mentions("commission", "referral"):
        return False
    return text.is_refund_transaction or text.credited


# ==============================================================================
# ORDERED RULE TABLE (first match wins, fallback OTHER)
# ==============================================================================

FEE_RULES: Tuple[FeeRule, ...] = (
    FeeRule("refund-commission", FeeCategory.REFUND_COMMISSION,
            _keywords("refundcommission", "refundadministration", "refundadmin")),
    FeeRule("refunded-referral", FeeCategory.REFUNDED_REFERRAL, _refunded_referral),
    FeeRule("mcf", FeeCategory.MCF,
            _keywords("mcf", "multichannel")),
    FeeRule("long-term-storage", FeeCategory.LONG_TERM_STORAGE,
            _keywords("longterm", "agedinventory", "storagerenewal")),
    FeeRule("storage", FeeCategory.STORAGE,
            _keywords("storage")),
    FeeRule("disposal", FeeCategory.DISPOSAL,
            _keywords("disposal")),
    FeeRule("removal", FeeCategory.REMOVAL,
            _keywords("removal")),
    FeeRule("reimbursement-damaged", FeeCategory.REIMBURSEMENT_DAMAGED,
            _keywords("warehousedamage", "damagedwarehouse")),
    FeeRule("reimbursement-lost", FeeCategory.REIMBURSEMENT_LOST,
            _keywords("warehouselost", "lostwarehouse", "lostinbound")),
    FeeRule("inbound", FeeCategory.INBOUND,
            _keywords("inbound", "placement", "transportation")),
    FeeRule("digital-services", FeeCategory.DIGITAL_SERVICES,
            _keywords("digitalservice")),
    FeeRule("reimbursement-reversal", FeeCategory.REIMBURSEMENT_REVERSAL,
            _keywords("reversal", "reimburse", "compensat")),
    FeeRule("fba-fulfillment", FeeCategory.FBA_FULFILLMENT,
            _keywords("fba", "fulfillment", "fulfilment", "pickpack", "weightbased")),
    FeeRule("referral", FeeCategory.REFERRAL,
            _keywords("referral", "commission")),
    FeeRule("promotion", FeeCategory.PROMOTION,
            _keywords("promotion", "coupon", "lightningdeal", "deal")),
)


# ==============================================================================
# NON-FEE (REVENUE) COMPONENTS
# ==============================================================================

# Amount types that only ever carry buyer-paid revenue
REVENUE_AMOUNT_TYPES = frozenset({
    "itemprice",
    "itemwithheldtax",
    "charge",
    "chargeadjustment",
})

REVENUE_DESCRIPTIONS = ("principal", "reserve")


def is_revenue_component(transaction_type: str, amount_type: str, description: str) -> bool:
    """
    Check whether a line is revenue (principal, tax, shipping, gift wrap, reserves).

    Chargeback variants of shipping and gift wrap are fees, not revenue.
    """
    text = FeeText.of(transaction_type, amount_type, description)

    # seller-funded promotions report "Principal"/"Shipping" as their description
    if "promotion" in text.amount_type:
        return False
    if text.amount_type in REVENUE_AMOUNT_TYPES:
        return True
    if any(word in text.description for word in REVENUE_DESCRIPTIONS):
        return True
    if "tax" in text.description and "digitalservice" not in text.description:
        return True
    if "chargeback" in text.description:
        return False
    return "shippingcharge" in text.description or "giftwrap" in text.description


def classify_fee_text(
    transaction_type: str,
    amount_type: str,
    description: str,
    signed_amount: Optional[Decimal] = None,
) -> FeeCategory:
    """
    Classify one fee line into the canonical taxonomy.

    Pure: the same inputs always give the same category.

    Args:
        transaction_type: Feed transaction type
        amount_type: Feed amount type
        description: Vendor fee description
        signed_amount: Amount as the feed signed it; a positive commission
            is a referral fee handed back

    Returns:
        Category of the first matching rule, OTHER when none matches
    """
    text = FeeText.of(transaction_type, amount_type, description, signed_amount)
    for rule in FEE_RULES:
        if rule.predicate(text):
            return rule.category
    return FeeCategory.OTHER
