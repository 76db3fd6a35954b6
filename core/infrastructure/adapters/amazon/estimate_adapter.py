"""
Fee estimates for orders the feeds have not reported yet.

Pending and unshipped orders carry no settled fees. Until a feed
reports them, their line items get estimates built from the product's
recent per-unit averages, or a flat share of the item price when the
product has no history.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from core.domain.entities import PendingLineItem
from core.domain.value_objects import FeeSource, RawFeeRecord, quantize_amount

logger = logging.getLogger(__name__)

ESTIMATE_BATCH_ID = "estimate"

FBA_FEE_TEXT = "EstimatedFBAPerUnitFulfillmentFee"
REFERRAL_FEE_TEXT = "EstimatedCommission"
OTHER_FEE_TEXT = "EstimatedOtherFee"


class FeeEstimateAdapter:
    """Builds ESTIMATED raw records for pending line items."""

    def __init__(self, fallback_rate: Decimal = Decimal("0.15")):
        self.fallback_rate = fallback_rate

    def _record(
        self, pending: PendingLineItem, fee_text: str, amount: Decimal, now: datetime
    ) -> RawFeeRecord:
        item = pending.line_item
        return RawFeeRecord(
            source=FeeSource.ESTIMATED,
            transaction_type="Order",
            amount_type="ItemFees",
            fee_type_text=fee_text,
            # feeds report fees as debits
            signed_amount=-quantize_amount(amount),
            posted_at=now,
            batch_id=ESTIMATE_BATCH_ID,
            order_id=item.order_id,
            order_item_id=item.order_item_id,
            sku=item.sku,
            asin=item.asin,
        )

    def build_records(
        self, pending_items: Iterable[PendingLineItem], now: Optional[datetime] = None
    ) -> List[RawFeeRecord]:
        """
        Estimate fees for pending line items.

        Args:
            pending_items: Line items without a feed-reported breakdown
            now: Timestamp for the records

        Returns:
            Raw records (zero estimates are left out)
        """
        now = now or datetime.now(timezone.utc)
        records: List[RawFeeRecord] = []

        for pending in pending_items:
            quantity = Decimal(max(pending.line_item.quantity, 1))

            if pending.avg_fee_per_unit is not None:
                total = pending.avg_fee_per_unit * quantity
                fba = (pending.avg_fba_fee_per_unit or Decimal("0")) * quantity
                referral = (pending.avg_referral_fee_per_unit or Decimal("0")) * quantity
                other = total - fba - referral
                parts = [(FBA_FEE_TEXT, fba), (REFERRAL_FEE_TEXT, referral), (OTHER_FEE_TEXT, other)]
            else:
                parts = [(REFERRAL_FEE_TEXT, pending.line_item.item_price * self.fallback_rate)]

            for fee_text, amount in parts:
                if quantize_amount(amount) > 0:
                    records.append(self._record(pending, fee_text, amount, now))

        logger.info(f"[ESTIMATE] Built {len(records)} estimated fee record(s)")
        return records
