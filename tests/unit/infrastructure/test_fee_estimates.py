"""
Tests for estimated fee records.
"""
from decimal import Decimal

from core.domain.entities import OrderLineItem, PendingLineItem
from core.domain.value_objects import FeeCategory, FeeSource
from core.infrastructure.adapters.amazon.estimate_adapter import (
    ESTIMATE_BATCH_ID,
    FeeEstimateAdapter,
)
from core.infrastructure.adapters.amazon.fee_mapper import FeeNormalizer


def _pending(quantity=1, item_price="20.00", avg=None, fba=None, referral=None):
    item = OrderLineItem(
        line_item_id=1,
        user_id="seller-1",
        order_id="111-1",
        sku="SKU-A",
        order_item_id="OI-1",
        quantity=quantity,
        item_price=Decimal(item_price),
        order_status="Pending",
    )
    return PendingLineItem(
        line_item=item,
        avg_fee_per_unit=Decimal(avg) if avg else None,
        avg_fba_fee_per_unit=Decimal(fba) if fba else None,
        avg_referral_fee_per_unit=Decimal(referral) if referral else None,
    )


class TestFeeEstimateAdapter:
    """Test estimate construction."""

    def test_averages_scaled_by_quantity(self, now):
        records = FeeEstimateAdapter().build_records(
            [_pending(quantity=2, avg="5.00", fba="3.00", referral="1.50")], now
        )

        assert [r.signed_amount for r in records] == [Decimal("-6.00"), Decimal("-3.00"), Decimal("-1.00")]
        assert all(r.source == FeeSource.ESTIMATED for r in records)
        assert all(r.batch_id == ESTIMATE_BATCH_ID for r in records)
        assert all(r.posted_at == now for r in records)
        assert records[0].order_item_id == "OI-1"

    def test_fallback_rate_without_history(self, now):
        records = FeeEstimateAdapter(fallback_rate=Decimal("0.15")).build_records([_pending()], now)

        assert len(records) == 1
        assert records[0].signed_amount == Decimal("-3.00")

    def test_zero_parts_left_out(self, now):
        records = FeeEstimateAdapter().build_records([_pending(avg="3.00", fba="3.00")], now)

        assert len(records) == 1
        assert records[0].signed_amount == Decimal("-3.00")

    def test_zero_quantity_counts_as_one(self, now):
        records = FeeEstimateAdapter().build_records([_pending(quantity=0, avg="2.00", referral="2.00")], now)

        assert [r.signed_amount for r in records] == [Decimal("-2.00")]

    def test_free_item_without_history_gets_nothing(self, now):
        assert FeeEstimateAdapter().build_records([_pending(item_price="0.00")], now) == []

    def test_estimates_classify_as_costs(self, now):
        records = FeeEstimateAdapter().build_records(
            [_pending(avg="5.00", fba="3.00", referral="1.50")], now
        )

        events = [FeeNormalizer().normalize("seller-1", record) for record in records]

        assert [e.category for e in events[:2]] == [FeeCategory.FBA_FULFILLMENT, FeeCategory.REFERRAL]
        assert all(e.amount > 0 for e in events)
        assert all(e.source == FeeSource.ESTIMATED for e in events)
