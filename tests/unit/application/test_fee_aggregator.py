"""
Tests for in-run aggregation and stored-contribution resolution.
"""
from decimal import Decimal

from core.application.services.fee_aggregator import FeeAggregator
from core.application.services.fee_writer import resolve_category_values
from core.domain.value_objects import FeeAllocation, FeeCategory, FeeContribution, FeeSource


def _allocation(line_item_id, category, source, batch_id, amount):
    return FeeAllocation(
        user_id="seller-1",
        order_id="111-1",
        line_item_id=line_item_id,
        category=category,
        source=source,
        batch_id=batch_id,
        amount=Decimal(amount),
    )


def _contribution(category, source, batch_id, amount, line_item_id=1):
    return FeeContribution(
        line_item_id=line_item_id,
        category=category,
        source=source,
        batch_id=batch_id,
        amount=Decimal(amount),
    )


class TestFeeAggregator:
    """Test grouping and precedence within one run."""

    def test_sums_batches_of_one_source(self):
        fees = FeeAggregator().aggregate([
            _allocation(1, FeeCategory.REFERRAL, FeeSource.SETTLEMENT_REPORT, "S-2", "1.00"),
            _allocation(1, FeeCategory.REFERRAL, FeeSource.SETTLEMENT_REPORT, "S-1", "1.10"),
            _allocation(1, FeeCategory.REFERRAL, FeeSource.SETTLEMENT_REPORT, "S-1", "0.05"),
        ])

        assert len(fees) == 1
        assert fees[0].amount == Decimal("2.15")
        assert [(c.batch_id, c.amount) for c in fees[0].contributions()] == [
            ("S-1", Decimal("1.15")), ("S-2", Decimal("1.00")),
        ]

    def test_higher_precedence_source_wins(self):
        fees = FeeAggregator().aggregate([
            _allocation(1, FeeCategory.FBA_FULFILLMENT, FeeSource.FINANCIAL_EVENTS_API, "L-1", "3.40"),
            _allocation(1, FeeCategory.FBA_FULFILLMENT, FeeSource.SETTLEMENT_REPORT, "S-1", "3.42"),
        ])

        assert fees[0].source == FeeSource.SETTLEMENT_REPORT
        assert fees[0].amount == Decimal("3.42")
        assert fees[0].batch_amounts == {"S-1": Decimal("3.42")}

    def test_one_result_per_line_item_and_category(self):
        fees = FeeAggregator().aggregate([
            _allocation(2, FeeCategory.REFERRAL, FeeSource.SETTLEMENT_REPORT, "S-1", "1.00"),
            _allocation(1, FeeCategory.REFERRAL, FeeSource.SETTLEMENT_REPORT, "S-1", "1.00"),
            _allocation(1, FeeCategory.FBA_FULFILLMENT, FeeSource.SETTLEMENT_REPORT, "S-1", "3.00"),
        ])

        assert [(f.line_item_id, f.category) for f in fees] == [
            (1, FeeCategory.FBA_FULFILLMENT),
            (1, FeeCategory.REFERRAL),
            (2, FeeCategory.REFERRAL),
        ]
        assert all(f.order_id == "111-1" for f in fees)

    def test_empty(self):
        assert FeeAggregator().aggregate([]) == []


class TestResolveCategoryValues:
    """Test per-category values from stored contributions."""

    def test_precedence_per_category(self):
        amounts, sources = resolve_category_values([
            _contribution(FeeCategory.REFERRAL, FeeSource.FINANCIAL_EVENTS_API, "L-1", "1.00"),
            _contribution(FeeCategory.REFERRAL, FeeSource.SETTLEMENT_REPORT, "S-1", "1.10"),
            _contribution(FeeCategory.FBA_FULFILLMENT, FeeSource.FINANCIAL_EVENTS_API, "L-1", "3.40"),
            _contribution(FeeCategory.FBA_FULFILLMENT, FeeSource.FINANCIAL_EVENTS_API, "L-2", "-0.40"),
        ])

        assert amounts == {
            FeeCategory.REFERRAL: Decimal("1.10"),
            FeeCategory.FBA_FULFILLMENT: Decimal("3.00"),
        }
        assert sources == {
            FeeCategory.REFERRAL: FeeSource.SETTLEMENT_REPORT,
            FeeCategory.FBA_FULFILLMENT: FeeSource.FINANCIAL_EVENTS_API,
        }

    def test_estimates_alone_are_used(self):
        amounts, sources = resolve_category_values([
            _contribution(FeeCategory.REFERRAL, FeeSource.ESTIMATED, "estimate", "3.00"),
        ])

        assert amounts == {FeeCategory.REFERRAL: Decimal("3.00")}
        assert sources == {FeeCategory.REFERRAL: FeeSource.ESTIMATED}

    def test_estimates_dropped_once_actual_fees_exist(self):
        amounts, sources = resolve_category_values([
            _contribution(FeeCategory.REFERRAL, FeeSource.ESTIMATED, "estimate", "3.00"),
            _contribution(FeeCategory.FBA_FULFILLMENT, FeeSource.FINANCIAL_EVENTS_API, "L-1", "3.40"),
        ])

        assert amounts == {FeeCategory.FBA_FULFILLMENT: Decimal("3.40")}
        assert FeeCategory.REFERRAL not in sources

    def test_nothing_on_record(self):
        assert resolve_category_values([]) == ({}, {})
