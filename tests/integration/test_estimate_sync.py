"""
Integration tests for fee estimates of pending orders.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from core.domain.enums import SyncRunState
from core.domain.value_objects import FeeCategory, FeeSource
from core.infrastructure.database.models import ProductModel


USER = "seller-1"
SHIPPED = "111-0000001-0000001"
PENDING = "111-0000002-0000002"


async def _product(session_factory, sku="SKU-A"):
    async with session_factory() as session:
        result = await session.execute(
            select(ProductModel).where(ProductModel.user_id == USER, ProductModel.sku == sku)
        )
        return result.scalar_one()


@pytest.mark.asyncio
async def test_fallback_rate_without_history(fee_sync_service, seed_order, now):
    await seed_order(
        USER, PENDING,
        [{"order_item_id": "OI-1", "sku": "SKU-A", "item_price": Decimal("20.00")}],
        status="Pending",
    )

    result = await fee_sync_service.estimate_pending_fees(USER, now=now)

    assert result.state == SyncRunState.DONE
    assert result.counters.fetched == 1
    [breakdown] = await fee_sync_service.get_breakdowns(USER, PENDING)
    assert breakdown.amount_for(FeeCategory.REFERRAL) == Decimal("3.00")
    assert breakdown.total_fee == Decimal("3.00")
    assert breakdown.authoritative_source == FeeSource.ESTIMATED


@pytest.mark.asyncio
async def test_shipped_orders_are_not_estimated(fee_sync_service, seed_order, now):
    await seed_order(USER, SHIPPED, [{"order_item_id": "OI-1", "sku": "SKU-A"}])

    result = await fee_sync_service.estimate_pending_fees(USER, now=now)

    assert result.chunks_processed == 0
    assert await fee_sync_service.get_breakdowns(USER, SHIPPED) == []


@pytest.mark.asyncio
async def test_estimates_follow_product_averages(
    fee_sync_service, fake_gateway, seed_order, seed_product, make_settlement_document,
    test_session_factory, now,
):
    await seed_product(USER, "SKU-A")
    await seed_order(
        USER, SHIPPED, [{"order_item_id": "OI-1", "sku": "SKU-A", "quantity": 2}],
        purchase_date=(now - timedelta(days=5)).replace(tzinfo=None),
    )
    common = {
        "transaction-type": "Order", "order-id": SHIPPED, "posted-date": "2026-09-28",
        "order-item-code": "OI-1", "sku": "SKU-A",
    }
    fake_gateway.add_settlement(
        "R1", datetime(2026, 9, 29, tzinfo=timezone.utc),
        make_settlement_document("S-1", [
            dict(common, **{"amount-type": "ItemFees", "amount-description": "FBAPerUnitFulfillmentFee", "amount": "-6.84"}),
            dict(common, **{"amount-type": "ItemFees", "amount-description": "Commission", "amount": "-2.20"}),
        ]),
    )
    await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)

    product = await _product(test_session_factory)
    assert Decimal(str(product.avg_fee_per_unit)) == Decimal("4.52")
    assert Decimal(str(product.avg_fba_fee_per_unit)) == Decimal("3.42")
    assert Decimal(str(product.avg_referral_fee_per_unit)) == Decimal("1.10")
    assert product.fee_data_updated_at is not None

    await seed_order(
        USER, PENDING, [{"order_item_id": "OI-7", "sku": "SKU-A", "quantity": 2}],
        status="Unshipped", purchase_date=(now - timedelta(days=1)).replace(tzinfo=None),
    )
    await fee_sync_service.estimate_pending_fees(USER, now=now)

    [breakdown] = await fee_sync_service.get_breakdowns(USER, PENDING)
    assert breakdown.amount_for(FeeCategory.FBA_FULFILLMENT) == Decimal("6.84")
    assert breakdown.amount_for(FeeCategory.REFERRAL) == Decimal("2.20")
    assert breakdown.total_fee == Decimal("9.04")
    assert breakdown.authoritative_source == FeeSource.ESTIMATED


@pytest.mark.asyncio
async def test_actual_fees_replace_estimates(
    fee_sync_service, fake_gateway, seed_order, make_shipment_event, now
):
    await seed_order(
        USER, PENDING, [{"order_item_id": "OI-1", "sku": "SKU-A", "item_price": Decimal("20.00")}],
        status="Pending",
    )
    await fee_sync_service.estimate_pending_fees(USER, now=now)

    fake_gateway.ledger_events.append(("ShipmentEventList", make_shipment_event(
        PENDING, "2026-09-30T00:00:00Z", {"FBAPerUnitFulfillmentFee": "-3.40"},
    )))
    await fee_sync_service.sync_ledger_fees(USER, months_back=1, now=now)

    [breakdown] = await fee_sync_service.get_breakdowns(USER, PENDING)
    assert breakdown.amount_for(FeeCategory.FBA_FULFILLMENT) == Decimal("3.40")
    assert breakdown.amount_for(FeeCategory.REFERRAL) == Decimal("0")
    assert breakdown.total_fee == Decimal("3.40")
    assert breakdown.authoritative_source == FeeSource.FINANCIAL_EVENTS_API

    # no longer pending reconciliation
    again = await fee_sync_service.estimate_pending_fees(USER, now=now)
    assert again.chunks_processed == 0


@pytest.mark.asyncio
async def test_estimate_rerun_keeps_one_estimate(fee_sync_service, seed_order, now):
    await seed_order(
        USER, PENDING, [{"order_item_id": "OI-1", "sku": "SKU-A", "item_price": Decimal("20.00")}],
        status="PartiallyShipped",
    )

    await fee_sync_service.estimate_pending_fees(USER, now=now)
    await fee_sync_service.estimate_pending_fees(USER, now=now)

    [breakdown] = await fee_sync_service.get_breakdowns(USER, PENDING)
    assert breakdown.total_fee == Decimal("3.00")
