"""
Integration tests for settlement fee sync runs.

Settlement documents are served by the in-memory gateway; everything
below it (parsing, matching, writing, run tracking) is real.
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from core.domain.enums import SyncKind, SyncRunState
from core.domain.exceptions import FeedRequestError, SyncAlreadyRunningError, TransientFeedError
from core.domain.value_objects import FeeCategory, FeeSource


USER = "seller-1"
ORDER = "111-0000001-0000001"


def _order_rows(order_id=ORDER, fba="-3.42", commission="-1.10", posted="2026-09-10"):
    common = {
        "transaction-type": "Order", "order-id": order_id, "posted-date": posted,
        "order-item-code": "OI-1", "sku": "SKU-A",
    }
    return [
        dict(common, **{"amount-type": "ItemPrice", "amount-description": "Principal", "amount": "20.00"}),
        dict(common, **{"amount-type": "ItemFees", "amount-description": "FBAPerUnitFulfillmentFee", "amount": fba}),
        dict(common, **{"amount-type": "ItemFees", "amount-description": "Commission", "amount": commission}),
    ]


STORAGE_ROW = {
    "transaction-type": "other-transaction", "amount-type": "other-transaction",
    "amount-description": "Storage Fee", "amount": "-12.50", "posted-date": "2026-09-15",
}

TRANSFER_ROW = {"transaction-type": "Transfer", "amount": "-500.00", "posted-date": "2026-09-16"}


@pytest.mark.asyncio
async def test_settled_fees_land_on_line_item(
    fee_sync_service, fake_gateway, seed_order, make_settlement_document, now
):
    await seed_order(USER, ORDER, [{"order_item_id": "OI-1", "sku": "SKU-A"}])
    fake_gateway.add_settlement(
        "R1", datetime(2026, 9, 20, tzinfo=timezone.utc), make_settlement_document("S-1", _order_rows())
    )

    result = await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)

    assert result.state == SyncRunState.DONE
    assert result.kind == SyncKind.SETTLEMENT
    assert result.chunks_processed == 1
    assert result.counters.matched == 2
    assert result.counters.updated == 1
    assert result.counters.non_fee_skipped == 1

    [breakdown] = await fee_sync_service.get_breakdowns(USER, ORDER)
    assert breakdown.amount_for(FeeCategory.FBA_FULFILLMENT) == Decimal("3.42")
    assert breakdown.amount_for(FeeCategory.REFERRAL) == Decimal("1.10")
    assert breakdown.total_fee == Decimal("4.52")
    assert breakdown.authoritative_source == FeeSource.SETTLEMENT_REPORT
    assert fee_sync_service.issued_tokens == ["Atzr|default-token"]


@pytest.mark.asyncio
async def test_transfers_never_count_as_fees(
    fee_sync_service, fake_gateway, seed_order, make_settlement_document, now
):
    await seed_order(USER, ORDER, [{"order_item_id": "OI-1", "sku": "SKU-A"}])
    fake_gateway.add_settlement(
        "R1", datetime(2026, 9, 20, tzinfo=timezone.utc),
        make_settlement_document("S-1", _order_rows() + [TRANSFER_ROW]),
    )

    result = await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)

    assert result.counters.transfers_skipped == 1
    [breakdown] = await fee_sync_service.get_breakdowns(USER, ORDER)
    assert breakdown.total_fee == Decimal("4.52")
    assert await fee_sync_service.get_account_level_fees(USER) == []


@pytest.mark.asyncio
async def test_fee_without_order_is_account_level(
    fee_sync_service, fake_gateway, make_settlement_document, now
):
    fake_gateway.add_settlement(
        "R1", datetime(2026, 9, 20, tzinfo=timezone.utc), make_settlement_document("S-1", [STORAGE_ROW])
    )

    result = await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)

    assert result.state == SyncRunState.DONE
    assert result.counters.account_level == 1
    assert result.counters.updated == 0

    [fee] = await fee_sync_service.get_account_level_fees(USER, "2026-09")
    assert fee.category == FeeCategory.STORAGE
    assert fee.amount == Decimal("12.50")
    assert fee.source == FeeSource.SETTLEMENT_REPORT
    assert fee.description == "Storage Fee"
    assert await fee_sync_service.get_account_level_fees(USER, "2026-08") == []


@pytest.mark.asyncio
async def test_unknown_order_counted_unmatched(
    fee_sync_service, fake_gateway, make_settlement_document, now
):
    fake_gateway.add_settlement(
        "R1", datetime(2026, 9, 20, tzinfo=timezone.utc),
        make_settlement_document("S-1", _order_rows(order_id="111-9999999-9999999")),
    )

    result = await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)

    assert result.state == SyncRunState.DONE
    assert result.counters.unmatched == 2
    assert result.counters.matched == 0
    assert await fee_sync_service.get_breakdowns(USER, "111-9999999-9999999") == []


@pytest.mark.asyncio
async def test_processed_documents_are_skipped_on_wider_backfill(
    fee_sync_service, fake_gateway, seed_order, make_settlement_document, now
):
    await seed_order(USER, ORDER, [{"order_item_id": "OI-1", "sku": "SKU-A"}])
    await seed_order(USER, "111-0000002-0000002", [{"order_item_id": "OI-1", "sku": "SKU-A"}])
    fake_gateway.add_settlement(
        "R1", datetime(2026, 9, 5, tzinfo=timezone.utc), make_settlement_document("S-1", _order_rows())
    )
    fake_gateway.add_settlement(
        "R2", datetime(2026, 5, 10, tzinfo=timezone.utc),
        make_settlement_document("S-2", _order_rows(order_id="111-0000002-0000002", posted="2026-05-01")),
    )

    first = await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)
    second = await fee_sync_service.sync_settlement_fees(USER, months_back=6, now=now)

    assert first.chunks_processed == 1
    assert second.chunks_processed == 1
    assert second.counters.documents_skipped == 1
    assert fake_gateway.downloads == ["amzn1.spdoc.R1", "amzn1.spdoc.R2"]

    [older] = await fee_sync_service.get_breakdowns(USER, "111-0000002-0000002")
    assert older.total_fee == Decimal("4.52")
    [newer] = await fee_sync_service.get_breakdowns(USER, ORDER)
    assert newer.total_fee == Decimal("4.52")


@pytest.mark.asyncio
async def test_rerun_is_a_no_op(fee_sync_service, fake_gateway, seed_order, make_settlement_document, now):
    await seed_order(USER, ORDER, [{"order_item_id": "OI-1", "sku": "SKU-A"}])
    fake_gateway.add_settlement(
        "R1", datetime(2026, 9, 20, tzinfo=timezone.utc), make_settlement_document("S-1", _order_rows())
    )

    await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)
    again = await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)

    assert again.state == SyncRunState.DONE
    assert again.chunks_processed == 0
    assert again.counters.documents_skipped == 1
    [breakdown] = await fee_sync_service.get_breakdowns(USER, ORDER)
    assert breakdown.total_fee == Decimal("4.52")


@pytest.mark.asyncio
async def test_throttled_download_is_retried(
    fee_sync_service, fake_gateway, seed_order, make_settlement_document, fake_sleep, now
):
    await seed_order(USER, ORDER, [{"order_item_id": "OI-1", "sku": "SKU-A"}])
    fake_gateway.add_settlement(
        "R1", datetime(2026, 9, 20, tzinfo=timezone.utc), make_settlement_document("S-1", _order_rows())
    )
    fake_gateway.failures["amzn1.spdoc.R1"] = [TransientFeedError("throttled", 429)]

    result = await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)

    assert result.state == SyncRunState.DONE
    assert result.counters.documents_failed == 0
    assert fake_gateway.downloads == ["amzn1.spdoc.R1", "amzn1.spdoc.R1"]
    assert len(fake_sleep.delays) == 1


@pytest.mark.asyncio
async def test_failed_download_fails_only_that_document(
    fee_sync_service, fake_gateway, seed_order, make_settlement_document, now
):
    await seed_order(USER, ORDER, [{"order_item_id": "OI-1", "sku": "SKU-A"}])
    fake_gateway.add_settlement(
        "R1", datetime(2026, 9, 5, tzinfo=timezone.utc), make_settlement_document("S-1", [STORAGE_ROW])
    )
    fake_gateway.add_settlement(
        "R2", datetime(2026, 9, 20, tzinfo=timezone.utc), make_settlement_document("S-2", _order_rows())
    )
    fake_gateway.failures["amzn1.spdoc.R1"] = [FeedRequestError("document expired", 404)]

    result = await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)

    assert result.state == SyncRunState.DONE
    assert result.counters.documents_failed == 1
    assert result.chunks_processed == 2
    [breakdown] = await fee_sync_service.get_breakdowns(USER, ORDER)
    assert breakdown.total_fee == Decimal("4.52")

    # the failed document is picked up by the next run
    retry = await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)
    assert retry.counters.documents_skipped == 1
    assert retry.counters.account_level == 1


@pytest.mark.asyncio
async def test_malformed_document_is_abandoned(fee_sync_service, fake_gateway, now):
    fake_gateway.add_settlement(
        "R1", datetime(2026, 9, 20, tzinfo=timezone.utc), "foo\tbar\n1\t2\n"
    )

    result = await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)

    assert result.state == SyncRunState.DONE
    assert result.counters.documents_failed == 1
    assert not await fee_sync_service.is_settlement_processed(USER, "R1")


@pytest.mark.asyncio
async def test_unknown_credential_fails_run(fee_sync_service, fake_gateway, make_settlement_document, now):
    fake_gateway.add_settlement(
        "R1", datetime(2026, 9, 20, tzinfo=timezone.utc), make_settlement_document("S-1", _order_rows())
    )

    result = await fee_sync_service.sync_settlement_fees(USER, credential_ref="nobody", months_back=3, now=now)

    assert result.state == SyncRunState.FAILED
    assert result.error.startswith("authentication failed")
    assert fake_gateway.downloads == []

    run = await fee_sync_service.get_run(str(result.execution_id))
    assert run.state == SyncRunState.FAILED
    assert run.finished_at is not None


@pytest.mark.asyncio
async def test_named_credential_ref(fee_sync_service, fake_gateway, now):
    result = await fee_sync_service.sync_settlement_fees(USER, credential_ref="seller-b", months_back=3, now=now)

    assert result.state == SyncRunState.DONE
    assert result.chunks_processed == 0
    assert fee_sync_service.issued_tokens == ["Atzr|seller-b-token"]


@pytest.mark.asyncio
async def test_concurrent_run_of_same_kind_rejected(fee_sync_service, now):
    async with fee_sync_service.locks.acquire(USER, SyncKind.SETTLEMENT):
        with pytest.raises(SyncAlreadyRunningError):
            await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)

        # other users are unaffected
        other = await fee_sync_service.sync_settlement_fees("seller-2", months_back=3, now=now)
        assert other.state == SyncRunState.DONE


@pytest.mark.asyncio
async def test_run_is_persisted_with_counters(
    fee_sync_service, fake_gateway, seed_order, make_settlement_document, now
):
    await seed_order(USER, ORDER, [{"order_item_id": "OI-1", "sku": "SKU-A"}])
    fake_gateway.add_settlement(
        "R1", datetime(2026, 9, 20, tzinfo=timezone.utc), make_settlement_document("S-1", _order_rows())
    )

    result = await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)
    run = await fee_sync_service.get_run(str(result.execution_id))

    assert run.state == SyncRunState.DONE
    assert run.kind == SyncKind.SETTLEMENT
    assert run.counters == result.counters
    assert await fee_sync_service.get_run("00000000-0000-0000-0000-000000000000") is None


@pytest.mark.asyncio
async def test_lifecycle_events_published(fee_sync_service, event_bus, now):
    received = []

    async def handler(event):
        received.append(event)

    for name in ("fee_sync.started", "fee_sync.state_changed", "fee_sync.finished"):
        event_bus.subscribe(name, handler)

    await fee_sync_service.sync_settlement_fees(USER, months_back=3, now=now)

    assert [event.name for event in received] == [
        "fee_sync.started",
        "fee_sync.state_changed",
        "fee_sync.state_changed",
        "fee_sync.finished",
    ]
    assert received[-1].payload["state"] == "done"
    assert received[0].metadata.user_id == USER
