"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.application.interfaces import IFeeFeedGateway
from core.application.services.fee_sync_service import FeeSyncService
from core.infrastructure.adapters.credentials.settings_credential_store import SettingsCredentialStore
from core.infrastructure.database.models import (
    Base,
    OrderItemModel,
    OrderModel,
    ProductModel,
)
from core.settings.modules import AmazonSettings, FeeSyncSettings
from orchestration import InMemoryEventBus, RunLockRegistry


# Use in-memory SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Reference "now" of every service-level test
NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)

SETTLEMENT_COLUMNS = (
    "settlement-id", "settlement-start-date", "settlement-end-date", "deposit-date",
    "total-amount", "currency", "transaction-type", "order-id", "merchant-order-id",
    "adjustment-id", "shipment-id", "marketplace-name", "amount-type",
    "amount-description", "amount", "fulfillment-id", "posted-date",
    "posted-date-time", "order-item-code", "merchant-order-item-id",
    "merchant-adjustment-item-id", "sku", "quantity-purchased", "promotion-id",
)


# =============================================================================
# DATABASE
# =============================================================================

@pytest_asyncio.fixture
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def test_session_factory(test_engine):
    """Create test session factory."""
    yield async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
def seed_order(test_session_factory):
    """
    Insert an order with its line items.

    Returns an async callable giving back the line item ids in insert order.
    """

    async def _seed(
        user_id: str,
        order_id: str,
        items: List[Dict[str, Any]],
        status: str = "Shipped",
        purchase_date: Optional[datetime] = None,
    ) -> List[int]:
        async with test_session_factory() as session:
            order = OrderModel(
                user_id=user_id,
                amazon_order_id=order_id,
                marketplace="ATVPDKIKX0DER",
                purchase_date=purchase_date or (NOW - timedelta(days=20)).replace(tzinfo=None),
                order_status=status,
            )
            for item in items:
                order.items.append(OrderItemModel(
                    amazon_order_item_id=item.get("order_item_id"),
                    sku=item.get("sku"),
                    asin=item.get("asin"),
                    quantity=item.get("quantity", 1),
                    item_price=item.get("item_price", Decimal("20.00")),
                ))
            session.add(order)
            await session.commit()
            return [item.id for item in order.items]

    return _seed


@pytest.fixture
def seed_product(test_session_factory):
    """Insert a product catalogue row."""

    async def _seed(user_id: str, sku: str, asin: Optional[str] = None) -> None:
        async with test_session_factory() as session:
            session.add(ProductModel(user_id=user_id, sku=sku, asin=asin, title=sku))
            await session.commit()

    return _seed


# =============================================================================
# FEED FAKES
# =============================================================================

class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeFeeGateway(IFeeFeedGateway):
    """
    In-memory SP-API gateway.

    - `reports`: settlement report dicts as getReports returns them
    - `documents`: document id -> document text
    - `ledger_events`: (event list name, event) pairs, served by PostedDate window;
      an optional third item gives the posting moment of events without one
    - `failures`: document id -> exceptions raised by successive downloads
    """

    def __init__(self) -> None:
        self.reports: List[Dict[str, Any]] = []
        self.documents: Dict[str, str] = {}
        self.ledger_events: List[tuple] = []
        self.failures: Dict[str, List[Exception]] = {}
        self.ledger_windows: List[tuple] = []
        self.downloads: List[str] = []

    def add_settlement(self, report_id: str, created: datetime, document: str) -> None:
        document_id = f"amzn1.spdoc.{report_id}"
        self.reports.append({
            "reportId": report_id,
            "reportType": "GET_V2_SETTLEMENT_REPORT_DATA_FLAT_FILE_V2",
            "processingStatus": "DONE",
            "createdTime": created.isoformat(),
            "reportDocumentId": document_id,
        })
        self.documents[document_id] = document

    def list_financial_events_page(self, posted_after, posted_before, next_token=None):
        self.ledger_windows.append((posted_after, posted_before))
        events: Dict[str, List[Dict[str, Any]]] = {}
        for list_name, event, *served_at in self.ledger_events:
            posted_raw = served_at[0] if served_at else event["PostedDate"]
            posted = datetime.fromisoformat(posted_raw.replace("Z", "+00:00"))
            if posted_after <= posted < posted_before:
                events.setdefault(list_name, []).append(event)
        return {"FinancialEvents": events}

    def list_settlement_reports_page(self, created_since, marketplace_ids, next_token=None):
        reports = [
            report for report in self.reports
            if datetime.fromisoformat(report["createdTime"]) >= created_since
        ]
        return {"reports": reports}

    def download_report_document(self, document_id: str) -> str:
        self.downloads.append(document_id)
        pending = self.failures.get(document_id)
        if pending:
            raise pending.pop(0)
        return self.documents[document_id]


def settlement_document(settlement_id: str, rows: List[Dict[str, str]], currency: str = "USD") -> str:
    """Build a tab-separated settlement flat file: summary row, then the given rows."""
    lines = ["\t".join(SETTLEMENT_COLUMNS)]
    summary = {
        "settlement-id": settlement_id,
        "settlement-start-date": "2026-09-01 00:00:00 UTC",
        "settlement-end-date": "2026-09-15 00:00:00 UTC",
        "deposit-date": "2026-09-17 00:00:00 UTC",
        "total-amount": "100.00",
        "currency": currency,
    }
    for row in [summary] + [{"settlement-id": settlement_id, **row} for row in rows]:
        lines.append("\t".join(row.get(column, "") for column in SETTLEMENT_COLUMNS))
    return "\n".join(lines) + "\n"


def shipment_event(
    order_id: str,
    posted: str,
    fees: Dict[str, str],
    sku: str = "SKU-A",
    order_item_id: Optional[str] = "OI-1",
    principal: str = "20.00",
) -> Dict[str, Any]:
    """Build a ShipmentEventList entry with one item, its principal and the given fees."""
    return {
        "AmazonOrderId": order_id,
        "PostedDate": posted,
        "MarketplaceName": "Amazon.com",
        "ShipmentItemList": [{
            "SellerSKU": sku,
            "OrderItemId": order_item_id,
            "QuantityShipped": 1,
            "ItemChargeList": [
                {"ChargeType": "Principal", "ChargeAmount": {"CurrencyCode": "USD", "CurrencyAmount": principal}},
            ],
            "ItemFeeList": [
                {"FeeType": fee_type, "FeeAmount": {"CurrencyCode": "USD", "CurrencyAmount": amount}}
                for fee_type, amount in fees.items()
            ],
        }],
    }


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_settlement_document():
    return settlement_document


@pytest.fixture
def make_shipment_event():
    return shipment_event


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def fake_gateway() -> FakeFeeGateway:
    return FakeFeeGateway()


# =============================================================================
# SERVICE
# =============================================================================

@pytest.fixture
def fee_sync_settings() -> FeeSyncSettings:
    """Settings without pacing or backoff delays."""
    return FeeSyncSettings(
        min_request_interval_seconds=0,
        max_attempts=3,
        backoff_base_seconds=0,
        write_batch_size=100,
        write_batch_delay_seconds=0,
    )


@pytest.fixture
def amazon_settings() -> AmazonSettings:
    return AmazonSettings(
        lwa_app_id="amzn1.application-oa2-client.test",
        lwa_client_secret="secret",
        refresh_token="Atzr|default-token",
        credentials={"seller-b": "Atzr|seller-b-token"},
    )


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def fee_sync_service(
    test_session_factory, fake_gateway, fee_sync_settings, amazon_settings, event_bus, fake_sleep
) -> FeeSyncService:
    """FeeSyncService over SQLite and the in-memory gateway."""
    tokens: List[str] = []

    def gateway_factory(refresh_token: str) -> IFeeFeedGateway:
        tokens.append(refresh_token)
        return fake_gateway

    service = FeeSyncService(
        session_factory=test_session_factory,
        credential_store=SettingsCredentialStore(amazon_settings),
        gateway_factory=gateway_factory,
        settings=fee_sync_settings,
        default_marketplace_ids=["ATVPDKIKX0DER"],
        event_bus=event_bus,
        locks=RunLockRegistry(),
        sleep=fake_sleep,
    )
    service.issued_tokens = tokens
    return service
