"""
SQLAlchemy ORM Models.

Maps the external order store and the fee reconciliation state to tables.
"""
from datetime import datetime
from sqlalchemy import (
    Column, String, DateTime, Integer, Numeric,
    Text, Index, ForeignKey, UniqueConstraint, JSON
)
from sqlalchemy.orm import declarative_base, relationship

from core.domain.value_objects import FeeCategory


Base = declarative_base()


def _money_column():
    return Column(Numeric(15, 2), nullable=False, default=0)


# =============================================================================
# EXTERNAL ORDER STORE (populated by the order sync, read by the engine)
# =============================================================================

class OrderModel(Base):
    """Marketplace order as stored by the order sync."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    amazon_order_id = Column(String(255), nullable=False, index=True)

    marketplace = Column(String(50), nullable=True)
    purchase_date = Column(DateTime, nullable=False)
    order_status = Column(String(50), nullable=False, default="Pending", index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    items = relationship("OrderItemModel", back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("user_id", "amazon_order_id", name="uq_orders_user_order"),
    )

    def __repr__(self):
        return f"<OrderModel(id={self.id}, order_id={self.amazon_order_id}, status={self.order_status})>"


class OrderItemModel(Base):
    """Line item of an order. `id` is the line item id fees are matched to."""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_pk = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)

    amazon_order_item_id = Column(String(255), nullable=True, index=True)
    sku = Column(String(255), nullable=True, index=True)
    asin = Column(String(20), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    item_price = Column(Numeric(15, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")

    order = relationship("OrderModel", back_populates="items")

    def __repr__(self):
        return f"<OrderItemModel(id={self.id}, sku={self.sku}, quantity={self.quantity})>"


class ProductModel(Base):
    """
    Product catalogue row.

    The engine only writes the avg_* fee columns.
    """

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    sku = Column(String(255), nullable=False)
    asin = Column(String(20), nullable=True)
    title = Column(String(500), nullable=True)

    avg_fee_per_unit = Column(Numeric(15, 4), nullable=True)
    avg_fba_fee_per_unit = Column(Numeric(15, 4), nullable=True)
    avg_referral_fee_per_unit = Column(Numeric(15, 4), nullable=True)
    fee_data_updated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "sku", name="uq_products_user_sku"),
    )


# =============================================================================
# FEE RECONCILIATION STATE
# =============================================================================

class LineItemFeeBreakdownModel(Base):
    """
    Per-line-item fee state, one numeric column per fee category.

    total_fee always equals the sum of the category columns.
    """

    __tablename__ = "line_item_fee_breakdowns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    order_id = Column(String(255), nullable=False, index=True)
    line_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=False)

    fba_fulfillment_fee = _money_column()
    referral_fee = _money_column()
    storage_fee = _money_column()
    long_term_storage_fee = _money_column()
    mcf_fee = _money_column()
    inbound_fee = _money_column()
    removal_fee = _money_column()
    disposal_fee = _money_column()
    digital_services_fee = _money_column()
    refund_commission_fee = _money_column()
    promotion_fee = _money_column()
    reimbursement_damaged = _money_column()
    reimbursement_lost = _money_column()
    reimbursement_reversal = _money_column()
    refunded_referral = _money_column()
    other_fee = _money_column()

    total_fee = _money_column()
    authoritative_source = Column(String(50), nullable=True, index=True)
    # {category: source} of the value currently held by each category column
    category_sources = Column(JSON, nullable=False, default=dict)

    synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "line_item_id", name="uq_breakdowns_user_line_item"),
    )


CATEGORY_COLUMNS = {
    FeeCategory.FBA_FULFILLMENT: "fba_fulfillment_fee",
    FeeCategory.REFERRAL: "referral_fee",
    FeeCategory.STORAGE: "storage_fee",
    FeeCategory.LONG_TERM_STORAGE: "long_term_storage_fee",
    FeeCategory.MCF: "mcf_fee",
    FeeCategory.INBOUND: "inbound_fee",
    FeeCategory.REMOVAL: "removal_fee",
    FeeCategory.DISPOSAL: "disposal_fee",
    FeeCategory.DIGITAL_SERVICES: "digital_services_fee",
    FeeCategory.REFUND_COMMISSION: "refund_commission_fee",
    FeeCategory.PROMOTION: "promotion_fee",
    FeeCategory.REIMBURSEMENT_DAMAGED: "reimbursement_damaged",
    FeeCategory.REIMBURSEMENT_LOST: "reimbursement_lost",
    FeeCategory.REIMBURSEMENT_REVERSAL: "reimbursement_reversal",
    FeeCategory.REFUNDED_REFERRAL: "refunded_referral",
    FeeCategory.OTHER: "other_fee",
}


class FeeContributionModel(Base):
    """
    Partial sum one (source, batch) contributed to one line item category.

    Upserts overwrite by key, so re-reading a document or an overlapping
    ledger window replaces its own contribution instead of adding to it.
    """

    __tablename__ = "fee_contributions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False)
    line_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=False)
    category = Column(String(50), nullable=False)
    source = Column(String(50), nullable=False)
    batch_id = Column(String(255), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "line_item_id", "category", "source", "batch_id",
            name="uq_contributions_key",
        ),
        Index("ix_contributions_user_line_item", "user_id", "line_item_id"),
    )


class AccountLevelFeeModel(Base):
    """
    Fee with no order linkage, bucketed by month and category.

    `contributions` holds {source: {batch_id: amount}}; `amount` is the sum
    of the highest-precedence source present.
    """

    __tablename__ = "account_level_fees"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    period = Column(String(7), nullable=False)  # YYYY-MM
    category = Column(String(50), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False, default=0)
    source = Column(String(50), nullable=False)
    contributions = Column(JSON, nullable=False, default=dict)
    descriptions = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "period", "category", name="uq_account_fees_key"),
    )


class ProcessedSettlementModel(Base):
    """Settlement documents already fully reconciled (resume cursor)."""

    __tablename__ = "processed_settlements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    report_id = Column(String(255), nullable=False)
    settlement_id = Column(String(255), nullable=True)
    row_count = Column(Integer, nullable=False, default=0)
    processed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "report_id", name="uq_processed_settlements_key"),
    )


class SyncRunModel(Base):
    """One fee sync invocation and its counters."""

    __tablename__ = "sync_runs"

    run_id = Column(String(36), primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    state = Column(String(20), nullable=False, index=True)
    counters = Column(JSON, nullable=False, default=dict)
    error = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<SyncRunModel(run_id={self.run_id}, kind={self.kind}, state={self.state})>"
