"""
SQLAlchemy Line Item Repository.

Read side of the external order store, plus the product fee-average
columns the estimator depends on.
"""
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
import logging

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.application.interfaces import ILineItemStore
from core.domain.entities import OrderLineItem, PendingLineItem
from core.domain.value_objects import FeeSource
from core.infrastructure.database.models import (
    LineItemFeeBreakdownModel,
    OrderItemModel,
    OrderModel,
    ProductModel,
)
from core.infrastructure.database.timestamps import to_db


logger = logging.getLogger(__name__)

PENDING_ORDER_STATUSES = ("Pending", "Unshipped", "PartiallyShipped")


def _to_line_item(item: OrderItemModel, order: OrderModel) -> OrderLineItem:
    return OrderLineItem(
        line_item_id=item.id,
        user_id=order.user_id,
        order_id=order.amazon_order_id,
        sku=item.sku,
        asin=item.asin,
        order_item_id=item.amazon_order_item_id,
        quantity=item.quantity or 1,
        item_price=Decimal(str(item.item_price or 0)),
        order_status=order.order_status,
    )


class SQLAlchemyLineItemRepository(ILineItemStore):
    """SQLAlchemy implementation of ILineItemStore."""

    def __init__(self, session: AsyncSession):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    async def get_line_items(
        self, user_id: str, order_ids: Iterable[str]
    ) -> Dict[str, List[OrderLineItem]]:
        order_ids = sorted(set(order_ids))
        if not order_ids:
            return {}

        result = await self.session.execute(
            select(OrderItemModel, OrderModel)
            .join(OrderModel, OrderItemModel.order_pk == OrderModel.id)
            .where(
                and_(
                    OrderModel.user_id == user_id,
                    OrderModel.amazon_order_id.in_(order_ids),
                )
            )
            .order_by(OrderItemModel.id)
        )

        items: Dict[str, List[OrderLineItem]] = defaultdict(list)
        for item, order in result.all():
            items[order.amazon_order_id].append(_to_line_item(item, order))

        logger.debug(
            f"Loaded line items for {len(items)}/{len(order_ids)} order(s) of user {user_id}"
        )
        return dict(items)

    async def find_pending_unreconciled(
        self,
        user_id: str,
        statuses: Sequence[str] = PENDING_ORDER_STATUSES,
        limit: int = 100,
        after_line_item_id: int = 0,
    ) -> List[PendingLineItem]:
        """
        Find line items of pending orders that have no actual fee data yet.

        A line item qualifies when it has no breakdown, or only an
        estimated one. Results are ordered by line item id so callers can
        page with `after_line_item_id`.
        """
        result = await self.session.execute(
            select(OrderItemModel, OrderModel, ProductModel)
            .join(OrderModel, OrderItemModel.order_pk == OrderModel.id)
            .outerjoin(
                LineItemFeeBreakdownModel,
                and_(
                    LineItemFeeBreakdownModel.line_item_id == OrderItemModel.id,
                    LineItemFeeBreakdownModel.user_id == OrderModel.user_id,
                ),
            )
            .outerjoin(
                ProductModel,
                and_(
                    ProductModel.user_id == OrderModel.user_id,
                    ProductModel.sku == OrderItemModel.sku,
                ),
            )
            .where(
                and_(
                    OrderModel.user_id == user_id,
                    OrderModel.order_status.in_(list(statuses)),
                    OrderItemModel.id > after_line_item_id,
                    or_(
                        LineItemFeeBreakdownModel.id.is_(None),
                        LineItemFeeBreakdownModel.authoritative_source.is_(None),
                        LineItemFeeBreakdownModel.authoritative_source == FeeSource.ESTIMATED.value,
                    ),
                )
            )
            .order_by(OrderItemModel.id)
            .limit(limit)
        )

        pending = []
        for item, order, product in result.all():
            pending.append(PendingLineItem(
                line_item=_to_line_item(item, order),
                avg_fee_per_unit=_decimal_or_none(product.avg_fee_per_unit) if product else None,
                avg_fba_fee_per_unit=_decimal_or_none(product.avg_fba_fee_per_unit) if product else None,
                avg_referral_fee_per_unit=(
                    _decimal_or_none(product.avg_referral_fee_per_unit) if product else None
                ),
            ))
        return pending

    async def refresh_product_fee_averages(
        self, user_id: str, window_days: int, now: datetime
    ) -> int:
        """
        Recompute per-unit fee averages for every product of a user.

        Only line items with actual (non-estimated) fee data from orders
        purchased within the window count.

        Returns:
            Number of products updated
        """
        since = to_db(now - timedelta(days=window_days))

        result = await self.session.execute(
            select(OrderItemModel.sku, OrderItemModel.quantity, LineItemFeeBreakdownModel)
            .join(OrderModel, OrderItemModel.order_pk == OrderModel.id)
            .join(
                LineItemFeeBreakdownModel,
                and_(
                    LineItemFeeBreakdownModel.line_item_id == OrderItemModel.id,
                    LineItemFeeBreakdownModel.user_id == OrderModel.user_id,
                ),
            )
            .where(
                and_(
                    OrderModel.user_id == user_id,
                    OrderModel.purchase_date >= since,
                    OrderItemModel.sku.is_not(None),
                    LineItemFeeBreakdownModel.authoritative_source.is_not(None),
                    LineItemFeeBreakdownModel.authoritative_source != FeeSource.ESTIMATED.value,
                )
            )
        )

        totals: Dict[str, Dict[str, Decimal]] = defaultdict(
            lambda: {"units": Decimal("0"), "total": Decimal("0"), "fba": Decimal("0"), "referral": Decimal("0")}
        )
        for sku, quantity, breakdown in result.all():
            bucket = totals[sku]
            bucket["units"] += Decimal(quantity or 1)
            bucket["total"] += Decimal(str(breakdown.total_fee))
            bucket["fba"] += Decimal(str(breakdown.fba_fulfillment_fee))
            bucket["referral"] += Decimal(str(breakdown.referral_fee))

        if not totals:
            return 0

        products = await self.session.execute(
            select(ProductModel).where(
                and_(ProductModel.user_id == user_id, ProductModel.sku.in_(list(totals)))
            )
        )

        updated = 0
        for product in products.scalars().all():
            bucket = totals[product.sku]
            units = bucket["units"]
            product.avg_fee_per_unit = (bucket["total"] / units).quantize(Decimal("0.0001"))
            product.avg_fba_fee_per_unit = (bucket["fba"] / units).quantize(Decimal("0.0001"))
            product.avg_referral_fee_per_unit = (bucket["referral"] / units).quantize(Decimal("0.0001"))
            product.fee_data_updated_at = to_db(now)
            updated += 1

        logger.info(f"✅ Refreshed fee averages for {updated} product(s) of user {user_id}")
        return updated


def _decimal_or_none(value) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


class SessionScopedLineItemStore(ILineItemStore):
    """ILineItemStore that opens a short-lived session per lookup."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def get_line_items(
        self, user_id: str, order_ids: Iterable[str]
    ) -> Dict[str, List[OrderLineItem]]:
        async with self._session_factory() as session:
            return await SQLAlchemyLineItemRepository(session).get_line_items(user_id, order_ids)
