"""
SQLAlchemy Fee Breakdown Repository.

Persists per-line-item fee breakdowns and the per-(source, batch)
contributions they are derived from.
"""
from decimal import Decimal
from typing import Dict, List, Optional
import logging

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.entities import LineItemFeeBreakdown
from core.domain.value_objects import FeeCategory, FeeContribution, FeeSource
from core.infrastructure.database.models import (
    CATEGORY_COLUMNS,
    FeeContributionModel,
    LineItemFeeBreakdownModel,
)
from core.infrastructure.database.timestamps import from_db, to_db


logger = logging.getLogger(__name__)


class SQLAlchemyFeeBreakdownRepository:
    """Breakdown and contribution persistence. Commit is handled by the Unit of Work."""

    def __init__(self, session: AsyncSession):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    # -------------------------------------------------------------------------
    # Contributions
    # -------------------------------------------------------------------------

    async def upsert_contribution(self, user_id: str, contribution: FeeContribution) -> None:
        """Insert or overwrite the contribution with the same key."""
        result = await self.session.execute(
            select(FeeContributionModel).where(
                and_(
                    FeeContributionModel.user_id == user_id,
                    FeeContributionModel.line_item_id == contribution.line_item_id,
                    FeeContributionModel.category == contribution.category.value,
                    FeeContributionModel.source == contribution.source.value,
                    FeeContributionModel.batch_id == contribution.batch_id,
                )
            )
        )
        existing = result.scalar_one_or_none()

        if existing:
            existing.amount = contribution.amount
        else:
            self.session.add(FeeContributionModel(
                user_id=user_id,
                line_item_id=contribution.line_item_id,
                category=contribution.category.value,
                source=contribution.source.value,
                batch_id=contribution.batch_id,
                amount=contribution.amount,
            ))
        await self.session.flush()

    async def contributions_for(self, user_id: str, line_item_id: int) -> List[FeeContribution]:
        result = await self.session.execute(
            select(FeeContributionModel)
            .where(
                and_(
                    FeeContributionModel.user_id == user_id,
                    FeeContributionModel.line_item_id == line_item_id,
                )
            )
            .order_by(FeeContributionModel.id)
        )
        return [
            FeeContribution(
                line_item_id=row.line_item_id,
                category=FeeCategory(row.category),
                source=FeeSource(row.source),
                batch_id=row.batch_id,
                amount=Decimal(str(row.amount)),
            )
            for row in result.scalars().all()
        ]

    # -------------------------------------------------------------------------
    # Breakdowns
    # -------------------------------------------------------------------------

    async def get(self, user_id: str, line_item_id: int) -> Optional[LineItemFeeBreakdown]:
        model = await self._get_model(user_id, line_item_id)
        return self._to_domain(model) if model else None

    async def list_for_order(self, user_id: str, order_id: str) -> List[LineItemFeeBreakdown]:
        result = await self.session.execute(
            select(LineItemFeeBreakdownModel)
            .where(
                and_(
                    LineItemFeeBreakdownModel.user_id == user_id,
                    LineItemFeeBreakdownModel.order_id == order_id,
                )
            )
            .order_by(LineItemFeeBreakdownModel.line_item_id)
        )
        return [self._to_domain(model) for model in result.scalars().all()]

    async def save(self, breakdown: LineItemFeeBreakdown) -> None:
        """
        Save or update a breakdown.

        Every category column is written, so the stored total always
        matches the stored fields.
        """
        model = await self._get_model(breakdown.user_id, breakdown.line_item_id)
        if model is None:
            model = LineItemFeeBreakdownModel(
                user_id=breakdown.user_id,
                order_id=breakdown.order_id,
                line_item_id=breakdown.line_item_id,
            )
            self.session.add(model)

        for category, column in CATEGORY_COLUMNS.items():
            setattr(model, column, breakdown.amount_for(category))

        model.total_fee = breakdown.total_fee
        model.authoritative_source = (
            breakdown.authoritative_source.value if breakdown.authoritative_source else None
        )
        model.category_sources = {
            category.value: source.value
            for category, source in sorted(breakdown.category_sources.items(), key=lambda kv: kv[0].value)
        }
        model.synced_at = to_db(breakdown.synced_at)
        await self.session.flush()

    async def _get_model(self, user_id: str, line_item_id: int) -> Optional[LineItemFeeBreakdownModel]:
        result = await self.session.execute(
            select(LineItemFeeBreakdownModel).where(
                and_(
                    LineItemFeeBreakdownModel.user_id == user_id,
                    LineItemFeeBreakdownModel.line_item_id == line_item_id,
                )
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _to_domain(model: LineItemFeeBreakdownModel) -> LineItemFeeBreakdown:
        amounts: Dict[FeeCategory, Decimal] = {
            category: Decimal(str(getattr(model, column) or 0))
            for category, column in CATEGORY_COLUMNS.items()
        }
        return LineItemFeeBreakdown(
            user_id=model.user_id,
            order_id=model.order_id,
            line_item_id=model.line_item_id,
            amounts=amounts,
            category_sources={
                FeeCategory(category): FeeSource(source)
                for category, source in (model.category_sources or {}).items()
            },
            total_fee=Decimal(str(model.total_fee or 0)),
            authoritative_source=(
                FeeSource(model.authoritative_source) if model.authoritative_source else None
            ),
            synced_at=from_db(model.synced_at),
        )
