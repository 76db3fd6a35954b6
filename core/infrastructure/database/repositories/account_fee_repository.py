"""
SQLAlchemy Account-Level Fee Repository.

Upserts month/category buckets of fees that have no order linkage.
"""
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
import logging

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.value_objects import AccountLevelFee, FeeCategory, FeeSource
from core.infrastructure.database.models import AccountLevelFeeModel


logger = logging.getLogger(__name__)


def _bucket_amount(contributions: Dict[str, Dict[str, str]]) -> tuple:
    """Return (amount, source) of the highest-precedence source present."""
    sources = [FeeSource(source) for source, batches in contributions.items() if batches]
    top = FeeSource.highest(sources)
    if top is None:
        return Decimal("0.00"), None
    amount = sum((Decimal(value) for value in contributions[top.value].values()), Decimal("0.00"))
    return amount, top


class SQLAlchemyAccountFeeRepository:
    """Account-level fee persistence. Commit is handled by the Unit of Work."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(
        self,
        user_id: str,
        period: str,
        category: FeeCategory,
        source: FeeSource,
        batch_amounts: Dict[str, Decimal],
        descriptions: Iterable[str] = (),
    ) -> AccountLevelFee:
        """
        Overwrite the given batches' contributions to one (period, category) bucket.

        Args:
            user_id: Owner
            period: YYYY-MM
            category: Fee category
            source: Feed the batches came from
            batch_amounts: {batch_id: run-scoped sum}
            descriptions: Vendor descriptions of the contributing rows

        Returns:
            The bucket after the write
        """
        result = await self.session.execute(
            select(AccountLevelFeeModel).where(
                and_(
                    AccountLevelFeeModel.user_id == user_id,
                    AccountLevelFeeModel.period == period,
                    AccountLevelFeeModel.category == category.value,
                )
            )
        )
        model = result.scalar_one_or_none()
        if model is None:
            model = AccountLevelFeeModel(
                user_id=user_id,
                period=period,
                category=category.value,
                source=source.value,
                contributions={},
                descriptions=[],
            )
            self.session.add(model)

        # JSON columns only persist on reassignment
        contributions = {k: dict(v) for k, v in (model.contributions or {}).items()}
        per_source = contributions.setdefault(source.value, {})
        for batch_id, amount in batch_amounts.items():
            per_source[batch_id] = str(amount)
        model.contributions = contributions
        model.descriptions = sorted(set(model.descriptions or []) | {d for d in descriptions if d})

        amount, top = _bucket_amount(contributions)
        model.amount = amount
        model.source = top.value if top else source.value
        await self.session.flush()

        logger.debug(f"Account-level fee {user_id}/{period}/{category.value} = {amount}")
        return self._to_domain(model)

    async def list_for_user(self, user_id: str, period: Optional[str] = None) -> List[AccountLevelFee]:
        query = select(AccountLevelFeeModel).where(AccountLevelFeeModel.user_id == user_id)
        if period:
            query = query.where(AccountLevelFeeModel.period == period)
        result = await self.session.execute(
            query.order_by(AccountLevelFeeModel.period, AccountLevelFeeModel.category)
        )
        return [self._to_domain(model) for model in result.scalars().all()]

    @staticmethod
    def _to_domain(model: AccountLevelFeeModel) -> AccountLevelFee:
        return AccountLevelFee(
            user_id=model.user_id,
            period=model.period,
            category=FeeCategory(model.category),
            amount=Decimal(str(model.amount)),
            source=FeeSource(model.source),
            description="; ".join(model.descriptions or []),
        )
