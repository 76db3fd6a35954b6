"""
Account-Level Fee Recorder.

Fees without order linkage (storage, disposal, removal, subscription
and the like) are bucketed per posted month and category.
"""
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Set, Tuple
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.domain.value_objects import AccountLevelFee, CanonicalFeeEvent, FeeCategory, FeeSource
from core.infrastructure.database.unit_of_work import UnitOfWork


logger = logging.getLogger(__name__)

BucketKey = Tuple[str, FeeCategory, FeeSource]


class AccountFeeRecorder:
    """Upserts account-level fee buckets."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def bucket(events: Iterable[CanonicalFeeEvent]) -> Dict[BucketKey, Tuple[Dict[str, Decimal], Set[str]]]:
        """Sum events per (period, category, source) and batch."""
        buckets: Dict[BucketKey, Tuple[Dict[str, Decimal], Set[str]]] = defaultdict(
            lambda: (defaultdict(lambda: Decimal("0.00")), set())
        )
        for event in events:
            batch_amounts, descriptions = buckets[(event.period, event.category, event.source)]
            batch_amounts[event.batch_id] += event.amount
            if event.description:
                descriptions.add(event.description)
        return buckets

    async def record(self, user_id: str, events: List[CanonicalFeeEvent]) -> List[AccountLevelFee]:
        """
        Record a chunk's account-level events in one transaction.

        Args:
            user_id: Owner
            events: Account-level events

        Returns:
            Buckets as stored after the write
        """
        if not events:
            return []

        stored: List[AccountLevelFee] = []
        async with self._session_factory() as session:
            async with UnitOfWork(session) as uow:
                for (period, category, source), (batch_amounts, descriptions) in sorted(
                    self.bucket(events).items(),
                    key=lambda kv: (kv[0][0], kv[0][1].value, kv[0][2].value),
                ):
                    stored.append(await uow.account_fees.upsert(
                        user_id,
                        period,
                        category,
                        source,
                        dict(batch_amounts),
                        descriptions,
                    ))
                await uow.commit()

        logger.info(
            f"[ACCOUNT] User {user_id}: {len(events)} account-level fee(s) "
            f"in {len(stored)} bucket(s)"
        )
        return stored
