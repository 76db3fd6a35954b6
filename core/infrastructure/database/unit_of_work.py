"""
Unit of Work Pattern Implementation.

Manages database transactions and repository lifecycle.
"""
from typing import Optional
import logging
from sqlalchemy.ext.asyncio import AsyncSession

from core.infrastructure.database.repositories import (
    SQLAlchemyAccountFeeRepository,
    SQLAlchemyFeeBreakdownRepository,
    SQLAlchemyLineItemRepository,
    SQLAlchemyProcessedSettlementRepository,
    SQLAlchemySyncRunRepository,
)


logger = logging.getLogger(__name__)


class UnitOfWork:
    """
    Unit of Work pattern implementation.

    Manages database session lifecycle and transactions.
    Provides access to repositories within a transaction context.

    Usage:
        async with UnitOfWork(session) as uow:
            await uow.breakdowns.save(breakdown)
            await uow.commit()
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize Unit of Work.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session
        self._line_items: Optional[SQLAlchemyLineItemRepository] = None
        self._breakdowns: Optional[SQLAlchemyFeeBreakdownRepository] = None
        self._account_fees: Optional[SQLAlchemyAccountFeeRepository] = None
        self._sync_runs: Optional[SQLAlchemySyncRunRepository] = None
        self._processed_settlements: Optional[SQLAlchemyProcessedSettlementRepository] = None

    async def __aenter__(self):
        """Enter async context."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """
        Exit async context.

        Rolls back transaction if exception occurred.
        """
        if exc_type is not None:
            logger.error(f"Transaction failed: {exc_val}")
            await self.rollback()

        # Don't close session here - it's managed externally

    @property
    def line_items(self) -> SQLAlchemyLineItemRepository:
        if self._line_items is None:
            self._line_items = SQLAlchemyLineItemRepository(self.session)
        return self._line_items

    @property
    def breakdowns(self) -> SQLAlchemyFeeBreakdownRepository:
        if self._breakdowns is None:
            self._breakdowns = SQLAlchemyFeeBreakdownRepository(self.session)
        return self._breakdowns

    @property
    def account_fees(self) -> SQLAlchemyAccountFeeRepository:
        if self._account_fees is None:
            self._account_fees = SQLAlchemyAccountFeeRepository(self.session)
        return self._account_fees

    @property
    def sync_runs(self) -> SQLAlchemySyncRunRepository:
        if self._sync_runs is None:
            self._sync_runs = SQLAlchemySyncRunRepository(self.session)
        return self._sync_runs

    @property
    def processed_settlements(self) -> SQLAlchemyProcessedSettlementRepository:
        if self._processed_settlements is None:
            self._processed_settlements = SQLAlchemyProcessedSettlementRepository(self.session)
        return self._processed_settlements

    async def commit(self):
        """Commit transaction."""
        try:
            await self.session.commit()
            logger.debug("✅ Transaction committed")
        except Exception as e:
            logger.error(f"❌ Commit failed: {e}")
            await self.rollback()
            raise

    async def rollback(self):
        """Rollback transaction."""
        await self.session.rollback()
        logger.warning("Transaction rolled back")
