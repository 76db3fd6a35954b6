"""
SQLAlchemy Sync Run Repository.

Persists sync runs and the processed-settlement resume cursor.
"""
from typing import Optional
import logging

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.entities import SyncCounters, SyncRun
from core.domain.enums import SyncKind, SyncRunState
from core.domain.value_objects import ExecutionID
from core.infrastructure.database.models import ProcessedSettlementModel, SyncRunModel
from core.infrastructure.database.timestamps import from_db, to_db


logger = logging.getLogger(__name__)


class SQLAlchemySyncRunRepository:
    """Sync run persistence."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, run: SyncRun) -> None:
        """Save or update a run, keyed by run id."""
        model = await self.session.get(SyncRunModel, str(run.run_id))
        if model is None:
            model = SyncRunModel(run_id=str(run.run_id), user_id=run.user_id, kind=run.kind.value)
            self.session.add(model)

        model.state = run.state.value
        model.counters = run.counters.to_dict()
        model.error = run.error
        model.started_at = to_db(run.started_at)
        model.finished_at = to_db(run.finished_at)
        await self.session.flush()

    async def get(self, run_id: str) -> Optional[SyncRun]:
        model = await self.session.get(SyncRunModel, run_id)
        if model is None:
            return None
        return SyncRun(
            run_id=ExecutionID.from_string(model.run_id),
            user_id=model.user_id,
            kind=SyncKind(model.kind),
            state=SyncRunState(model.state),
            counters=SyncCounters.from_dict(model.counters),
            error=model.error,
            started_at=from_db(model.started_at),
            finished_at=from_db(model.finished_at),
        )


class SQLAlchemyProcessedSettlementRepository:
    """Settlement documents already reconciled for a user."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def is_processed(self, user_id: str, report_id: str) -> bool:
        result = await self.session.execute(
            select(ProcessedSettlementModel.id).where(
                and_(
                    ProcessedSettlementModel.user_id == user_id,
                    ProcessedSettlementModel.report_id == report_id,
                )
            )
        )
        return result.scalar_one_or_none() is not None

    async def mark_processed(
        self, user_id: str, report_id: str, settlement_id: Optional[str], row_count: int
    ) -> None:
        if await self.is_processed(user_id, report_id):
            return
        self.session.add(ProcessedSettlementModel(
            user_id=user_id,
            report_id=report_id,
            settlement_id=settlement_id,
            row_count=row_count,
        ))
        await self.session.flush()
        logger.info(f"✅ Marked settlement report {report_id} processed for user {user_id}")
