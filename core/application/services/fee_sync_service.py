"""
Fee Sync Service.

High-level service that runs fee reconciliation for one seller.
This is a facade over the adapters, the orchestrator and the writers,
providing a simple API:

    service = FeeSyncService(session_factory, credential_store, gateway_factory, settings)

    # Settled fees of the last 3 months
    result = await service.sync_settlement_fees("user-1", months_back=3)

    # Ledger fees not settled yet
    result = await service.sync_ledger_fees("user-1", months_back=1)

    # Estimates for pending orders
    result = await service.estimate_pending_fees("user-1")
"""
import asyncio
import calendar
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Tuple
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.application.interfaces import ICredentialStore, IFeeFeedGateway
from core.application.services.account_fee_recorder import AccountFeeRecorder
from core.application.services.fee_aggregator import AggregatedFee, FeeAggregator
from core.application.services.fee_writer import FeeBreakdownWriter
from core.application.services.match_key_resolver import MatchKeyResolver
from core.domain.entities import LineItemFeeBreakdown, PendingLineItem, SyncRun
from core.domain.enums import SyncKind, SyncRunState
from core.domain.exceptions import FeedAuthenticationError, FeeSyncError
from core.domain.value_objects import (
    AccountLevelFee,
    CanonicalFeeEvent,
    FeeAllocation,
    RawFeeRecord,
)
from core.infrastructure.adapters.amazon.estimate_adapter import FeeEstimateAdapter
from core.infrastructure.adapters.amazon.fee_mapper import FeeNormalizer
from core.infrastructure.adapters.amazon.ledger_adapter import (
    LedgerEventAdapter,
    compute_safe_before,
    month_start,
    next_month_start,
)
from core.infrastructure.adapters.amazon.settlement_adapter import (
    SettlementDocumentRef,
    SettlementReportAdapter,
    parse_settlement_document,
)
from core.infrastructure.database.repositories import (
    PENDING_ORDER_STATUSES,
    SessionScopedLineItemStore,
    SQLAlchemyLineItemRepository,
)
from core.infrastructure.database.unit_of_work import UnitOfWork
from core.settings.modules.fee_sync_settings import FeeSyncSettings
from orchestration import (
    EventBusProtocol,
    ExecutionContext,
    FeedController,
    InMemoryEventBus,
    Orchestrator,
    RetryPolicy,
    RunLockRegistry,
    WorkflowDefinition,
    WorkflowResult,
    WorkflowStep,
)


logger = logging.getLogger(__name__)

GatewayFactory = Callable[[str], IFeeFeedGateway]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def months_ago(moment: datetime, months: int) -> datetime:
    """Same day-of-month `months` calendar months earlier (clamped to month end)."""
    index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


@dataclass
class ChunkWork:
    """What one chunk carries from step to step."""
    label: str
    document: Optional[str] = None
    settlement: Optional[SettlementDocumentRef] = None
    settlement_id: Optional[str] = None
    row_count: int = 0
    records: List[RawFeeRecord] = field(default_factory=list)
    events: List[CanonicalFeeEvent] = field(default_factory=list)
    account_events: List[CanonicalFeeEvent] = field(default_factory=list)
    allocations: List[FeeAllocation] = field(default_factory=list)
    aggregated: List[AggregatedFee] = field(default_factory=list)
    write_errors: int = 0


class _FeeSyncJob:
    """Per-run state and the activities of its workflow."""

    def __init__(
        self,
        service: "FeeSyncService",
        user_id: str,
        credential_ref: Optional[str],
        now: datetime,
    ):
        self.service = service
        self.user_id = user_id
        self.credential_ref = credential_ref
        self.now = now
        settings = service.settings

        self.controller = FeedController(
            RetryPolicy(
                max_attempts=settings.max_attempts,
                backoff_seconds=settings.backoff_base_seconds,
                backoff_max_seconds=settings.backoff_max_seconds,
            ),
            min_request_interval_seconds=settings.min_request_interval_seconds,
            sleep=service.sleep,
        )
        self.resolver = MatchKeyResolver(SessionScopedLineItemStore(service.session_factory))
        self.gateway: Optional[IFeeFeedGateway] = None
        self.undated_occurrences: Counter = Counter()

    async def connect(self) -> IFeeFeedGateway:
        """Resolve credentials and open the feed gateway."""
        if self.gateway is None:
            token = await self.service.credential_store.get_refresh_token(
                self.user_id, self.credential_ref
            )
            self.gateway = self.service.gateway_factory(token)
        return self.gateway

    # ------------------------------------------------------------------
    # Chunk sources
    # ------------------------------------------------------------------

    async def settlement_documents(
        self, ctx: ExecutionContext, created_since: datetime, marketplace_ids: List[str]
    ) -> AsyncIterator[SettlementDocumentRef]:
        adapter = SettlementReportAdapter(await self.connect(), self.controller)
        try:
            refs = await adapter.list_documents(created_since, marketplace_ids)
        except FeedAuthenticationError:
            raise
        except FeeSyncError as exc:
            ctx.counters.increment("pages_failed")
            logger.error(f"❌ [SETTLEMENT] Listing settlement documents failed: {exc}")
            return

        for ref in refs:
            if await self.service.is_settlement_processed(self.user_id, ref.report_id):
                ctx.counters.increment("documents_skipped")
                logger.info(f"[SETTLEMENT] Report {ref.report_id} already processed, skipping")
                continue
            yield ref

    async def ledger_windows(
        self, ctx: ExecutionContext, posted_after: datetime, posted_before: Optional[datetime]
    ) -> AsyncIterator[Tuple[datetime, datetime]]:
        await self.connect()
        settings = self.service.settings
        end = compute_safe_before(posted_before, self.now, settings.posted_before_safety_minutes)
        # windows never cross a month and the first starts on the 1st
        start = month_start(posted_after)
        while start < end:
            window_end = min(
                start + timedelta(days=settings.ledger_window_days), next_month_start(start), end
            )
            yield start, window_end
            start = window_end

    async def pending_pages(self, ctx: ExecutionContext) -> AsyncIterator[List[PendingLineItem]]:
        cursor = 0
        while True:
            async with self.service.session_factory() as session:
                page = await SQLAlchemyLineItemRepository(session).find_pending_unreconciled(
                    self.user_id,
                    statuses=PENDING_ORDER_STATUSES,
                    limit=self.service.settings.write_batch_size,
                    after_line_item_id=cursor,
                )
            if not page:
                return
            cursor = page[-1].line_item.line_item_id
            yield page

    # ------------------------------------------------------------------
    # FETCHING
    # ------------------------------------------------------------------

    async def download_settlement(self, ctx: ExecutionContext, ref: SettlementDocumentRef) -> ChunkWork:
        adapter = SettlementReportAdapter(await self.connect(), self.controller)
        document = await adapter.fetch_document(ref)
        return ChunkWork(label=f"report {ref.report_id}", document=document, settlement=ref)

    async def fetch_ledger_window(
        self, ctx: ExecutionContext, window: Tuple[datetime, datetime]
    ) -> ChunkWork:
        after, before = window
        adapter = LedgerEventAdapter(
            await self.connect(), self.controller, page_cap=self.service.settings.ledger_page_cap
        )
        result = await adapter.fetch_window(after, before, self.undated_occurrences)
        ctx.counters.increment("pages_failed", result.pages_failed)
        ctx.counters.increment("fetched", len(result.records))
        return ChunkWork(
            label=f"window {after.date()}..{before.date()}",
            records=result.records,
        )

    async def build_estimates(self, ctx: ExecutionContext, page: List[PendingLineItem]) -> ChunkWork:
        records = self.service.estimator.build_records(page, now=self.now)
        ctx.counters.increment("fetched", len(page))
        return ChunkWork(label=f"{len(page)} pending line item(s)", records=records)

    # ------------------------------------------------------------------
    # PARSING
    # ------------------------------------------------------------------

    async def parse_settlement(self, ctx: ExecutionContext, work: ChunkWork) -> ChunkWork:
        parsed = parse_settlement_document(work.document or "")
        ctx.counters.increment("fetched", parsed.row_count)
        ctx.counters.increment("malformed", parsed.malformed)
        ctx.counters.increment("transfers_skipped", parsed.transfers_skipped)
        work.settlement_id = parsed.settlement_id
        work.row_count = parsed.row_count
        work.records = parsed.records
        work.document = None
        return await self.normalize(ctx, work)

    async def normalize(self, ctx: ExecutionContext, work: ChunkWork) -> ChunkWork:
        batch = self.service.normalizer.normalize_batch(self.user_id, work.records)
        ctx.counters.increment("parsed", len(work.records))
        ctx.counters.increment("non_fee_skipped", batch.non_fee_skipped)
        work.events = batch.events
        return work

    # ------------------------------------------------------------------
    # MATCHING / AGGREGATING / WRITING
    # ------------------------------------------------------------------

    async def match(self, ctx: ExecutionContext, work: ChunkWork) -> ChunkWork:
        line_item_events = []
        for event in work.events:
            if event.is_account_level:
                work.account_events.append(event)
            else:
                line_item_events.append(event)

        await self.resolver.prefetch(self.user_id, {event.order_id for event in line_item_events})

        for event in line_item_events:
            allocations = await self.resolver.resolve(event)
            if allocations:
                ctx.counters.increment("matched")
                work.allocations.extend(allocations)
            else:
                ctx.counters.increment("unmatched")

        if self.resolver.unmatched_samples:
            ctx.metadata["unmatched_samples"] = list(self.resolver.unmatched_samples)
        return work

    async def aggregate(self, ctx: ExecutionContext, work: ChunkWork) -> ChunkWork:
        work.aggregated = self.service.aggregator.aggregate(work.allocations)
        return work

    async def write(self, ctx: ExecutionContext, work: ChunkWork) -> ChunkWork:
        result = await self.service.writer.write(self.user_id, work.aggregated)
        ctx.counters.increment("updated", result.updated)
        ctx.counters.increment("errored", result.errored)
        work.write_errors = result.errored

        if work.account_events:
            try:
                await self.service.account_recorder.record(self.user_id, work.account_events)
                ctx.counters.increment("account_level", len(work.account_events))
            except SQLAlchemyError as exc:
                logger.error(f"❌ [ACCOUNT] Recording account-level fees failed: {exc}")
                ctx.counters.increment("errored", len(work.account_events))
                work.write_errors += len(work.account_events)

        logger.info(
            f"[RECON] {work.label}: events={len(work.events)}, "
            f"line items={len(work.aggregated)}, account-level={len(work.account_events)}"
        )
        return work

    async def write_settlement(self, ctx: ExecutionContext, work: ChunkWork) -> ChunkWork:
        work = await self.write(ctx, work)
        # a document with failed writes stays unprocessed so the next run retries it
        if work.settlement is not None and work.write_errors == 0:
            await self.service.mark_settlement_processed(
                self.user_id, work.settlement.report_id, work.settlement_id, work.row_count
            )
        return work

    async def refresh_averages(self, ctx: ExecutionContext) -> None:
        updated = await self.service.refresh_product_fee_averages(self.user_id, now=self.now)
        ctx.metadata["products_refreshed"] = updated


class FeeSyncService:
    """
    Service for reconciling marketplace fees.

    At most one run per (user, kind) executes at a time; a second
    request raises SyncAlreadyRunningError.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        credential_store: ICredentialStore,
        gateway_factory: GatewayFactory,
        settings: Optional[FeeSyncSettings] = None,
        default_marketplace_ids: Optional[List[str]] = None,
        event_bus: Optional[EventBusProtocol] = None,
        locks: Optional[RunLockRegistry] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize service.

        Args:
            session_factory: Async session factory
            credential_store: Resolves credential refs to refresh tokens
            gateway_factory: Builds a feed gateway from a refresh token
            settings: Pacing, retry, batching and estimator settings
            default_marketplace_ids: Marketplaces used when a request names none
            event_bus: Receives run lifecycle events
            locks: Run lock registry (shared by every service of the process)
            sleep: Awaitable sleep (patched in tests)
        """
        self.session_factory = session_factory
        self.credential_store = credential_store
        self.gateway_factory = gateway_factory
        self.settings = settings or FeeSyncSettings()
        self.default_marketplace_ids = default_marketplace_ids or []
        self.event_bus = event_bus or InMemoryEventBus()
        self.locks = locks or RunLockRegistry()
        self.sleep = sleep

        self.normalizer = FeeNormalizer()
        self.aggregator = FeeAggregator()
        self.estimator = FeeEstimateAdapter(self.settings.estimate_fallback_rate)
        self.writer = FeeBreakdownWriter(
            session_factory,
            batch_size=self.settings.write_batch_size,
            batch_delay_seconds=self.settings.write_batch_delay_seconds,
            sleep=sleep,
        )
        self.account_recorder = AccountFeeRecorder(session_factory)
        self.orchestrator = Orchestrator(self.event_bus, self.record_run)

    # =========================================================================
    # RUNS
    # =========================================================================

    async def sync_settlement_fees(
        self,
        user_id: str,
        credential_ref: Optional[str] = None,
        months_back: Optional[int] = None,
        marketplace_ids: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> WorkflowResult:
        """
        Reconcile settled fees from settlement documents.

        Documents already processed for the user are skipped.

        Args:
            user_id: Seller
            credential_ref: Credential reference ("default" when omitted)
            months_back: How far back documents are listed
            marketplace_ids: Marketplaces to list documents for
            now: Reference time (tests)

        Returns:
            WorkflowResult with final state and counters

        Raises:
            SyncAlreadyRunningError: If a settlement sync is running for the user
        """
        now = now or utc_now()
        created_since = months_ago(now, months_back or self.settings.default_months_back)
        marketplaces = marketplace_ids or self.default_marketplace_ids

        async with self.locks.acquire(user_id, SyncKind.SETTLEMENT):
            job = _FeeSyncJob(self, user_id, credential_ref, now)
            workflow = WorkflowDefinition(
                name="settlement-fee-sync",
                kind=SyncKind.SETTLEMENT,
                chunks=lambda ctx: job.settlement_documents(ctx, created_since, marketplaces),
                steps=[
                    WorkflowStep(SyncRunState.FETCHING, job.download_settlement),
                    WorkflowStep(SyncRunState.PARSING, job.parse_settlement),
                    WorkflowStep(SyncRunState.MATCHING, job.match),
                    WorkflowStep(SyncRunState.AGGREGATING, job.aggregate),
                    WorkflowStep(SyncRunState.WRITING, job.write_settlement),
                ],
                failure_counter="documents_failed",
                on_finished=job.refresh_averages,
            )
            return await self.orchestrator.run(workflow, SyncRun.start(user_id, SyncKind.SETTLEMENT))

    async def sync_ledger_fees(
        self,
        user_id: str,
        credential_ref: Optional[str] = None,
        months_back: Optional[int] = None,
        posted_after: Optional[datetime] = None,
        posted_before: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> WorkflowResult:
        """
        Reconcile fees from the financial events ledger.

        The range starts on the first of `posted_after`'s month and is
        split into windows of at most `ledger_window_days` that never cross
        a month boundary; its end is clamped to trail now by the safety
        margin. Events without a PostedDate are dated by their window.

        Raises:
            SyncAlreadyRunningError: If a ledger sync is running for the user
        """
        now = now or utc_now()
        after = posted_after or months_ago(now, months_back or self.settings.default_months_back)

        async with self.locks.acquire(user_id, SyncKind.LEDGER):
            job = _FeeSyncJob(self, user_id, credential_ref, now)
            workflow = WorkflowDefinition(
                name="ledger-fee-sync",
                kind=SyncKind.LEDGER,
                chunks=lambda ctx: job.ledger_windows(ctx, after, posted_before),
                steps=[
                    WorkflowStep(SyncRunState.FETCHING, job.fetch_ledger_window),
                    WorkflowStep(SyncRunState.PARSING, job.normalize),
                    WorkflowStep(SyncRunState.MATCHING, job.match),
                    WorkflowStep(SyncRunState.AGGREGATING, job.aggregate),
                    WorkflowStep(SyncRunState.WRITING, job.write),
                ],
                failure_counter="pages_failed",
                on_finished=job.refresh_averages,
            )
            return await self.orchestrator.run(workflow, SyncRun.start(user_id, SyncKind.LEDGER))

    async def estimate_pending_fees(
        self, user_id: str, now: Optional[datetime] = None
    ) -> WorkflowResult:
        """
        Estimate fees of pending orders the feeds have not reported yet.

        Product fee averages are refreshed first.

        Raises:
            SyncAlreadyRunningError: If an estimate run is running for the user
        """
        now = now or utc_now()

        async with self.locks.acquire(user_id, SyncKind.ESTIMATE):
            await self.refresh_product_fee_averages(user_id, now=now)
            job = _FeeSyncJob(self, user_id, None, now)
            workflow = WorkflowDefinition(
                name="fee-estimate",
                kind=SyncKind.ESTIMATE,
                chunks=job.pending_pages,
                steps=[
                    WorkflowStep(SyncRunState.FETCHING, job.build_estimates),
                    WorkflowStep(SyncRunState.PARSING, job.normalize),
                    WorkflowStep(SyncRunState.MATCHING, job.match),
                    WorkflowStep(SyncRunState.AGGREGATING, job.aggregate),
                    WorkflowStep(SyncRunState.WRITING, job.write),
                ],
            )
            return await self.orchestrator.run(workflow, SyncRun.start(user_id, SyncKind.ESTIMATE))

    async def run(
        self,
        kind: SyncKind,
        user_id: str,
        credential_ref: Optional[str] = None,
        months_back: Optional[int] = None,
        marketplace_ids: Optional[List[str]] = None,
    ) -> WorkflowResult:
        """Dispatch a run by kind."""
        if kind == SyncKind.SETTLEMENT:
            return await self.sync_settlement_fees(
                user_id, credential_ref, months_back=months_back, marketplace_ids=marketplace_ids
            )
        if kind == SyncKind.LEDGER:
            return await self.sync_ledger_fees(user_id, credential_ref, months_back=months_back)
        return await self.estimate_pending_fees(user_id)

    async def verify_credentials(self, user_id: str, credential_ref: Optional[str]) -> None:
        """
        Check that a credential ref resolves, before anything is queued or written.

        Raises:
            FeedAuthenticationError: If the reference is unknown
        """
        await self.credential_store.get_refresh_token(user_id, credential_ref)

    # =========================================================================
    # PERSISTENCE HELPERS
    # =========================================================================

    async def record_run(self, run: SyncRun) -> None:
        async with self.session_factory() as session:
            async with UnitOfWork(session) as uow:
                await uow.sync_runs.save(run)
                await uow.commit()

    async def is_settlement_processed(self, user_id: str, report_id: str) -> bool:
        async with self.session_factory() as session:
            return await UnitOfWork(session).processed_settlements.is_processed(user_id, report_id)

    async def mark_settlement_processed(
        self, user_id: str, report_id: str, settlement_id: Optional[str], row_count: int
    ) -> None:
        async with self.session_factory() as session:
            async with UnitOfWork(session) as uow:
                await uow.processed_settlements.mark_processed(
                    user_id, report_id, settlement_id, row_count
                )
                await uow.commit()

    async def refresh_product_fee_averages(
        self, user_id: str, now: Optional[datetime] = None
    ) -> int:
        """
        Recompute per-unit fee averages of the user's products.

        Returns:
            Number of products updated
        """
        async with self.session_factory() as session:
            async with UnitOfWork(session) as uow:
                updated = await uow.line_items.refresh_product_fee_averages(
                    user_id, self.settings.average_window_days, now or utc_now()
                )
                await uow.commit()
        return updated

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_run(self, run_id: str) -> Optional[SyncRun]:
        async with self.session_factory() as session:
            return await UnitOfWork(session).sync_runs.get(run_id)

    async def get_breakdowns(self, user_id: str, order_id: str) -> List[LineItemFeeBreakdown]:
        async with self.session_factory() as session:
            return await UnitOfWork(session).breakdowns.list_for_order(user_id, order_id)

    async def get_account_level_fees(
        self, user_id: str, period: Optional[str] = None
    ) -> List[AccountLevelFee]:
        async with self.session_factory() as session:
            return await UnitOfWork(session).account_fees.list_for_user(user_id, period)
