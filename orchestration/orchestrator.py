"""Orchestrator - runs chunked sync workflows with eventing and run tracking."""

import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from core.domain.entities import SyncRun
from core.domain.enums import SyncRunState
from core.domain.exceptions import FeedAuthenticationError, FeeSyncError

from .bus import EventBusProtocol
from .events import Event, EventMetadata
from .models import ExecutionContext, StepResult, WorkflowResult
from .workflow import WorkflowDefinition, WorkflowStep

# Persists the run row; called on start, after every chunk and on finish
RunRecorder = Callable[[SyncRun], Awaitable[None]]

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChunkFailed(Exception):
    """A step raised a non-fatal feed error; the chunk is abandoned."""

    def __init__(self, step: str, cause: FeeSyncError) -> None:
        super().__init__(f"{step}: {cause}")
        self.step = step
        self.cause = cause


class Orchestrator:
    """
    Drives a SyncRun through its state machine.

    For every chunk yielded by the workflow the run enters each step's
    state in order; a chunk that hits a non-fatal FeeSyncError is
    counted under the workflow's failure counter and the run moves on.
    Authentication failures and unexpected exceptions fail the run.
    """

    def __init__(self, event_bus: EventBusProtocol, record_run: RunRecorder) -> None:
        """Initialize orchestrator.

        Args:
            event_bus: EventBusProtocol for publishing lifecycle events
            record_run: Coroutine persisting the run
        """
        self._event_bus = event_bus
        self._record_run = record_run

    async def run(self, workflow: WorkflowDefinition, run: SyncRun) -> WorkflowResult:
        """Run a workflow to DONE or FAILED.

        Args:
            workflow: WorkflowDefinition to run
            run: Freshly started SyncRun (state QUEUED)

        Returns:
            WorkflowResult with final state and counters
        """
        ctx = ExecutionContext(run=run, started_at=run.started_at)
        step_results: list[StepResult] = []
        chunks = 0

        logger.info(
            f"🚀 [RUN] Starting {workflow.name} run {run.run_id} for user {run.user_id}"
        )
        await self._record_run(run)
        await self._publish("fee_sync.started", ctx, {"workflow_name": workflow.name})

        try:
            async for chunk in workflow.chunks(ctx):
                chunks += 1
                try:
                    await self._run_chunk(ctx, workflow.steps, chunk, step_results)
                except ChunkFailed as failure:
                    run.counters.increment(workflow.failure_counter)
                    logger.warning(
                        f"⚠️ [RUN] Run {run.run_id}: chunk {chunks} abandoned at "
                        f"{failure.step}: {failure.cause}"
                    )
                    await self._publish(
                        "fee_sync.chunk_failed",
                        ctx,
                        {"chunk": chunks, "step": failure.step, "error": str(failure.cause)},
                    )
                    if run.state != SyncRunState.FETCHING:
                        await self._change_state(ctx, SyncRunState.FETCHING)
                await self._record_run(run)

            if run.state == SyncRunState.QUEUED:
                await self._change_state(ctx, SyncRunState.FETCHING)
            if workflow.on_finished is not None:
                await workflow.on_finished(ctx)
            await self._change_state(ctx, SyncRunState.DONE)

        except FeedAuthenticationError as exc:
            logger.error(f"❌ [RUN] Run {run.run_id} failed: authentication rejected: {exc}")
            run.fail(f"authentication failed: {exc}")
        except Exception as exc:
            logger.error(f"❌ [RUN] Run {run.run_id} failed: {exc}", exc_info=True)
            run.fail(str(exc))

        await self._record_run(run)
        finished_at = run.finished_at or utc_now()

        await self._publish(
            "fee_sync.finished",
            ctx,
            {
                "workflow_name": workflow.name,
                "state": run.state.value,
                "chunks": chunks,
                "counters": run.counters.to_dict(),
                "error": run.error,
            },
        )

        logger.info(
            f"{'✅' if run.state == SyncRunState.DONE else '❌'} [RUN] {workflow.name} run "
            f"{run.run_id} finished {run.state.value}: chunks={chunks}, "
            f"counters={run.counters.to_dict()}"
        )

        return WorkflowResult(
            execution_id=run.run_id,
            user_id=run.user_id,
            kind=run.kind,
            state=run.state,
            counters=run.counters,
            started_at=run.started_at,
            finished_at=finished_at,
            chunks_processed=chunks,
            error=run.error,
            steps=step_results,
        )

    async def _run_chunk(
        self,
        ctx: ExecutionContext,
        steps: list[WorkflowStep],
        chunk: object,
        step_results: list[StepResult],
    ) -> None:
        output: object = chunk
        for step in steps:
            if ctx.run.state != step.state:
                await self._change_state(ctx, step.state)

            started = time.perf_counter()
            try:
                output = await step.activity(ctx, output)
            except FeedAuthenticationError:
                raise
            except FeeSyncError as exc:
                step_results.append(StepResult(
                    name=step.name,
                    success=False,
                    duration_ms=int((time.perf_counter() - started) * 1000),
                    error=str(exc),
                ))
                raise ChunkFailed(step.name, exc) from exc

            step_results.append(StepResult(
                name=step.name,
                success=True,
                duration_ms=int((time.perf_counter() - started) * 1000),
            ))

    async def _change_state(self, ctx: ExecutionContext, target: SyncRunState) -> None:
        previous = ctx.run.state
        ctx.run.transition(target)
        logger.debug(f"[RUN] {ctx.run.run_id}: {previous.value} -> {target.value}")
        await self._publish(
            "fee_sync.state_changed", ctx, {"from": previous.value, "to": target.value}
        )

    async def _publish(self, name: str, ctx: ExecutionContext, payload: dict[str, object]) -> None:
        metadata = EventMetadata(
            execution_id=str(ctx.execution_id),
            user_id=ctx.user_id,
            kind=ctx.kind.value,
            timestamp=utc_now(),
        )
        await self._event_bus.publish(Event(name=name, payload=payload, metadata=metadata))
