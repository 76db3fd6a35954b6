"""Workflow definitions - Activity, RetryPolicy, WorkflowStep, WorkflowDefinition."""

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field

from core.domain.enums import SyncKind, SyncRunState

from .models import ExecutionContext

# Type alias for workflow activities: (ctx, previous step output) -> output
Activity = Callable[[ExecutionContext, object | None], Awaitable[object]]

# Yields one chunk reference (document, window, page of line items) at a time
ChunkSource = Callable[[ExecutionContext], AsyncIterator[object]]


@dataclass
class RetryPolicy:
    """Retry policy for feed requests: exponential backoff, capped."""

    max_attempts: int = 3
    backoff_seconds: float = 0.0
    backoff_max_seconds: float = 60.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""
        return min(self.backoff_max_seconds, self.backoff_seconds * (2 ** (attempt - 1)))


@dataclass
class WorkflowStep:
    """A single step of the per-chunk pipeline; `state` is the run state while it executes."""

    state: SyncRunState
    activity: Activity

    @property
    def name(self) -> str:
        return self.state.value


@dataclass
class WorkflowDefinition:
    """
    Definition of a chunked sync workflow.

    The orchestrator pulls chunks from `chunks` and pushes each one
    through `steps` in order. A chunk whose steps raise a non-fatal
    feed error is counted under `failure_counter` and skipped.
    """

    name: str
    kind: SyncKind
    chunks: ChunkSource
    steps: list[WorkflowStep]
    failure_counter: str = "documents_failed"
    on_finished: Callable[[ExecutionContext], Awaitable[None]] | None = field(default=None)
