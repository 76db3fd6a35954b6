"""Orchestration models - ExecutionContext, StepResult, WorkflowResult."""

from dataclasses import dataclass, field
from datetime import datetime

from core.domain.entities import SyncCounters, SyncRun
from core.domain.enums import SyncKind, SyncRunState
from core.domain.value_objects import ExecutionID


@dataclass
class ExecutionContext:
    """Context object handed to every workflow activity."""

    run: SyncRun
    started_at: datetime
    metadata: dict[str, object] = field(default_factory=dict)

    @property
    def execution_id(self) -> ExecutionID:
        return self.run.run_id

    @property
    def user_id(self) -> str:
        return self.run.user_id

    @property
    def kind(self) -> SyncKind:
        return self.run.kind

    @property
    def counters(self) -> SyncCounters:
        return self.run.counters


@dataclass
class StepResult:
    """Result of one workflow step on one chunk."""

    name: str
    success: bool
    duration_ms: int
    error: str | None = None
    output: object = None


@dataclass
class WorkflowResult:
    """Result of a workflow execution."""

    execution_id: ExecutionID
    user_id: str
    kind: SyncKind
    state: SyncRunState
    counters: SyncCounters
    started_at: datetime
    finished_at: datetime
    chunks_processed: int
    error: str | None = None
    steps: list[StepResult] = field(default_factory=list)
