"""Orchestration layer - chunked sync workflows, feed pacing, run locks."""

from .bus import EventBusProtocol, InMemoryEventBus
from .controller import FeedController, chunked
from .events import Event, EventMetadata
from .locks import RunLockRegistry
from .models import ExecutionContext, StepResult, WorkflowResult
from .orchestrator import Orchestrator, RunRecorder
from .workflow import Activity, ChunkSource, RetryPolicy, WorkflowDefinition, WorkflowStep

__all__ = [
    "Activity",
    "ChunkSource",
    "Event",
    "EventBusProtocol",
    "EventMetadata",
    "ExecutionContext",
    "FeedController",
    "InMemoryEventBus",
    "Orchestrator",
    "RetryPolicy",
    "RunLockRegistry",
    "RunRecorder",
    "StepResult",
    "WorkflowDefinition",
    "WorkflowResult",
    "WorkflowStep",
    "chunked",
]
