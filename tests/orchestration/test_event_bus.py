"""Tests for EventBus."""

from datetime import datetime, timezone

import pytest

from orchestration.bus import InMemoryEventBus
from orchestration.events import Event, EventMetadata


def _event(name: str, payload: dict | None = None) -> Event:
    metadata = EventMetadata(
        execution_id="exec-test-123",
        user_id="seller-1",
        kind="settlement",
        timestamp=datetime.now(timezone.utc),
    )
    return Event(name=name, payload=payload or {}, metadata=metadata)


@pytest.mark.asyncio
async def test_event_bus_subscribe_and_publish():
    """Test subscribing and publishing events."""
    bus = InMemoryEventBus()

    events_received: list[Event] = []

    async def handler(event: Event) -> None:
        events_received.append(event)

    bus.subscribe("fee_sync.started", handler)

    await bus.publish(_event("fee_sync.started", {"workflow_name": "settlement-fee-sync"}))

    assert len(events_received) == 1
    assert events_received[0].name == "fee_sync.started"
    assert events_received[0].payload == {"workflow_name": "settlement-fee-sync"}
    assert events_received[0].metadata.execution_id == "exec-test-123"
    assert events_received[0].metadata.kind == "settlement"


@pytest.mark.asyncio
async def test_event_bus_multiple_handlers():
    """Test multiple handlers for the same event."""
    bus = InMemoryEventBus()
    calls: list[str] = []

    async def first(event: Event) -> None:
        calls.append("first")

    async def second(event: Event) -> None:
        calls.append("second")

    bus.subscribe("fee_sync.finished", first)
    bus.subscribe("fee_sync.finished", second)

    await bus.publish(_event("fee_sync.finished"))

    assert calls == ["first", "second"]


@pytest.mark.asyncio
async def test_event_bus_no_handlers():
    """Publishing without subscribers is a no-op."""
    bus = InMemoryEventBus()

    await bus.publish(_event("fee_sync.chunk_failed"))


@pytest.mark.asyncio
async def test_failing_handler_does_not_reach_publisher():
    """A handler error is logged; later handlers still run."""
    bus = InMemoryEventBus()
    calls: list[str] = []

    async def broken(event: Event) -> None:
        raise RuntimeError("handler down")

    async def healthy(event: Event) -> None:
        calls.append(event.name)

    bus.subscribe("fee_sync.state_changed", broken)
    bus.subscribe("fee_sync.state_changed", healthy)

    await bus.publish(_event("fee_sync.state_changed", {"from": "queued", "to": "fetching"}))

    assert calls == ["fee_sync.state_changed"]
