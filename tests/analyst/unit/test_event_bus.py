"""
Unit tests for EventBus
"""

import pytest
import asyncio
from backend.analyst.runtime.event_bus import EventBus
from backend.analyst.runtime.types import (
    EventType,
    LoopState,
    StateEvent,
    StateEventData,
    StreamEvent,
)


@pytest.mark.asyncio
async def test_event_bus_publish_consume():
    """Test basic publish and consume"""
    bus = EventBus(maxsize=10)
    event = StreamEvent(session_id="test-session", data="Hello World")

    await bus.publish(event)
    assert bus.qsize() == 1

    async for consumed in bus.consume():
        assert consumed.type == EventType.STREAM
        assert consumed.session_id == "test-session"
        assert consumed.data == "Hello World"
        break

    assert bus.qsize() == 0


@pytest.mark.asyncio
async def test_event_bus_subscribe():
    """Test event subscription with async handlers"""
    bus = EventBus()
    received_events = []

    async def handler(event):
        received_events.append(event)

    await bus.subscribe(EventType.STREAM, handler)
    await bus.start()

    await bus.publish(StreamEvent(session_id="test-session", data="Test"))

    await asyncio.sleep(0.1)
    await bus.stop()

    assert len(received_events) == 1
    assert received_events[0].data == "Test"


@pytest.mark.asyncio
async def test_event_bus_sync_handler_and_unsubscribe():
    """Sync handlers are called; unsubscribed handlers are not"""
    bus = EventBus()
    kept, dropped = [], []

    await bus.subscribe(EventType.STATE, kept.append)
    await bus.subscribe(EventType.STATE, dropped.append)
    await bus.unsubscribe(EventType.STATE, dropped.append)
    await bus.start()

    await bus.publish(
        StateEvent(session_id="s1", data=StateEventData(state=LoopState.EXECUTING_TOOLS))
    )
    await bus.wait_empty()
    await bus.stop()

    assert len(kept) == 1
    assert kept[0].data.state == LoopState.EXECUTING_TOOLS
    assert dropped == []


@pytest.mark.asyncio
async def test_event_bus_filter_by_type():
    """Test filtering events by type"""
    bus = EventBus()

    await bus.publish(
        StateEvent(session_id="s1", data=StateEventData(state=LoopState.AWAITING_MODEL))
    )
    await bus.publish(StreamEvent(session_id="s1", data="stream"))

    count = 0
    async for event in bus.consume(event_types=[EventType.STREAM]):
        assert event.type == EventType.STREAM
        count += 1
        if count >= 1:
            break

    assert count == 1
    assert bus.qsize() == 0


@pytest.mark.asyncio
async def test_event_bus_handler_error_does_not_stop_dispatch():
    """A failing handler is logged and later events still arrive"""
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    await bus.subscribe(EventType.STREAM, broken)
    await bus.subscribe(EventType.STREAM, received.append)
    await bus.start()

    await bus.publish(StreamEvent(session_id="s1", data="1"))
    await bus.publish(StreamEvent(session_id="s1", data="2"))
    await bus.wait_empty()
    await bus.stop()

    assert [e.data for e in received] == ["1", "2"]


@pytest.mark.asyncio
async def test_event_bus_stop_delivers_queued_events():
    """Events queued before stop() are still dispatched"""
    bus = EventBus()
    received = []
    await bus.subscribe(EventType.STREAM, received.append)

    await bus.publish(StreamEvent(session_id="s1", data="early"))
    await bus.start()
    await bus.stop()

    assert [e.data for e in received] == ["early"]
    assert not bus.is_running()


@pytest.mark.asyncio
async def test_event_bus_backpressure():
    """Test bounded queue with backpressure"""
    bus = EventBus(maxsize=2, publish_timeout=0.05)

    await bus.publish(StreamEvent(session_id="s1", data="1"))
    await bus.publish(StreamEvent(session_id="s1", data="2"))

    assert bus.qsize() == 2

    # Next publish should timeout (queue full)
    with pytest.raises(asyncio.QueueFull):
        await bus.publish(StreamEvent(session_id="s1", data="3"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
