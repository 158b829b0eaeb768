"""Unit tests for core event bus module."""
import pytest

from copytrader.core.event_bus import EVENT_POSITION_CLOSED, EventBus


@pytest.fixture
def bus():
    """Fixture providing a fresh EventBus instance."""
    return EventBus()


class TestEventBus:
    async def test_subscribe_and_emit(self, bus):
        received = []

        async def handler(data):
            received.append(data)

        bus.subscribe(EVENT_POSITION_CLOSED, handler)
        await bus.emit(EVENT_POSITION_CLOSED, {"id": "p1"})
        assert received == [{"id": "p1"}]

    async def test_emit_without_subscribers_is_noop(self, bus):
        await bus.emit("nobody_listens", 1)

    async def test_multiple_handlers_all_called(self, bus):
        calls = []

        async def first(data):
            calls.append(("first", data))

        async def second(data):
            calls.append(("second", data))

        bus.subscribe("evt", first)
        bus.subscribe("evt", second)
        await bus.emit("evt", 7)
        assert sorted(calls) == [("first", 7), ("second", 7)]

    async def test_failing_handler_does_not_break_others(self, bus, caplog):
        received = []

        async def broken(data):
            raise RuntimeError("handler bug")

        async def healthy(data):
            received.append(data)

        bus.subscribe("evt", broken)
        bus.subscribe("evt", healthy)
        await bus.emit("evt", "x")
        assert received == ["x"]
        assert "failed for event 'evt'" in caplog.text

    async def test_unsubscribe(self, bus):
        received = []

        async def handler(data):
            received.append(data)

        bus.subscribe("evt", handler)
        bus.unsubscribe("evt", handler)
        bus.unsubscribe("evt", handler)  # unknown handler ignored
        await bus.emit("evt", 1)
        assert received == []
        assert bus.subscriber_count("evt") == 0

    def test_subscribe_rejects_non_callable(self, bus):
        with pytest.raises(TypeError):
            bus.subscribe("evt", "not callable")
