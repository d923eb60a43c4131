import pytest

from fulfillment.infrastructure.events import InProcessEventBus


@pytest.mark.asyncio
async def test_sync_and_async_handlers_receive_events():
    bus = InProcessEventBus()
    seen = []

    def on_sync(name, payload):
        seen.append(("sync", name, payload["order_id"]))

    async def on_async(name, payload):
        seen.append(("async", name, payload["order_id"]))

    bus.subscribe("order:created", on_sync)
    bus.subscribe("order:created", on_async)
    bus.emit("order:created", {"order_id": "o1"})
    await bus.drain()

    assert sorted(seen) == [("async", "order:created", "o1"), ("sync", "order:created", "o1")]


@pytest.mark.asyncio
async def test_wildcard_and_once():
    bus = InProcessEventBus()
    everything, first_only = [], []
    bus.subscribe("*", lambda name, payload: everything.append(name))
    bus.once("order:updated", lambda name, payload: first_only.append(name))

    bus.emit("order:updated", {})
    bus.emit("order:updated", {})
    bus.emit("product:low-stock", {})
    await bus.drain()

    assert everything == ["order:updated", "order:updated", "product:low-stock"]
    assert first_only == ["order:updated"]


@pytest.mark.asyncio
async def test_failing_handler_is_isolated():
    bus = InProcessEventBus()
    seen = []

    def broken(name, payload):
        raise RuntimeError("boom")

    bus.subscribe("order:cancelled", broken)
    bus.subscribe("order:cancelled", lambda name, payload: seen.append(payload["timestamp"]))
    bus.emit("order:cancelled", {"order_id": "o1"})
    await bus.drain()

    assert len(seen) == 1


def test_emit_without_running_loop_calls_sync_handlers():
    bus = InProcessEventBus()
    seen = []
    bus.subscribe("order:deleted", lambda name, payload: seen.append(name))
    bus.unsubscribe("order:deleted", print)
    bus.emit("order:deleted", {"order_id": "o1"})
    assert seen == ["order:deleted"]
