"""Tests for the event bus and the audit persister wiring.

- TestEventBus: core bus mechanics
- TestAuditPersister: TURN_ROUTED events land in the routing_audit table
"""

from __future__ import annotations

import asyncio

import pytest

from switchboard.events import SESSION_PAUSED, Event, EventBus
from switchboard.main import create_components, shutdown_components

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_event(
    event_type: str = "test_event",
    user_id: str = "user-1",
    data: dict | None = None,
    scope: str = "web",
) -> Event:
    return Event(type=event_type, user_id=user_id, scope=scope, data=data or {})


# ===========================================================================
# TestEventBus
# ===========================================================================


class TestEventBus:
    """Core event bus tests using REAL EventBus."""

    async def test_emit_handler_receives_event(self):
        bus = EventBus()
        received: list[Event] = []

        async def handler(event: Event) -> None:
            received.append(event)

        bus.on("test_event", handler)
        await bus.start()
        try:
            await bus.emit(_make_event())
            await asyncio.sleep(0.1)
            assert len(received) == 1
            assert received[0].user_id == "user-1"
            assert received[0].scope == "web"
            assert bus.dispatched["test_event"] == 1
        finally:
            await bus.stop()

    async def test_handler_error_doesnt_block_other_handlers(self):
        bus = EventBus()
        results: list[str] = []

        async def bad_handler(event: Event) -> None:
            raise RuntimeError("fail")

        async def good_handler(event: Event) -> None:
            results.append("ok")

        bus.on("test_event", bad_handler)
        bus.on("test_event", good_handler)
        await bus.start()
        try:
            await bus.emit(_make_event())
            await asyncio.sleep(0.1)
            assert results == ["ok"]
        finally:
            await bus.stop()

    async def test_on_any_sees_every_type(self):
        bus = EventBus()
        seen: list[str] = []

        async def listener(event: Event) -> None:
            seen.append(event.type)

        bus.on_any(listener)
        await bus.emit(_make_event(SESSION_PAUSED))
        await bus.emit(_make_event("other"))
        await bus.stop()

        assert seen == [SESSION_PAUSED, "other"]

    async def test_off_unsubscribes(self):
        bus = EventBus()
        seen: list[Event] = []

        async def listener(event: Event) -> None:
            seen.append(event)

        bus.on("test_event", listener)
        assert bus.off("test_event", listener)
        assert not bus.off("test_event", listener)

        await bus.emit(_make_event())
        await bus.stop()

        assert seen == []

    async def test_queue_full_drops_event(self):
        bus = EventBus(max_queue=1)
        await bus.emit(_make_event("first"))
        await bus.emit(_make_event("second"))

        assert bus.pending == 1
        assert bus.dropped["second"] == 1

    async def test_stop_drains_remaining_events(self):
        bus = EventBus()
        received: list[Event] = []

        async def handler(event: Event) -> None:
            received.append(event)

        bus.on("test_event", handler)
        await bus.emit(_make_event(data={"n": 1}))
        await bus.emit(_make_event(data={"n": 2}))

        await bus.start()
        await bus.stop()

        assert bus.pending == 0
        assert [e.data["n"] for e in received] == [1, 2]
        assert not bus.running

    async def test_persister_errors_are_isolated(self):
        bus = EventBus()
        received: list[Event] = []

        async def broken_persister(event: Event) -> None:
            raise ConnectionError("db down")

        async def handler(event: Event) -> None:
            received.append(event)

        bus.set_persister(broken_persister)
        bus.on(SESSION_PAUSED, handler)
        await bus.start()
        try:
            await bus.emit(_make_event(SESSION_PAUSED, data={"kind": "topic_serious"}))
            await asyncio.sleep(0.1)
            assert len(received) == 1
        finally:
            await bus.stop()

    def test_event_as_dict(self):
        event = _make_event(SESSION_PAUSED, data={"kind": "topic_serious"})

        out = event.as_dict()

        assert out["type"] == SESSION_PAUSED
        assert out["data"] == {"kind": "topic_serious"}
        assert isinstance(out["timestamp"], str)


# ===========================================================================
# TestAuditPersister
# ===========================================================================


class TestAuditPersister:
    @pytest.fixture
    def bus_settings(self, settings):
        return settings.model_copy(update={"event_bus_enabled": True, "audit_enabled": True})

    async def test_turn_routed_is_persisted_through_bus(self, bus_settings):
        components = await create_components(bus_settings)
        try:
            orchestrator = components["orchestrator"]
            assert orchestrator.audit_log is None

            await orchestrator.handle_message("user-1", "hello", signals={})
            await components["bus"].stop()

            records = await components["audit_log"].recent("user-1")
            assert len(records) == 1
            assert records[0]["target"] == "companion"
            assert records[0]["reason"] == "default"
        finally:
            await shutdown_components(components)

    async def test_without_bus_orchestrator_writes_audit_directly(self, settings):
        no_bus = settings.model_copy(update={"event_bus_enabled": False})
        components = await create_components(no_bus)
        try:
            assert components["bus"] is None
            await components["orchestrator"].handle_message("user-1", "hello", signals={})

            records = await components["audit_log"].recent("user-1")
            assert [r["turn_index"] for r in records] == [1]
        finally:
            await shutdown_components(components)
