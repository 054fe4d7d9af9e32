"""Tests for the event bus and the deployment listener."""

from __future__ import annotations

import asyncio

import pytest

from accessgate.deployment import DeploymentListener, PermissionDeploymentPipeline
from accessgate.events.bus import EventBus, get_event_bus, publish_grant_changed
from accessgate.events.types import Event, EventSeverity, EventSource, EventType


class TestEventBus:
    @pytest.mark.asyncio
    async def test_publish_and_subscribe(self):
        bus = EventBus()
        received = []

        async def handler(event: Event):
            received.append(event)

        bus.subscribe(handler)

        await bus.publish(Event(
            source=EventSource.LICENSING,
            type=EventType.LICENSE_GRANT_CREATED,
            message="test",
        ))

        assert len(received) == 1
        assert received[0].message == "test"

    @pytest.mark.asyncio
    async def test_source_filter(self):
        bus = EventBus()
        received = []

        async def handler(event: Event):
            received.append(event)

        bus.subscribe(handler, sources={EventSource.DEPLOYMENT})

        await bus.publish(Event(source=EventSource.LICENSING, type=EventType.LICENSE_GRANT_CREATED))
        await bus.publish(Event(source=EventSource.DEPLOYMENT, type=EventType.DEPLOYMENT_SYNCED))

        assert len(received) == 1
        assert received[0].source == EventSource.DEPLOYMENT

    @pytest.mark.asyncio
    async def test_severity_filter(self):
        bus = EventBus()
        received = []

        async def handler(event: Event):
            received.append(event)

        bus.subscribe(handler, severities={EventSeverity.URGENT})

        await bus.publish(Event(source=EventSource.DEPLOYMENT, type=EventType.DEPLOYMENT_SYNCED))
        await bus.publish(Event(
            source=EventSource.DEPLOYMENT,
            type=EventType.DEPLOYMENT_FAILED,
            severity=EventSeverity.URGENT,
        ))

        assert [e.type for e in received] == [EventType.DEPLOYMENT_FAILED]

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_delivery(self):
        bus = EventBus()
        received = []

        async def broken(event: Event):
            raise RuntimeError("boom")

        async def handler(event: Event):
            received.append(event)

        bus.subscribe(broken)
        bus.subscribe(handler)

        await bus.publish(Event(source=EventSource.LICENSING, type=EventType.LICENSE_GRANT_REVOKED))
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received = []

        async def handler(event: Event):
            received.append(event)

        bus.subscribe(handler)
        bus.unsubscribe(handler)
        await bus.publish(Event(source=EventSource.LICENSING, type=EventType.LICENSE_GRANT_CREATED))
        assert received == []

    @pytest.mark.asyncio
    async def test_recent_events(self):
        bus = EventBus()
        await bus.publish(Event(source=EventSource.LICENSING, type=EventType.LICENSE_GRANT_CREATED))
        await bus.publish(Event(
            source=EventSource.DEPLOYMENT,
            type=EventType.DEPLOYMENT_FAILED,
            severity=EventSeverity.URGENT,
        ))

        assert len(bus.get_recent_events()) == 2
        assert len(bus.get_recent_events(severity=EventSeverity.URGENT)) == 1
        assert len(bus.get_recent_events(source=EventSource.LICENSING)) == 1

    @pytest.mark.asyncio
    async def test_publish_nowait_holds_task_until_done(self):
        bus = EventBus()
        received = []

        async def handler(event: Event):
            received.append(event)

        bus.subscribe(handler)
        bus.publish_nowait(Event(source=EventSource.LICENSING, type=EventType.LICENSE_GRANT_CREATED))

        pending = list(bus._pending)
        assert len(pending) == 1
        await asyncio.gather(*pending)
        await asyncio.sleep(0)
        assert len(received) == 1
        assert not bus._pending

    def test_publish_nowait_without_loop_drops(self):
        bus = EventBus()
        bus.publish_nowait(Event(source=EventSource.LICENSING, type=EventType.LICENSE_GRANT_CREATED))
        assert bus.get_recent_events() == []
        assert not bus._pending

    def test_singleton(self):
        assert get_event_bus() is get_event_bus()


class TestGrantChanged:
    @pytest.mark.asyncio
    async def test_publishes_licensing_event(self):
        bus = EventBus()
        event = await publish_grant_changed(bus, "t1", "f1", "revoked")

        assert event.source == EventSource.LICENSING
        assert event.type == EventType.LICENSE_GRANT_REVOKED
        assert event.data == {"tenant_id": "t1", "feature_id": "f1", "change": "revoked"}
        assert bus.get_recent_events() == [event]

    @pytest.mark.asyncio
    async def test_unknown_change(self):
        with pytest.raises(ValueError, match="Unknown grant change"):
            await publish_grant_changed(EventBus(), "t1", "f1", "extended")


class TestDeploymentListener:
    @pytest.mark.asyncio
    async def test_grant_change_triggers_sync(self, uow_factory, seed, settings):
        tenant = await seed.tenant()
        await seed.role(tenant, "staff")
        feature = await seed.feature("reports", {"reports:export": ["staff"]})
        await seed.grant(tenant, feature)

        bus = EventBus()
        listener = DeploymentListener(PermissionDeploymentPipeline(uow_factory, settings), bus)
        listener.start()
        await publish_grant_changed(bus, tenant, feature, "created")

        [synced] = bus.get_recent_events(source=EventSource.DEPLOYMENT)
        assert synced.type == EventType.DEPLOYMENT_SYNCED
        assert synced.severity == EventSeverity.NORMAL
        assert synced.data["tenant_id"] == tenant
        assert synced.data["trigger"] == "license_grant_created"
        assert synced.data["permissions_created"] == 1
        assert synced.data["errors"] == []

    @pytest.mark.asyncio
    async def test_unknown_tenant_publishes_failure(self, uow_factory, settings):
        bus = EventBus()
        listener = DeploymentListener(PermissionDeploymentPipeline(uow_factory, settings), bus)
        listener.start()
        await publish_grant_changed(bus, "ghost", "f1", "revoked")

        [failed] = bus.get_recent_events(source=EventSource.DEPLOYMENT)
        assert failed.type == EventType.DEPLOYMENT_FAILED
        assert failed.severity == EventSeverity.URGENT
        assert "Unknown tenant" in failed.data["error"]

    @pytest.mark.asyncio
    async def test_event_without_tenant_is_ignored(self, uow_factory, settings):
        bus = EventBus()
        listener = DeploymentListener(PermissionDeploymentPipeline(uow_factory, settings), bus)
        listener.start()
        await bus.publish(Event(source=EventSource.LICENSING, type=EventType.LICENSE_GRANT_CREATED))

        assert bus.get_recent_events(source=EventSource.DEPLOYMENT) == []

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, uow_factory, seed, settings):
        tenant = await seed.tenant()
        bus = EventBus()
        listener = DeploymentListener(PermissionDeploymentPipeline(uow_factory, settings), bus)
        listener.start()
        listener.stop()
        await publish_grant_changed(bus, tenant, "f1", "created")

        assert bus.get_recent_events(source=EventSource.DEPLOYMENT) == []

    @pytest.mark.asyncio
    async def test_deployment_events_do_not_loop(self, uow_factory, seed, settings):
        tenant = await seed.tenant()
        bus = EventBus()
        DeploymentListener(PermissionDeploymentPipeline(uow_factory, settings), bus).start()
        await bus.publish(Event(
            source=EventSource.DEPLOYMENT,
            type=EventType.DEPLOYMENT_SYNCED,
            data={"tenant_id": tenant},
        ))

        assert len(bus.get_recent_events()) == 1
