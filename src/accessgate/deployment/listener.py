"""Runs a tenant sync whenever the licensing side announces a grant change."""

from __future__ import annotations

import logging

from accessgate.deployment.pipeline import PermissionDeploymentPipeline
from accessgate.errors import AccessControlError
from accessgate.events.bus import EventBus, get_event_bus
from accessgate.events.types import Event, EventSeverity, EventSource, EventType

logger = logging.getLogger("accessgate.deployment")


class DeploymentListener:
    """Subscribes the pipeline to licensing events.

    The licensing collaborator only publishes; it never calls the pipeline.
    """

    def __init__(self, pipeline: PermissionDeploymentPipeline, bus: EventBus | None = None) -> None:
        self._pipeline = pipeline
        self._bus = bus or get_event_bus()

    def start(self) -> None:
        self._bus.subscribe(self.handle, sources={EventSource.LICENSING})
        logger.info("Deployment listener subscribed to licensing events")

    def stop(self) -> None:
        self._bus.unsubscribe(self.handle)

    async def handle(self, event: Event) -> None:
        tenant_id = event.data.get("tenant_id")
        if not tenant_id:
            logger.warning("Licensing event %s carries no tenant_id, ignoring", event.type)
            return

        try:
            summary = await self._pipeline.sync_tenant_permissions(tenant_id)
        except AccessControlError as exc:
            logger.error("Sync after %s failed for tenant %s: %s", event.type, tenant_id, exc)
            await self._bus.publish(
                Event(
                    source=EventSource.DEPLOYMENT,
                    type=EventType.DEPLOYMENT_FAILED,
                    severity=EventSeverity.URGENT,
                    data={"tenant_id": tenant_id, "trigger": str(event.type), "error": str(exc)},
                    message=f"Permission sync failed for tenant {tenant_id}",
                )
            )
            return

        errors = summary.all_errors
        await self._bus.publish(
            Event(
                source=EventSource.DEPLOYMENT,
                type=EventType.DEPLOYMENT_SYNCED,
                severity=EventSeverity.NOTABLE if errors else EventSeverity.NORMAL,
                data={
                    "tenant_id": tenant_id,
                    "trigger": str(event.type),
                    "features_processed": summary.features_processed,
                    "permissions_created": summary.permissions_created,
                    "role_links_created": summary.role_links_created,
                    "bindings_created": summary.bindings_created,
                    "permissions_removed": summary.permissions_removed,
                    "errors": errors,
                },
                message=f"Permission sync for tenant {tenant_id} finished with {len(errors)} errors",
            )
        )
