"""Event type definitions for the event bus."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class EventSeverity(StrEnum):
    NORMAL = "NORMAL"
    NOTABLE = "NOTABLE"
    URGENT = "URGENT"


class EventSource(StrEnum):
    LICENSING = "licensing"
    DEPLOYMENT = "deployment"


class EventType(StrEnum):
    """Well-known event types."""

    # Published by the licensing collaborator
    LICENSE_GRANT_CREATED = "license_grant_created"
    LICENSE_GRANT_RENEWED = "license_grant_renewed"
    LICENSE_GRANT_REVOKED = "license_grant_revoked"

    # Published by the deployment listener
    DEPLOYMENT_SYNCED = "deployment_synced"
    DEPLOYMENT_FAILED = "deployment_failed"


GRANT_CHANGE_TYPES = {
    "created": EventType.LICENSE_GRANT_CREATED,
    "renewed": EventType.LICENSE_GRANT_RENEWED,
    "revoked": EventType.LICENSE_GRANT_REVOKED,
}


@dataclass
class Event:
    """A licensing or deployment event."""

    source: EventSource
    type: str
    severity: EventSeverity = EventSeverity.NORMAL
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = field(default_factory=dict)
    message: str = ""
