"""Shared enums and value types for access decisions and deployment."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum


def utcnow() -> datetime:
    """Current time as naive UTC, the form every stored timestamp uses."""
    return datetime.now(UTC).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


class RoleScope(StrEnum):
    TENANT = "tenant"
    CAMPUS = "campus"
    MINISTRY = "ministry"
    GLOBAL = "global"
    SYSTEM = "system"


class PermissionSource(StrEnum):
    """Where a tenant permission came from."""

    MANUAL = "manual"
    LICENSE_FEATURE = "license_feature"
    SYSTEM = "system"


class GateMode(StrEnum):
    ALL = "all"
    ANY = "any"


class SurfaceKind(StrEnum):
    PAGE = "page"
    MENU = "menu"
    API = "api"


class DeploymentState(StrEnum):
    """Lifecycle of one (tenant, feature) pair."""

    NOT_LICENSED = "not_licensed"
    PENDING_DEPLOYMENT = "pending_deployment"
    DEPLOYED = "deployed"
    PENDING_REMOVAL = "pending_removal"
    REMOVED = "removed"


def split_permission_code(code: str) -> tuple[str, str]:
    """Split ``category:action``. A code without a colon lands in ``general``."""
    category, sep, action = code.partition(":")
    if not sep:
        return "general", code
    return category or "general", action


@dataclass(frozen=True)
class Decision:
    """Outcome of a gate check.

    ``fallback_path`` and ``fallback_reason`` are a side channel for the
    caller (redirect target, UI hint); they never influence ``allowed``.
    """

    allowed: bool
    reason: str | None = None
    fallback_path: str | None = None
    fallback_reason: str | None = None

    @classmethod
    def allow(cls) -> Decision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> Decision:
        return cls(allowed=False, reason=reason)


# ---------------------------------------------------------------------------
# Surface binding targets: exactly one of role / bundle / menu
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoleTarget:
    role_id: str
    kind: str = "role"

    @property
    def target_id(self) -> str:
        return self.role_id


@dataclass(frozen=True)
class BundleTarget:
    bundle_id: str
    kind: str = "bundle"

    @property
    def target_id(self) -> str:
        return self.bundle_id


@dataclass(frozen=True)
class MenuTarget:
    menu_id: str
    kind: str = "menu"

    @property
    def target_id(self) -> str:
        return self.menu_id


SurfaceBindingTarget = RoleTarget | BundleTarget | MenuTarget


def binding_target(kind: str, target_id: str) -> SurfaceBindingTarget:
    """Build the target variant from its stored (kind, id) pair."""
    if kind == "role":
        return RoleTarget(target_id)
    if kind == "bundle":
        return BundleTarget(target_id)
    if kind == "menu":
        return MenuTarget(target_id)
    raise ValueError(f"Unknown surface binding target kind: {kind}")


@dataclass(frozen=True)
class SurfaceBinding:
    """A surface gated by a role, a bundle, or placed under a menu."""

    surface_id: str
    target: SurfaceBindingTarget
    tenant_id: str | None = None
    required_feature_code: str | None = None
    enforces_license: bool = False

    @property
    def grants_access(self) -> bool:
        """Menu placements carry no role or bundle requirement."""
        return not isinstance(self.target, MenuTarget)


@dataclass(frozen=True)
class ResolvedRole:
    """A role currently held by a principal in one tenant."""

    id: str
    key: str
    metadata_key: str
    delegated: bool = False

    @property
    def keys(self) -> set[str]:
        return {k for k in (self.key, self.metadata_key) if k}
