"""Shorthand constructors for commonly used gates."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from accessgate.gates.base import Gate
from accessgate.gates.combinators import All, Any as AnyOf
from accessgate.gates.gates import (
    AccessServices,
    AuthenticatedGate,
    CustomGate,
    LicenseGate,
    PermissionGate,
    Predicate,
    RoleGate,
    SuperAdminGate,
    SurfaceGate,
)
from accessgate.types import GateMode

TENANT_ADMIN_ROLE_KEYS = ("tenant_admin", "role_tenant_admin")


class Gates:
    """Builds gates that share one set of resolvers and settings."""

    def __init__(self, services: AccessServices) -> None:
        self.services = services

    def super_admin_only(self, **options: Any) -> SuperAdminGate:
        return SuperAdminGate(self.services, **options)

    def authenticated(self, **options: Any) -> AuthenticatedGate:
        return AuthenticatedGate(settings=self.services.settings, **options)

    def with_permission(
        self, codes: str | Iterable[str], mode: str | GateMode = GateMode.ALL, **options: Any
    ) -> PermissionGate:
        return PermissionGate(self.services, codes, mode, **options)

    def with_role(
        self, role_keys: str | Iterable[str], mode: str | GateMode = GateMode.ANY, **options: Any
    ) -> RoleGate:
        return RoleGate(self.services, role_keys, mode, **options)

    def with_license(self, feature_code: str, **options: Any) -> LicenseGate:
        return LicenseGate(self.services, feature_code, **options)

    def for_surface(self, surface_id: str, **options: Any) -> SurfaceGate:
        return SurfaceGate(self.services, surface_id, **options)

    def custom(
        self,
        predicate: Predicate,
        denial_reason: str = "Custom access check failed",
        **options: Any,
    ) -> CustomGate:
        return CustomGate(predicate, denial_reason, settings=self.services.settings, **options)

    def all_of(self, *gates: Gate, **options: Any) -> All:
        return All(*gates, settings=self.services.settings, **options)

    def any_of(self, *gates: Gate, **options: Any) -> AnyOf:
        return AnyOf(*gates, settings=self.services.settings, **options)

    def rbac_admin(self, **options: Any) -> AnyOf:
        """Super admins, or tenant admins of the current tenant."""
        return self.any_of(
            self.super_admin_only(),
            self.with_role(TENANT_ADMIN_ROLE_KEYS, GateMode.ANY),
            **options,
        )
