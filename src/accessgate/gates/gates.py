"""Leaf gates backed by the permission, license and surface resolvers."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from accessgate.config import Settings, get_settings
from accessgate.errors import ConfigurationError
from accessgate.gates.base import EvaluationContext, Gate
from accessgate.resolvers import (
    LicenseFeatureResolver,
    PermissionResolver,
    SurfaceBindingResolver,
)
from accessgate.types import (
    BundleTarget,
    Decision,
    GateMode,
    ResolvedRole,
    RoleTarget,
    SurfaceBinding,
    SurfaceBindingTarget,
)

Predicate = Callable[[str | None, str | None], bool | Awaitable[bool]]


@dataclass
class AccessServices:
    """Resolvers shared by every gate built from one configuration."""

    permissions: PermissionResolver
    features: LicenseFeatureResolver
    surfaces: SurfaceBindingResolver
    settings: Settings = field(default_factory=get_settings)


def _normalize_codes(codes: str | Iterable[str], what: str) -> tuple[str, ...]:
    if isinstance(codes, str):
        codes = [codes]
    normalized = tuple(dict.fromkeys(c.strip() for c in codes if c and c.strip()))
    if not normalized:
        raise ConfigurationError(f"{what} requires at least one entry")
    return normalized


def _normalize_mode(mode: str | GateMode) -> GateMode:
    try:
        return GateMode(mode)
    except ValueError:
        raise ConfigurationError(f"Invalid gate mode: {mode!r}") from None


class ResolverGate(Gate):
    """Base for gates that read resolvers through an ``EvaluationContext``.

    A super admin passes before any resolver-specific logic runs when
    ``access.superadmin_bypass`` is on.
    """

    requires_principal = True

    def __init__(self, services: AccessServices, **options: Any) -> None:
        super().__init__(settings=services.settings, **options)
        self.services = services

    def _tenant(self, ctx: EvaluationContext) -> str:
        if not ctx.tenant_id:
            raise ConfigurationError(f"{self!r} requires a tenant context")
        return ctx.tenant_id

    async def _is_super_admin(self, ctx: EvaluationContext) -> bool:
        resolver = self.services.permissions
        return await ctx.cached(
            ("super_admin", id(resolver)),
            lambda: resolver.is_super_admin(ctx.user_id),
        )

    async def _permissions(self, ctx: EvaluationContext) -> set[str]:
        resolver = self.services.permissions
        return await ctx.cached(
            ("permissions", id(resolver)),
            lambda: resolver.resolve_effective_permissions(ctx.user_id, ctx.tenant_id),
        )

    async def _roles(self, ctx: EvaluationContext) -> list[ResolvedRole]:
        resolver = self.services.permissions
        return await ctx.cached(
            ("roles", id(resolver)),
            lambda: resolver.resolve_roles(ctx.user_id, ctx.tenant_id),
        )

    async def _features(self, ctx: EvaluationContext) -> set[str]:
        resolver = self.services.features
        return await ctx.cached(
            ("features", id(resolver)),
            lambda: resolver.resolve_active_features(ctx.tenant_id),
        )

    async def _evaluate(self, ctx: EvaluationContext) -> Decision:
        if self.requires_principal and not ctx.user_id:
            return Decision.deny("Not authenticated")
        tenant_id = self._tenant(ctx)
        if (
            ctx.user_id
            and self.settings.access.superadmin_bypass
            and await self._is_super_admin(ctx)
        ):
            return Decision.allow()
        return await self._decide(ctx, tenant_id)

    async def _decide(self, ctx: EvaluationContext, tenant_id: str) -> Decision:
        raise NotImplementedError


class PermissionGate(ResolverGate):
    """Requires all (or any) of ``codes`` in the effective permission set."""

    def __init__(
        self,
        services: AccessServices,
        codes: str | Iterable[str],
        mode: str | GateMode = GateMode.ALL,
        **options: Any,
    ) -> None:
        super().__init__(services, **options)
        self.codes = _normalize_codes(codes, "PermissionGate")
        self.mode = _normalize_mode(mode)

    async def _decide(self, ctx: EvaluationContext, tenant_id: str) -> Decision:
        held = await self._permissions(ctx)
        if self.mode == GateMode.ALL:
            missing = [c for c in self.codes if c not in held]
            if missing:
                return Decision.deny(f"Missing permission: {', '.join(missing)}")
            return Decision.allow()
        if any(c in held for c in self.codes):
            return Decision.allow()
        return Decision.deny(f"Requires any permission of: {', '.join(self.codes)}")

    def __repr__(self) -> str:
        return f"PermissionGate({list(self.codes)!r}, mode={self.mode.value!r})"


class RoleGate(ResolverGate):
    """Requires all (or any) of ``role_keys`` among the principal's roles.

    A role matches on either its key or its ``metadata_key``.
    """

    def __init__(
        self,
        services: AccessServices,
        role_keys: str | Iterable[str],
        mode: str | GateMode = GateMode.ANY,
        **options: Any,
    ) -> None:
        super().__init__(services, **options)
        self.role_keys = _normalize_codes(role_keys, "RoleGate")
        self.mode = _normalize_mode(mode)

    async def _decide(self, ctx: EvaluationContext, tenant_id: str) -> Decision:
        held: set[str] = set()
        for role in await self._roles(ctx):
            held |= role.keys
        if self.mode == GateMode.ALL:
            missing = [k for k in self.role_keys if k not in held]
            if missing:
                return Decision.deny(f"Missing role: {', '.join(missing)}")
            return Decision.allow()
        if any(k in held for k in self.role_keys):
            return Decision.allow()
        return Decision.deny(f"Requires any role of: {', '.join(self.role_keys)}")

    def __repr__(self) -> str:
        return f"RoleGate({list(self.role_keys)!r}, mode={self.mode.value!r})"


class LicenseGate(ResolverGate):
    """Allowed iff the tenant holds an active grant for ``feature_code``."""

    requires_principal = False

    def __init__(self, services: AccessServices, feature_code: str, **options: Any) -> None:
        super().__init__(services, **options)
        if not feature_code or not feature_code.strip():
            raise ConfigurationError("LicenseGate requires a feature code")
        self.feature_code = feature_code.strip()

    async def _decide(self, ctx: EvaluationContext, tenant_id: str) -> Decision:
        if self.feature_code in await self._features(ctx):
            return Decision.allow()
        return Decision.deny(f"Feature '{self.feature_code}' is not licensed for this tenant")

    def __repr__(self) -> str:
        return f"LicenseGate({self.feature_code!r})"


class SurfaceGate(ResolverGate):
    """Gate a UI page, menu item or API route by its registered bindings.

    Passes when some role or bundle binding is satisfied by the principal and,
    for a binding that enforces a license, its required feature is active.
    Menu placements never grant access. A registered surface without an
    access binding answers with ``access.surface_default``.
    """

    def __init__(self, services: AccessServices, surface_id: str, **options: Any) -> None:
        super().__init__(services, **options)
        if not surface_id:
            raise ConfigurationError("SurfaceGate requires a surface id")
        self.surface_id = surface_id

    async def _bindings(self, ctx: EvaluationContext, tenant_id: str) -> list[SurfaceBinding]:
        resolver = self.services.surfaces
        return await ctx.cached(
            ("surface", id(resolver), self.surface_id),
            lambda: resolver.resolve_bindings(self.surface_id, tenant_id),
        )

    async def _target_satisfied(self, ctx: EvaluationContext, target: SurfaceBindingTarget) -> bool:
        if isinstance(target, RoleTarget):
            return any(role.id == target.role_id for role in await self._roles(ctx))
        if isinstance(target, BundleTarget):
            resolver = self.services.permissions
            bundle_codes = await ctx.cached(
                ("bundle", id(resolver), target.bundle_id),
                lambda: resolver.resolve_bundle_permissions(target.bundle_id),
            )
            return bool(bundle_codes) and bundle_codes <= await self._permissions(ctx)
        return False

    async def _decide(self, ctx: EvaluationContext, tenant_id: str) -> Decision:
        bindings = [b for b in await self._bindings(ctx, tenant_id) if b.grants_access]
        if not bindings:
            if self.settings.access.surface_default == "allow":
                return Decision.allow()
            return Decision.deny(f"Surface '{self.surface_id}' has no access binding")

        license_denial: str | None = None
        for binding in bindings:
            if not await self._target_satisfied(ctx, binding.target):
                continue
            if binding.enforces_license:
                code = binding.required_feature_code
                if not code:
                    license_denial = (
                        f"Surface '{self.surface_id}' enforces a license but names no feature"
                    )
                    continue
                if code not in await self._features(ctx):
                    license_denial = (
                        f"Surface '{self.surface_id}' requires licensed feature '{code}'"
                    )
                    continue
            return Decision.allow()

        if license_denial:
            return Decision.deny(license_denial)
        return Decision.deny(f"Surface '{self.surface_id}' requires a bound role or bundle")

    def __repr__(self) -> str:
        return f"SurfaceGate({self.surface_id!r})"


class SuperAdminGate(Gate):
    """Allowed iff the principal's administrative role is the super admin designation."""

    def __init__(self, services: AccessServices, **options: Any) -> None:
        super().__init__(settings=services.settings, **options)
        self.services = services

    async def _evaluate(self, ctx: EvaluationContext) -> Decision:
        if not ctx.user_id:
            return Decision.deny("Not authenticated")
        resolver = self.services.permissions
        is_admin = await ctx.cached(
            ("super_admin", id(resolver)),
            lambda: resolver.is_super_admin(ctx.user_id),
        )
        if is_admin:
            return Decision.allow()
        return Decision.deny("Super admin access required")


class AuthenticatedGate(Gate):
    async def _evaluate(self, ctx: EvaluationContext) -> Decision:
        if ctx.user_id:
            return Decision.allow()
        return Decision.deny("Not authenticated")


class CustomGate(Gate):
    """Wraps a predicate over ``(user_id, tenant_id)``; sync or async."""

    def __init__(
        self,
        predicate: Predicate,
        denial_reason: str = "Custom access check failed",
        **options: Any,
    ) -> None:
        super().__init__(**options)
        self.predicate = predicate
        self.denial_reason = denial_reason

    async def _evaluate(self, ctx: EvaluationContext) -> Decision:
        result = self.predicate(ctx.user_id, ctx.tenant_id)
        if inspect.isawaitable(result):
            result = await result
        if result:
            return Decision.allow()
        return Decision.deny(self.denial_reason)

    def __repr__(self) -> str:
        name = getattr(self.predicate, "__name__", "predicate")
        return f"CustomGate({name})"
