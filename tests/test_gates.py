"""Tests for leaf gates, combinators and the gate factory."""

from __future__ import annotations

from collections import Counter

import pytest

from accessgate.config import Settings
from accessgate.errors import AccessDeniedError, ConfigurationError, NotFoundError
from accessgate.gates import (
    AccessServices,
    All,
    Any,
    AuthenticatedGate,
    CustomGate,
    Gates,
    LicenseGate,
    PermissionGate,
    RoleGate,
    SuperAdminGate,
    SurfaceGate,
)
from accessgate.types import (
    BundleTarget,
    MenuTarget,
    ResolvedRole,
    RoleTarget,
    SurfaceBinding,
)


class FakePermissions:
    def __init__(self, permissions=None, roles=None, super_admins=(), bundles=None):
        self.permissions = permissions or {}
        self.roles = roles or {}
        self.super_admins = set(super_admins)
        self.bundles = bundles or {}
        self.calls: Counter[str] = Counter()

    async def is_super_admin(self, user_id):
        self.calls["is_super_admin"] += 1
        return user_id in self.super_admins

    async def resolve_effective_permissions(self, user_id, tenant_id):
        self.calls["permissions"] += 1
        return set(self.permissions.get((user_id, tenant_id), set()))

    async def resolve_roles(self, user_id, tenant_id):
        self.calls["roles"] += 1
        return list(self.roles.get((user_id, tenant_id), []))

    async def resolve_bundle_permissions(self, bundle_id):
        return set(self.bundles.get(bundle_id, set()))


class FakeFeatures:
    def __init__(self, features=None):
        self.features = features or {}
        self.calls = 0

    async def resolve_active_features(self, tenant_id):
        self.calls += 1
        return set(self.features.get(tenant_id, set()))


class FakeSurfaces:
    def __init__(self, bindings=None):
        self.bindings = bindings or {}

    async def resolve_bindings(self, surface_id, tenant_id=None):
        if surface_id not in self.bindings:
            raise NotFoundError("surface", surface_id)
        return list(self.bindings[surface_id])


class BrokenPermissions(FakePermissions):
    async def resolve_effective_permissions(self, user_id, tenant_id):
        raise RuntimeError("database unavailable")


ADMIN = ResolvedRole(id="r-admin", key="admin", metadata_key="role_admin")
STAFF = ResolvedRole(id="r-staff", key="staff", metadata_key="role_staff")


def make_services(
    permissions=None, features=None, surfaces=None, settings=None
) -> AccessServices:
    return AccessServices(
        permissions=permissions or FakePermissions(),
        features=features or FakeFeatures(),
        surfaces=surfaces or FakeSurfaces(),
        settings=settings or Settings(),
    )


@pytest.fixture
def services() -> AccessServices:
    return make_services(
        permissions=FakePermissions(
            permissions={("u1", "t1"): {"members:view", "reports:export"}},
            roles={("u1", "t1"): [STAFF], ("u2", "t1"): [ADMIN]},
            super_admins={"root"},
            bundles={"b-reports": {"reports:export"}, "b-giving": {"giving:view"}},
        ),
        features=FakeFeatures({"t1": {"giving"}}),
        surfaces=FakeSurfaces(
            {
                "s1": [SurfaceBinding("s1", RoleTarget("r-admin"), "t1", "pro", True)],
                "reports": [SurfaceBinding("reports", BundleTarget("b-reports"), "t1")],
                "nav-only": [SurfaceBinding("nav-only", MenuTarget("m1"), "t1")],
                "open": [],
            }
        ),
    )


class TestPermissionGate:
    @pytest.mark.asyncio
    async def test_all_mode(self, services):
        assert await PermissionGate(services, ["members:view", "reports:export"]).allows("u1", "t1")
        decision = await PermissionGate(services, ["members:view", "members:edit"]).check("u1", "t1")
        assert not decision.allowed
        assert "members:edit" in decision.reason

    @pytest.mark.asyncio
    async def test_any_mode(self, services):
        gate = PermissionGate(services, ["members:edit", "reports:export"], mode="any")
        assert await gate.allows("u1", "t1")
        assert not await PermissionGate(services, ["members:edit"], mode="any").allows("u1", "t1")

    def test_empty_codes_is_configuration_error(self, services):
        with pytest.raises(ConfigurationError):
            PermissionGate(services, [])
        with pytest.raises(ConfigurationError):
            PermissionGate(services, ["", "  "])

    def test_invalid_mode(self, services):
        with pytest.raises(ConfigurationError):
            PermissionGate(services, ["members:view"], mode="most")

    @pytest.mark.asyncio
    async def test_unauthenticated_denied(self, services):
        decision = await PermissionGate(services, "members:view").check(None, "t1")
        assert not decision.allowed
        assert decision.reason == "Not authenticated"

    @pytest.mark.asyncio
    async def test_missing_tenant_denied_gracefully(self, services):
        decision = await PermissionGate(services, "members:view").check("u1", None)
        assert not decision.allowed
        assert "tenant" in decision.reason

    @pytest.mark.asyncio
    async def test_missing_tenant_raises_without_graceful_fail(self, services):
        gate = PermissionGate(services, "members:view", graceful_fail=False)
        with pytest.raises(ConfigurationError):
            await gate.check("u1", None)


class TestRoleGate:
    @pytest.mark.asyncio
    async def test_matches_key_or_metadata_key(self, services):
        assert await RoleGate(services, ["staff"]).allows("u1", "t1")
        assert await RoleGate(services, ["role_staff"]).allows("u1", "t1")
        assert not await RoleGate(services, ["admin"]).allows("u1", "t1")

    @pytest.mark.asyncio
    async def test_all_mode(self, services):
        gate = RoleGate(services, ["staff", "admin"], mode="all")
        decision = await gate.check("u1", "t1")
        assert not decision.allowed
        assert "admin" in decision.reason

    @pytest.mark.asyncio
    async def test_roles_not_permissions(self, services):
        # u1 holds members:view as a permission, not as a role
        assert not await RoleGate(services, ["members:view"]).allows("u1", "t1")


class TestLicenseGate:
    @pytest.mark.asyncio
    async def test_licensed_and_unlicensed(self, services):
        assert await LicenseGate(services, "giving").allows("u1", "t1")
        decision = await LicenseGate(services, "pro").check("u1", "t1")
        assert not decision.allowed
        assert "licensed" in decision.reason

    @pytest.mark.asyncio
    async def test_tenant_level_without_principal(self, services):
        assert await LicenseGate(services, "giving").allows(None, "t1")

    def test_requires_code(self, services):
        with pytest.raises(ConfigurationError):
            LicenseGate(services, "")


class TestSurfaceGate:
    @pytest.mark.asyncio
    async def test_role_bound_license_enforced_denies_with_license_reason(self, services):
        # admin role present, tenant lacks feature "pro"
        decision = await SurfaceGate(services, "s1").check("u2", "t1")
        assert not decision.allowed
        assert "licensed feature 'pro'" in decision.reason

    @pytest.mark.asyncio
    async def test_role_bound_license_present_allows(self, services):
        services.features.features["t1"].add("pro")
        assert await SurfaceGate(services, "s1").allows("u2", "t1")

    @pytest.mark.asyncio
    async def test_role_missing(self, services):
        decision = await SurfaceGate(services, "s1").check("u1", "t1")
        assert not decision.allowed
        assert "role or bundle" in decision.reason

    @pytest.mark.asyncio
    async def test_bundle_satisfied_by_permissions(self, services):
        assert await SurfaceGate(services, "reports").allows("u1", "t1")
        assert not await SurfaceGate(services, "reports").allows("u2", "t1")

    @pytest.mark.asyncio
    async def test_unbound_surface_uses_configured_default(self, services):
        assert not await SurfaceGate(services, "open").allows("u1", "t1")
        assert not await SurfaceGate(services, "nav-only").allows("u1", "t1")

        services.settings = Settings(access={"surface_default": "allow"})
        assert await SurfaceGate(services, "open").allows("u1", "t1")
        assert await SurfaceGate(services, "nav-only").allows("u1", "t1")

    @pytest.mark.asyncio
    async def test_unregistered_surface(self, services):
        decision = await SurfaceGate(services, "ghost").check("u1", "t1")
        assert not decision.allowed
        assert "surface not found: ghost" in decision.reason

        with pytest.raises(NotFoundError):
            await SurfaceGate(services, "ghost", graceful_fail=False).check("u1", "t1")


class TestSuperAdmin:
    @pytest.mark.asyncio
    async def test_super_admin_gate(self, services):
        assert await SuperAdminGate(services).allows("root", None)
        assert not await SuperAdminGate(services).allows("u1", "t1")

    @pytest.mark.asyncio
    async def test_super_admin_bypasses_resolver_gates(self, services):
        assert await PermissionGate(services, "anything:at-all").allows("root", "t1")
        assert await LicenseGate(services, "pro").allows("root", "t1")
        assert await SurfaceGate(services, "s1").allows("root", "t1")

    @pytest.mark.asyncio
    async def test_bypass_can_be_disabled(self):
        services = make_services(
            permissions=FakePermissions(super_admins={"root"}),
            settings=Settings(access={"superadmin_bypass": False}),
        )
        assert not await PermissionGate(services, "members:view").allows("root", "t1")
        assert await SuperAdminGate(services).allows("root", "t1")


class TestSimpleGates:
    @pytest.mark.asyncio
    async def test_authenticated(self):
        assert await AuthenticatedGate().allows("u1")
        assert not await AuthenticatedGate().allows(None)
        assert not await AuthenticatedGate().allows("")

    @pytest.mark.asyncio
    async def test_custom_sync_and_async(self):
        owners = {"u1"}

        def is_owner(user_id, tenant_id):
            return user_id in owners

        async def is_owner_async(user_id, tenant_id):
            return user_id in owners

        for predicate in (is_owner, is_owner_async):
            gate = CustomGate(predicate, "Only the record owner may edit")
            assert await gate.allows("u1", "t1")
            decision = await gate.check("u2", "t1")
            assert decision.reason == "Only the record owner may edit"

    @pytest.mark.asyncio
    async def test_graceful_fail_converts_errors(self):
        def explode(user_id, tenant_id):
            raise RuntimeError("boom")

        decision = await CustomGate(explode).check("u1", "t1")
        assert not decision.allowed
        assert "boom" in decision.reason

        with pytest.raises(RuntimeError):
            await CustomGate(explode, graceful_fail=False).check("u1", "t1")

    @pytest.mark.asyncio
    async def test_strict_child_error_escapes_combinators(self):
        def explode(user_id, tenant_id):
            raise RuntimeError("boom")

        strict = CustomGate(explode, graceful_fail=False)
        with pytest.raises(RuntimeError, match="boom"):
            await Any(strict).check("u1", "t1")
        with pytest.raises(RuntimeError, match="boom"):
            await All(AuthenticatedGate(), Any(strict, graceful_fail=True)).check("u1", "t1")

    @pytest.mark.asyncio
    async def test_graceful_child_inside_combinator_denies(self):
        def explode(user_id, tenant_id):
            raise RuntimeError("boom")

        decision = await Any(CustomGate(explode, graceful_fail=True), graceful_fail=False).check(
            "u1", "t1"
        )
        assert not decision.allowed
        assert "boom" in decision.reason

    @pytest.mark.asyncio
    async def test_graceful_fail_default_from_settings(self):
        services = make_services(
            permissions=BrokenPermissions(),
            settings=Settings(access={"graceful_fail": False}),
        )
        with pytest.raises(RuntimeError):
            await PermissionGate(services, "members:view").check("u1", "t1")

        services.settings = Settings()
        assert not await PermissionGate(services, "members:view").allows("u1", "t1")


class TestVerifyAndFallback:
    @pytest.mark.asyncio
    async def test_verify_raises_access_denied(self, services):
        gate = PermissionGate(
            services,
            "giving:approve",
            fallback_path="/admin",
            fallback_reason="upgrade",
        )
        with pytest.raises(AccessDeniedError) as exc_info:
            await gate.verify("u1", "t1")
        assert "giving:approve" in exc_info.value.reason
        assert exc_info.value.fallback_path == "/admin"
        assert exc_info.value.fallback_reason == "upgrade"

    @pytest.mark.asyncio
    async def test_verify_passes_silently(self, services):
        assert await PermissionGate(services, "members:view").verify("u1", "t1") is None

    @pytest.mark.asyncio
    async def test_fallback_does_not_affect_decision(self, services):
        gate = PermissionGate(services, "members:view", fallback_path="/denied")
        decision = await gate.check("u1", "t1")
        assert decision.allowed
        assert decision.fallback_path is None

    @pytest.mark.asyncio
    async def test_verify_never_raises_other_errors(self, services):
        gate = SurfaceGate(services, "ghost")
        with pytest.raises(AccessDeniedError):
            await gate.verify("u1", "t1")


def _constant(allowed: bool, reason: str) -> CustomGate:
    async def predicate(user_id, tenant_id):
        return allowed

    return CustomGate(predicate, reason)


class TestCombinators:
    @pytest.mark.asyncio
    async def test_single_child_identity(self, services):
        for gate in (
            PermissionGate(services, "members:view"),
            PermissionGate(services, "members:edit"),
            LicenseGate(services, "pro"),
            _constant(False, "no"),
        ):
            expected = await gate.check("u1", "t1")
            assert await All(gate).check("u1", "t1") == expected
            assert await Any(gate).check("u1", "t1") == expected

    @pytest.mark.asyncio
    async def test_all_reports_first_denial(self):
        gate = All(_constant(True, "yes"), _constant(False, "second"), _constant(False, "third"))
        decision = await gate.check("u1", "t1")
        assert not decision.allowed
        assert decision.reason == "second"

    @pytest.mark.asyncio
    async def test_any_allows_on_first_success(self):
        assert await Any(_constant(False, "no"), _constant(True, "yes")).allows("u1", "t1")

    @pytest.mark.asyncio
    async def test_any_aggregates_reasons(self):
        decision = await Any(_constant(False, "first"), _constant(False, "second")).check("u1", "t1")
        assert not decision.allowed
        assert decision.reason == "first; second"

    @pytest.mark.asyncio
    async def test_short_circuit(self):
        evaluated = []

        def track(name, result):
            def predicate(user_id, tenant_id):
                evaluated.append(name)
                return result

            return CustomGate(predicate, name)

        await All(track("a", False), track("b", True)).check("u1", "t1")
        await Any(track("c", True), track("d", False)).check("u1", "t1")
        assert evaluated == ["a", "c"]

    @pytest.mark.asyncio
    async def test_nesting(self, services):
        gate = All(
            Any(SuperAdminGate(services), RoleGate(services, ["admin"])),
            LicenseGate(services, "giving"),
        )
        assert await gate.allows("u2", "t1")
        assert await gate.allows("root", "t1")
        assert not await gate.allows("u1", "t1")

    @pytest.mark.asyncio
    async def test_resolvers_read_once_per_evaluation(self, services):
        gate = All(
            PermissionGate(services, "members:view"),
            PermissionGate(services, "reports:export"),
            Any(PermissionGate(services, "members:edit"), LicenseGate(services, "giving")),
            LicenseGate(services, "giving"),
        )
        assert await gate.allows("u1", "t1")
        assert services.permissions.calls["permissions"] == 1
        assert services.features.calls == 1

    def test_empty_combinator(self):
        with pytest.raises(ConfigurationError):
            All()
        with pytest.raises(ConfigurationError):
            Any()

    @pytest.mark.asyncio
    async def test_any_keeps_child_fallback(self, services):
        gate = Any(
            PermissionGate(services, "giving:approve", fallback_path="/upgrade"),
            _constant(False, "no"),
        )
        decision = await gate.check("u1", "t1")
        assert decision.fallback_path == "/upgrade"


class TestGateFactory:
    @pytest.mark.asyncio
    async def test_builders(self, services):
        gates = Gates(services)
        assert await gates.with_permission(["members:view"]).allows("u1", "t1")
        assert await gates.with_role("staff").allows("u1", "t1")
        assert await gates.with_license("giving").allows("u1", "t1")
        assert await gates.authenticated().allows("u1")
        assert await gates.super_admin_only().allows("root")
        assert not await gates.for_surface("s1").allows("u2", "t1")
        assert await gates.custom(lambda u, t: u == "u1").allows("u1", "t1")
        assert await gates.any_of(gates.super_admin_only(), gates.with_role("staff")).allows(
            "u1", "t1"
        )
        assert not await gates.all_of(gates.with_role("staff"), gates.with_role("admin")).allows(
            "u1", "t1"
        )

    @pytest.mark.asyncio
    async def test_rbac_admin(self):
        tenant_admin = ResolvedRole(id="r-ta", key="tenant_admin", metadata_key="role_tenant_admin")
        services = make_services(
            permissions=FakePermissions(
                roles={("admin", "t1"): [tenant_admin], ("u1", "t1"): [STAFF]},
                super_admins={"root"},
            )
        )
        gate = Gates(services).rbac_admin()
        assert await gate.allows("admin", "t1")
        assert await gate.allows("root", "t1")
        decision = await gate.check("u1", "t1")
        assert not decision.allowed
        assert "Super admin access required" in decision.reason
