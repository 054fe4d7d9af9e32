"""Repository protocol interfaces for storage abstraction.

Resolvers and the deployment pipeline depend only on these protocols. The
SQLAlchemy implementations live in ``accessgate.storage.sql_repositories``;
any store that can express the same uniqueness constraints can provide
another implementation.

Every ``*_if_absent`` / ``link_*`` / ``bind_*`` method is an idempotent
upsert keyed by a uniqueness constraint and reports whether it wrote a row.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from accessgate.storage.models import (
    DeploymentRecord,
    Feature,
    FeaturePermission,
    Permission,
    PermissionBundle,
    PermissionRoleTemplate,
    RbacAuditLog,
    Role,
    Surface,
    SurfaceBindingRow,
    Tenant,
    TenantFeatureGrant,
    UserRoleAssignment,
)

# ---------------------------------------------------------------------------
# Tenants & principals
# ---------------------------------------------------------------------------


@runtime_checkable
class TenantRepository(Protocol):
    async def get(self, tenant_id: str) -> Tenant | None: ...

    async def create(self, name: str, slug: str, tenant_id: str | None = None) -> Tenant: ...


@runtime_checkable
class PrincipalRepository(Protocol):
    async def get_admin_role(self, user_id: str) -> str | None: ...

    async def set_admin_role(self, user_id: str, admin_role: str) -> None: ...


# ---------------------------------------------------------------------------
# RBAC graph
# ---------------------------------------------------------------------------


@runtime_checkable
class RoleRepository(Protocol):
    async def get(self, role_id: str) -> Role | None: ...

    async def find_by_metadata_key(self, tenant_id: str, metadata_key: str) -> Role | None: ...

    async def create(
        self,
        tenant_id: str | None,
        key: str,
        metadata_key: str,
        *,
        name: str = "",
        is_system: bool = False,
        is_delegatable: bool = False,
        scope: str = "tenant",
    ) -> Role: ...

    async def soft_delete(self, role_id: str) -> bool: ...


@runtime_checkable
class PermissionRepository(Protocol):
    async def get_by_code(self, tenant_id: str, code: str) -> Permission | None: ...

    async def list_by_tenant(
        self, tenant_id: str, source: str | None = None
    ) -> list[Permission]: ...

    async def create(
        self,
        tenant_id: str,
        code: str,
        *,
        source: str = "manual",
        source_reference: str | None = None,
        name: str = "",
        description: str = "",
        category: str = "",
    ) -> Permission: ...

    async def insert_if_absent(
        self,
        tenant_id: str,
        code: str,
        *,
        source: str,
        source_reference: str | None = None,
        name: str = "",
        description: str = "",
        category: str = "",
    ) -> tuple[Permission, bool]: ...

    async def link_role(self, role_id: str, permission_id: str) -> bool: ...

    async def codes_for_roles(self, role_ids: list[str], tenant_id: str) -> set[str]: ...

    async def unlink_all(self, permission_ids: list[str]) -> int: ...

    async def delete(self, permission_ids: list[str]) -> int: ...


@runtime_checkable
class BundleRepository(Protocol):
    async def create(self, tenant_id: str | None, key: str, name: str = "") -> PermissionBundle: ...

    async def add_permission(self, bundle_id: str, permission_id: str) -> bool: ...

    async def attach_to_role(self, role_id: str, bundle_id: str) -> bool: ...

    async def codes_for_bundle(self, bundle_id: str) -> set[str]: ...

    async def codes_for_roles(self, role_ids: list[str], tenant_id: str) -> set[str]: ...


@runtime_checkable
class AssignmentRepository(Protocol):
    async def assign(
        self,
        user_id: str,
        role_id: str,
        tenant_id: str,
        *,
        delegated_by: str | None = None,
        delegation_scope: str | None = None,
        expires_at: datetime | None = None,
    ) -> UserRoleAssignment: ...

    async def revoke(
        self, user_id: str, role_id: str, tenant_id: str, at: datetime | None = None
    ) -> bool: ...

    async def active_roles(
        self, user_id: str, tenant_id: str, now: datetime
    ) -> list[tuple[Role, UserRoleAssignment]]: ...


# ---------------------------------------------------------------------------
# Licensing catalog & grants
# ---------------------------------------------------------------------------


@runtime_checkable
class FeatureCatalogRepository(Protocol):
    async def get(self, feature_id: str) -> Feature | None: ...

    async def get_by_code(self, code: str) -> Feature | None: ...

    async def create(self, code: str, name: str = "", surface_id: str | None = None) -> Feature: ...

    async def add_permission_template(
        self,
        feature_id: str,
        permission_code: str,
        *,
        display_name: str = "",
        description: str = "",
        category: str = "",
        is_required: bool = True,
        display_order: int = 0,
    ) -> FeaturePermission: ...

    async def add_role_template(
        self, feature_permission_id: str, role_key: str, is_recommended: bool = True
    ) -> PermissionRoleTemplate: ...

    async def list_permission_templates(self, feature_id: str) -> list[FeaturePermission]: ...

    async def list_role_templates(
        self, feature_permission_id: str
    ) -> list[PermissionRoleTemplate]: ...


@runtime_checkable
class FeatureGrantRepository(Protocol):
    async def grant(
        self,
        tenant_id: str,
        feature_id: str,
        *,
        starts_at: datetime | None = None,
        expires_at: datetime | None = None,
        grant_source: str = "manual",
    ) -> TenantFeatureGrant: ...

    async def revoke(self, tenant_id: str, feature_id: str, at: datetime | None = None) -> int: ...

    async def active_feature_ids(self, tenant_id: str, now: datetime) -> set[str]: ...

    async def active_feature_codes(self, tenant_id: str, now: datetime) -> set[str]: ...

    async def has_active_grant(self, tenant_id: str, feature_id: str, now: datetime) -> bool: ...

    async def latest_expiry(self, tenant_id: str, feature_id: str) -> datetime | None: ...


# ---------------------------------------------------------------------------
# Surfaces
# ---------------------------------------------------------------------------


@runtime_checkable
class SurfaceRepository(Protocol):
    async def get(self, surface_id: str) -> Surface | None: ...

    async def register(
        self,
        surface_id: str,
        kind: str = "page",
        title: str = "",
        feature_code: str | None = None,
    ) -> Surface: ...

    async def bindings_for(
        self, surface_id: str, tenant_id: str | None
    ) -> list[SurfaceBindingRow]: ...

    async def bind_if_absent(
        self,
        tenant_id: str | None,
        surface_id: str,
        target_kind: str,
        target_id: str,
        *,
        required_feature_code: str | None = None,
        enforces_license: bool = False,
        source: str = "manual",
        source_reference: str | None = None,
    ) -> bool: ...

    async def delete_derived(self, tenant_id: str, feature_id: str) -> int: ...


# ---------------------------------------------------------------------------
# Deployment bookkeeping
# ---------------------------------------------------------------------------


@runtime_checkable
class DeploymentRecordRepository(Protocol):
    async def get(self, tenant_id: str, feature_id: str) -> DeploymentRecord | None: ...

    async def list_by_tenant(self, tenant_id: str) -> list[DeploymentRecord]: ...

    async def record(
        self,
        tenant_id: str,
        feature_id: str,
        state: str,
        *,
        permission_count: int = 0,
        role_link_count: int = 0,
        binding_count: int = 0,
        last_error: str = "",
    ) -> bool: ...


@runtime_checkable
class AuditRepository(Protocol):
    async def add(
        self,
        tenant_id: str,
        operation: str,
        feature_id: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None: ...

    async def list(self, tenant_id: str, limit: int = 50, offset: int = 0) -> list[RbacAuditLog]: ...


# ---------------------------------------------------------------------------
# Unit of work: one transaction spanning every repository
# ---------------------------------------------------------------------------


@runtime_checkable
class UnitOfWork(Protocol):
    tenants: TenantRepository
    principals: PrincipalRepository
    roles: RoleRepository
    permissions: PermissionRepository
    bundles: BundleRepository
    assignments: AssignmentRepository
    features: FeatureCatalogRepository
    grants: FeatureGrantRepository
    surfaces: SurfaceRepository
    deployments: DeploymentRecordRepository
    audit: AuditRepository

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...

    async def __aenter__(self) -> UnitOfWork: ...

    async def __aexit__(self, exc_type, exc, tb) -> bool | None: ...  # type: ignore[no-untyped-def]


UnitOfWorkFactory = Callable[[], UnitOfWork]
