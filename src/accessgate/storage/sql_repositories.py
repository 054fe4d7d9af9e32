"""SQLAlchemy implementations of the repository protocols.

Pipeline writes go through ``INSERT .. ON CONFLICT DO NOTHING`` on the
uniqueness constraints declared in ``accessgate.storage.models`` so two
concurrent deployments for the same tenant converge instead of racing.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.errors import TransientError
from accessgate.storage.database import get_session
from accessgate.storage.models import (
    BundlePermission,
    DeploymentRecord,
    Feature,
    FeaturePermission,
    Permission,
    PermissionBundle,
    PermissionRoleTemplate,
    PrincipalProfile,
    RbacAuditLog,
    Role,
    RoleBundle,
    RolePermission,
    Surface,
    SurfaceBindingRow,
    Tenant,
    TenantFeatureGrant,
    UserRoleAssignment,
    new_id,
)
from accessgate.types import split_permission_code, utcnow

logger = logging.getLogger("accessgate.storage")


class _SqlRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _insert_ignore(
        self, model: type, values: dict[str, Any], index_elements: list[str]
    ) -> bool:
        """Insert one row unless the unique key already exists. True if written."""
        dialect = self._session.bind.dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = (
            insert(model)
            .values(**values)
            .on_conflict_do_nothing(index_elements=index_elements)
        )
        result = await self._session.execute(stmt)
        return bool(result.rowcount)

    async def _fresh(self, stmt):  # type: ignore[no-untyped-def]
        result = await self._session.execute(
            stmt.execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Tenants & principals
# ---------------------------------------------------------------------------


class SqlTenantRepository(_SqlRepository):
    async def get(self, tenant_id: str) -> Tenant | None:
        return await self._session.get(Tenant, tenant_id)

    async def create(self, name: str, slug: str, tenant_id: str | None = None) -> Tenant:
        tenant = Tenant(id=tenant_id or new_id(), name=name, slug=slug)
        self._session.add(tenant)
        await self._session.flush()
        return tenant


class SqlPrincipalRepository(_SqlRepository):
    async def get_admin_role(self, user_id: str) -> str | None:
        profile = await self._session.get(PrincipalProfile, user_id)
        if profile is None or not profile.admin_role:
            return None
        return profile.admin_role

    async def set_admin_role(self, user_id: str, admin_role: str) -> None:
        profile = await self._session.get(PrincipalProfile, user_id)
        if profile is None:
            self._session.add(PrincipalProfile(user_id=user_id, admin_role=admin_role))
        else:
            profile.admin_role = admin_role
        await self._session.flush()


# ---------------------------------------------------------------------------
# RBAC graph
# ---------------------------------------------------------------------------


class SqlRoleRepository(_SqlRepository):
    async def get(self, role_id: str) -> Role | None:
        return await self._session.get(Role, role_id)

    async def find_by_metadata_key(self, tenant_id: str, metadata_key: str) -> Role | None:
        return await self._fresh(
            select(Role).where(
                Role.tenant_id == tenant_id,
                Role.metadata_key == metadata_key,
                Role.deleted_at.is_(None),
            )
        )

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
    ) -> Role:
        role = Role(
            id=new_id(),
            tenant_id=tenant_id,
            key=key,
            name=name or key,
            metadata_key=metadata_key,
            is_system=is_system,
            is_delegatable=is_delegatable,
            scope=scope,
        )
        self._session.add(role)
        await self._session.flush()
        return role

    async def soft_delete(self, role_id: str) -> bool:
        role = await self._session.get(Role, role_id)
        if role is None or role.is_system or role.deleted_at is not None:
            return False
        role.deleted_at = utcnow()
        await self._session.flush()
        return True


class SqlPermissionRepository(_SqlRepository):
    async def get_by_code(self, tenant_id: str, code: str) -> Permission | None:
        return await self._fresh(
            select(Permission).where(Permission.tenant_id == tenant_id, Permission.code == code)
        )

    async def list_by_tenant(self, tenant_id: str, source: str | None = None) -> list[Permission]:
        stmt = select(Permission).where(Permission.tenant_id == tenant_id)
        if source is not None:
            stmt = stmt.where(Permission.source == source)
        result = await self._session.execute(stmt.order_by(Permission.code))
        return list(result.scalars().all())

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
    ) -> Permission:
        module, _ = split_permission_code(code)
        permission = Permission(
            id=new_id(),
            tenant_id=tenant_id,
            code=code,
            name=name or code,
            description=description,
            module=module,
            category=category,
            source=source,
            source_reference=source_reference,
        )
        self._session.add(permission)
        await self._session.flush()
        return permission

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
    ) -> tuple[Permission, bool]:
        module, _ = split_permission_code(code)
        created = await self._insert_ignore(
            Permission,
            {
                "id": new_id(),
                "tenant_id": tenant_id,
                "code": code,
                "name": name or code,
                "description": description,
                "module": module,
                "category": category,
                "source": source,
                "source_reference": source_reference,
                "is_active": True,
                "created_at": utcnow(),
            },
            ["tenant_id", "code"],
        )
        permission = await self.get_by_code(tenant_id, code)
        if permission is None:
            raise TransientError(f"Permission {code} missing after upsert for tenant {tenant_id}")
        return permission, created

    async def link_role(self, role_id: str, permission_id: str) -> bool:
        return await self._insert_ignore(
            RolePermission,
            {
                "id": new_id(),
                "role_id": role_id,
                "permission_id": permission_id,
                "created_at": utcnow(),
            },
            ["role_id", "permission_id"],
        )

    async def codes_for_roles(self, role_ids: list[str], tenant_id: str) -> set[str]:
        if not role_ids:
            return set()
        result = await self._session.execute(
            select(Permission.code)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(
                RolePermission.role_id.in_(role_ids),
                Permission.tenant_id == tenant_id,
                Permission.is_active.is_(True),
            )
        )
        return set(result.scalars().all())

    async def unlink_all(self, permission_ids: list[str]) -> int:
        if not permission_ids:
            return 0
        await self._session.execute(
            delete(BundlePermission).where(BundlePermission.permission_id.in_(permission_ids))
        )
        result = await self._session.execute(
            delete(RolePermission).where(RolePermission.permission_id.in_(permission_ids))
        )
        return result.rowcount or 0

    async def delete(self, permission_ids: list[str]) -> int:
        if not permission_ids:
            return 0
        result = await self._session.execute(
            delete(Permission).where(Permission.id.in_(permission_ids))
        )
        return result.rowcount or 0


class SqlBundleRepository(_SqlRepository):
    async def create(self, tenant_id: str | None, key: str, name: str = "") -> PermissionBundle:
        bundle = PermissionBundle(id=new_id(), tenant_id=tenant_id, key=key, name=name or key)
        self._session.add(bundle)
        await self._session.flush()
        return bundle

    async def add_permission(self, bundle_id: str, permission_id: str) -> bool:
        return await self._insert_ignore(
            BundlePermission,
            {"id": new_id(), "bundle_id": bundle_id, "permission_id": permission_id},
            ["bundle_id", "permission_id"],
        )

    async def attach_to_role(self, role_id: str, bundle_id: str) -> bool:
        return await self._insert_ignore(
            RoleBundle,
            {"id": new_id(), "role_id": role_id, "bundle_id": bundle_id},
            ["role_id", "bundle_id"],
        )

    async def codes_for_bundle(self, bundle_id: str) -> set[str]:
        result = await self._session.execute(
            select(Permission.code)
            .join(BundlePermission, BundlePermission.permission_id == Permission.id)
            .where(BundlePermission.bundle_id == bundle_id, Permission.is_active.is_(True))
        )
        return set(result.scalars().all())

    async def codes_for_roles(self, role_ids: list[str], tenant_id: str) -> set[str]:
        if not role_ids:
            return set()
        result = await self._session.execute(
            select(Permission.code)
            .join(BundlePermission, BundlePermission.permission_id == Permission.id)
            .join(RoleBundle, RoleBundle.bundle_id == BundlePermission.bundle_id)
            .where(
                RoleBundle.role_id.in_(role_ids),
                Permission.tenant_id == tenant_id,
                Permission.is_active.is_(True),
            )
        )
        return set(result.scalars().all())


class SqlAssignmentRepository(_SqlRepository):
    async def assign(
        self,
        user_id: str,
        role_id: str,
        tenant_id: str,
        *,
        delegated_by: str | None = None,
        delegation_scope: str | None = None,
        expires_at: datetime | None = None,
    ) -> UserRoleAssignment:
        await self._insert_ignore(
            UserRoleAssignment,
            {
                "id": new_id(),
                "user_id": user_id,
                "role_id": role_id,
                "tenant_id": tenant_id,
                "delegated_by": delegated_by,
                "delegation_scope": delegation_scope,
                "expires_at": expires_at,
                "created_at": utcnow(),
            },
            ["user_id", "role_id", "tenant_id"],
        )
        assignment = await self._fresh(
            select(UserRoleAssignment).where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.role_id == role_id,
                UserRoleAssignment.tenant_id == tenant_id,
            )
        )
        if assignment is None:
            raise TransientError(f"Assignment of role {role_id} to {user_id} missing after upsert")
        return assignment

    async def revoke(
        self, user_id: str, role_id: str, tenant_id: str, at: datetime | None = None
    ) -> bool:
        result = await self._session.execute(
            update(UserRoleAssignment)
            .where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.role_id == role_id,
                UserRoleAssignment.tenant_id == tenant_id,
                UserRoleAssignment.revoked_at.is_(None),
            )
            .values(revoked_at=at or utcnow())
        )
        return bool(result.rowcount)

    async def active_roles(
        self, user_id: str, tenant_id: str, now: datetime
    ) -> list[tuple[Role, UserRoleAssignment]]:
        result = await self._session.execute(
            select(Role, UserRoleAssignment)
            .join(UserRoleAssignment, UserRoleAssignment.role_id == Role.id)
            .where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.tenant_id == tenant_id,
                UserRoleAssignment.revoked_at.is_(None),
                or_(
                    UserRoleAssignment.expires_at.is_(None),
                    UserRoleAssignment.expires_at > now,
                ),
                or_(Role.tenant_id == tenant_id, Role.tenant_id.is_(None)),
                Role.deleted_at.is_(None),
            )
        )
        return [(row[0], row[1]) for row in result.all()]


# ---------------------------------------------------------------------------
# Licensing catalog & grants
# ---------------------------------------------------------------------------


class SqlFeatureCatalogRepository(_SqlRepository):
    async def get(self, feature_id: str) -> Feature | None:
        return await self._session.get(Feature, feature_id)

    async def get_by_code(self, code: str) -> Feature | None:
        return await self._fresh(select(Feature).where(Feature.code == code))

    async def create(self, code: str, name: str = "", surface_id: str | None = None) -> Feature:
        feature = Feature(id=new_id(), code=code, name=name or code, surface_id=surface_id)
        self._session.add(feature)
        await self._session.flush()
        return feature

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
    ) -> FeaturePermission:
        template = FeaturePermission(
            id=new_id(),
            feature_id=feature_id,
            permission_code=permission_code,
            display_name=display_name or permission_code,
            description=description,
            category=category,
            is_required=is_required,
            display_order=display_order,
        )
        self._session.add(template)
        await self._session.flush()
        return template

    async def add_role_template(
        self, feature_permission_id: str, role_key: str, is_recommended: bool = True
    ) -> PermissionRoleTemplate:
        template = PermissionRoleTemplate(
            id=new_id(),
            feature_permission_id=feature_permission_id,
            role_key=role_key,
            is_recommended=is_recommended,
        )
        self._session.add(template)
        await self._session.flush()
        return template

    async def list_permission_templates(self, feature_id: str) -> list[FeaturePermission]:
        result = await self._session.execute(
            select(FeaturePermission)
            .where(FeaturePermission.feature_id == feature_id)
            .order_by(FeaturePermission.display_order, FeaturePermission.permission_code)
        )
        return list(result.scalars().all())

    async def list_role_templates(self, feature_permission_id: str) -> list[PermissionRoleTemplate]:
        result = await self._session.execute(
            select(PermissionRoleTemplate)
            .where(PermissionRoleTemplate.feature_permission_id == feature_permission_id)
            .order_by(PermissionRoleTemplate.role_key)
        )
        return list(result.scalars().all())


def _grant_window(now: datetime):  # type: ignore[no-untyped-def]
    return (
        TenantFeatureGrant.starts_at <= now,
        or_(TenantFeatureGrant.expires_at.is_(None), TenantFeatureGrant.expires_at > now),
    )


class SqlFeatureGrantRepository(_SqlRepository):
    async def grant(
        self,
        tenant_id: str,
        feature_id: str,
        *,
        starts_at: datetime | None = None,
        expires_at: datetime | None = None,
        grant_source: str = "manual",
    ) -> TenantFeatureGrant:
        grant = TenantFeatureGrant(
            id=new_id(),
            tenant_id=tenant_id,
            feature_id=feature_id,
            starts_at=starts_at or utcnow(),
            expires_at=expires_at,
            grant_source=grant_source,
        )
        self._session.add(grant)
        await self._session.flush()
        return grant

    async def revoke(self, tenant_id: str, feature_id: str, at: datetime | None = None) -> int:
        at = at or utcnow()
        result = await self._session.execute(
            update(TenantFeatureGrant)
            .where(
                TenantFeatureGrant.tenant_id == tenant_id,
                TenantFeatureGrant.feature_id == feature_id,
                or_(TenantFeatureGrant.expires_at.is_(None), TenantFeatureGrant.expires_at > at),
            )
            .values(expires_at=at)
        )
        return result.rowcount or 0

    async def active_feature_ids(self, tenant_id: str, now: datetime) -> set[str]:
        result = await self._session.execute(
            select(TenantFeatureGrant.feature_id)
            .join(Feature, Feature.id == TenantFeatureGrant.feature_id)
            .where(
                TenantFeatureGrant.tenant_id == tenant_id,
                Feature.is_active.is_(True),
                *_grant_window(now),
            )
        )
        return set(result.scalars().all())

    async def active_feature_codes(self, tenant_id: str, now: datetime) -> set[str]:
        result = await self._session.execute(
            select(Feature.code)
            .join(TenantFeatureGrant, TenantFeatureGrant.feature_id == Feature.id)
            .where(
                TenantFeatureGrant.tenant_id == tenant_id,
                Feature.is_active.is_(True),
                *_grant_window(now),
            )
        )
        return set(result.scalars().all())

    async def has_active_grant(self, tenant_id: str, feature_id: str, now: datetime) -> bool:
        return feature_id in await self.active_feature_ids(tenant_id, now)

    async def latest_expiry(self, tenant_id: str, feature_id: str) -> datetime | None:
        result = await self._session.execute(
            select(func.max(TenantFeatureGrant.expires_at)).where(
                TenantFeatureGrant.tenant_id == tenant_id,
                TenantFeatureGrant.feature_id == feature_id,
            )
        )
        return result.scalar()


# ---------------------------------------------------------------------------
# Surfaces
# ---------------------------------------------------------------------------


class SqlSurfaceRepository(_SqlRepository):
    async def get(self, surface_id: str) -> Surface | None:
        return await self._session.get(Surface, surface_id)

    async def register(
        self,
        surface_id: str,
        kind: str = "page",
        title: str = "",
        feature_code: str | None = None,
    ) -> Surface:
        await self._insert_ignore(
            Surface,
            {"id": surface_id, "kind": kind, "title": title, "feature_code": feature_code},
            ["id"],
        )
        surface = await self._fresh(select(Surface).where(Surface.id == surface_id))
        if surface is None:
            raise TransientError(f"Surface {surface_id} missing after upsert")
        return surface

    async def bindings_for(self, surface_id: str, tenant_id: str | None) -> list[SurfaceBindingRow]:
        stmt = select(SurfaceBindingRow).where(SurfaceBindingRow.surface_id == surface_id)
        if tenant_id is None:
            stmt = stmt.where(SurfaceBindingRow.tenant_id.is_(None))
        else:
            stmt = stmt.where(
                or_(SurfaceBindingRow.tenant_id == tenant_id, SurfaceBindingRow.tenant_id.is_(None))
            )
        result = await self._session.execute(
            stmt.order_by(SurfaceBindingRow.created_at, SurfaceBindingRow.id)
        )
        return list(result.scalars().all())

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
    ) -> bool:
        return await self._insert_ignore(
            SurfaceBindingRow,
            {
                "id": new_id(),
                "tenant_id": tenant_id,
                "surface_id": surface_id,
                "target_kind": target_kind,
                "target_id": target_id,
                "required_feature_code": required_feature_code,
                "enforces_license": enforces_license,
                "source": source,
                "source_reference": source_reference,
                "created_at": utcnow(),
            },
            ["tenant_id", "surface_id", "target_kind", "target_id"],
        )

    async def delete_derived(self, tenant_id: str, feature_id: str) -> int:
        result = await self._session.execute(
            delete(SurfaceBindingRow).where(
                SurfaceBindingRow.tenant_id == tenant_id,
                SurfaceBindingRow.source == "license_feature",
                SurfaceBindingRow.source_reference == feature_id,
            )
        )
        return result.rowcount or 0


# ---------------------------------------------------------------------------
# Deployment bookkeeping
# ---------------------------------------------------------------------------


class SqlDeploymentRecordRepository(_SqlRepository):
    async def get(self, tenant_id: str, feature_id: str) -> DeploymentRecord | None:
        return await self._fresh(
            select(DeploymentRecord).where(
                DeploymentRecord.tenant_id == tenant_id,
                DeploymentRecord.feature_id == feature_id,
            )
        )

    async def list_by_tenant(self, tenant_id: str) -> list[DeploymentRecord]:
        result = await self._session.execute(
            select(DeploymentRecord).where(DeploymentRecord.tenant_id == tenant_id)
        )
        return list(result.scalars().all())

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
    ) -> bool:
        values = {
            "state": state,
            "permission_count": permission_count,
            "role_link_count": role_link_count,
            "binding_count": binding_count,
            "last_error": last_error,
        }
        inserted = await self._insert_ignore(
            DeploymentRecord,
            {
                "id": new_id(),
                "tenant_id": tenant_id,
                "feature_id": feature_id,
                "last_synced_at": utcnow(),
                **values,
            },
            ["tenant_id", "feature_id"],
        )
        if inserted:
            return True

        existing = await self.get(tenant_id, feature_id)
        if existing is not None and all(getattr(existing, k) == v for k, v in values.items()):
            return False

        await self._session.execute(
            update(DeploymentRecord)
            .where(
                DeploymentRecord.tenant_id == tenant_id,
                DeploymentRecord.feature_id == feature_id,
            )
            .values(last_synced_at=utcnow(), **values)
        )
        return True


class SqlAuditRepository(_SqlRepository):
    async def add(
        self,
        tenant_id: str,
        operation: str,
        feature_id: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        self._session.add(
            RbacAuditLog(
                tenant_id=tenant_id,
                operation=operation,
                feature_id=feature_id,
                detail=detail,
            )
        )
        await self._session.flush()

    async def list(self, tenant_id: str, limit: int = 50, offset: int = 0) -> list[RbacAuditLog]:
        result = await self._session.execute(
            select(RbacAuditLog)
            .where(RbacAuditLog.tenant_id == tenant_id)
            .order_by(RbacAuditLog.created_at.desc(), RbacAuditLog.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


class SqlUnitOfWork:
    """All repositories bound to one ``AsyncSession`` / transaction.

    Leaving the ``async with`` block without ``commit()`` discards the work.
    Storage failures surface as ``TransientError``.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.tenants = SqlTenantRepository(session)
        self.principals = SqlPrincipalRepository(session)
        self.roles = SqlRoleRepository(session)
        self.permissions = SqlPermissionRepository(session)
        self.bundles = SqlBundleRepository(session)
        self.assignments = SqlAssignmentRepository(session)
        self.features = SqlFeatureCatalogRepository(session)
        self.grants = SqlFeatureGrantRepository(session)
        self.surfaces = SqlSurfaceRepository(session)
        self.deployments = SqlDeploymentRecordRepository(session)
        self.audit = SqlAuditRepository(session)

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    async def __aenter__(self) -> SqlUnitOfWork:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        try:
            if exc_type is not None:
                await self._session.rollback()
        finally:
            await self._session.close()
        if isinstance(exc, SQLAlchemyError):
            logger.warning("Storage failure, transaction rolled back: %s", exc)
            raise TransientError(str(exc)) from exc
        return False


def sql_unit_of_work() -> SqlUnitOfWork:
    """Unit-of-work factory over the session configured by ``init_db``."""
    return SqlUnitOfWork(get_session())
