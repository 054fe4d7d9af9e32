"""Effective permission resolution for a (principal, tenant) pair."""

from __future__ import annotations

import logging

from accessgate.config import Settings, get_settings
from accessgate.storage.repositories import UnitOfWorkFactory
from accessgate.types import ResolvedRole, utcnow

logger = logging.getLogger("accessgate.resolvers")


class PermissionResolver:
    """Computes what a principal holds in a tenant.

    RBAC is strictly additive: the effective set is the union of every active
    role's direct permissions and the permissions of every bundle attached to
    those roles. An assignment is active while it is not revoked, not expired,
    and its role is not soft-deleted. Unknown users and tenants resolve to an
    empty set.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory, settings: Settings | None = None) -> None:
        self._uow_factory = uow_factory
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    async def is_super_admin(self, user_id: str | None) -> bool:
        if not user_id:
            return False
        async with self._uow_factory() as uow:
            admin_role = await uow.principals.get_admin_role(user_id)
        return admin_role is not None and admin_role == self.settings.access.superadmin_role

    async def resolve_roles(self, user_id: str | None, tenant_id: str | None) -> list[ResolvedRole]:
        """Roles the principal currently holds in the tenant."""
        if not user_id or not tenant_id:
            return []
        async with self._uow_factory() as uow:
            rows = await uow.assignments.active_roles(user_id, tenant_id, utcnow())
        return [
            ResolvedRole(
                id=role.id,
                key=role.key,
                metadata_key=role.metadata_key,
                delegated=assignment.delegated_by is not None,
            )
            for role, assignment in rows
        ]

    async def resolve_role_keys(self, user_id: str | None, tenant_id: str | None) -> set[str]:
        keys: set[str] = set()
        for role in await self.resolve_roles(user_id, tenant_id):
            keys |= role.keys
        return keys

    async def resolve_effective_permissions(
        self, user_id: str | None, tenant_id: str | None
    ) -> set[str]:
        if not user_id or not tenant_id:
            return set()

        async with self._uow_factory() as uow:
            if await uow.tenants.get(tenant_id) is None:
                return set()

            if self.settings.access.superadmin_bypass:
                admin_role = await uow.principals.get_admin_role(user_id)
                if admin_role and admin_role == self.settings.access.superadmin_role:
                    permissions = await uow.permissions.list_by_tenant(tenant_id)
                    return {p.code for p in permissions if p.is_active}

            rows = await uow.assignments.active_roles(user_id, tenant_id, utcnow())
            role_ids = [role.id for role, _ in rows]
            codes = await uow.permissions.codes_for_roles(role_ids, tenant_id)
            codes |= await uow.bundles.codes_for_roles(role_ids, tenant_id)

        logger.debug(
            "Resolved %d permissions from %d roles for user %s in tenant %s",
            len(codes), len(role_ids), user_id, tenant_id,
        )
        return codes

    async def resolve_bundle_permissions(self, bundle_id: str) -> set[str]:
        async with self._uow_factory() as uow:
            return await uow.bundles.codes_for_bundle(bundle_id)
