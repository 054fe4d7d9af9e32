"""Explicit facade over the resolvers, gate factory and deployment pipeline."""

from __future__ import annotations

from dataclasses import dataclass

from accessgate.audit import AuditLogger
from accessgate.config import Settings, get_settings
from accessgate.deployment import (
    DeploymentOptions,
    DeploymentStatus,
    FeatureDeploymentResult,
    PermissionDeploymentPipeline,
    RemovalResult,
    SyncSummary,
)
from accessgate.gates import AccessServices, Gates
from accessgate.resolvers import (
    LicenseFeatureResolver,
    PermissionResolver,
    SurfaceBindingResolver,
)
from accessgate.storage.repositories import UnitOfWorkFactory
from accessgate.storage.sql_repositories import sql_unit_of_work


@dataclass
class AccessControl:
    """Holds each sub-service and forwards the public operations."""

    permissions: PermissionResolver
    features: LicenseFeatureResolver
    surfaces: SurfaceBindingResolver
    gates: Gates
    pipeline: PermissionDeploymentPipeline
    audit: AuditLogger

    async def resolve_effective_permissions(self, user_id: str, tenant_id: str) -> set[str]:
        return await self.permissions.resolve_effective_permissions(user_id, tenant_id)

    async def resolve_active_features(self, tenant_id: str) -> set[str]:
        return await self.features.resolve_active_features(tenant_id)

    async def deploy_feature_permissions(
        self, tenant_id: str, feature_id: str, options: DeploymentOptions | None = None
    ) -> FeatureDeploymentResult:
        return await self.pipeline.deploy_feature_permissions(tenant_id, feature_id, options)

    async def remove_unlicensed_permissions(
        self, tenant_id: str, options: DeploymentOptions | None = None
    ) -> RemovalResult:
        return await self.pipeline.remove_unlicensed_permissions(tenant_id, options)

    async def sync_tenant_permissions(
        self, tenant_id: str, options: DeploymentOptions | None = None
    ) -> SyncSummary:
        return await self.pipeline.sync_tenant_permissions(tenant_id, options)

    async def get_deployment_status(self, tenant_id: str) -> DeploymentStatus:
        return await self.pipeline.get_deployment_status(tenant_id)


def build_access_control(
    settings: Settings | None = None,
    uow_factory: UnitOfWorkFactory | None = None,
) -> AccessControl:
    """Wire every sub-service against one settings object and store."""
    settings = settings or get_settings()
    uow_factory = uow_factory or sql_unit_of_work

    permissions = PermissionResolver(uow_factory, settings)
    features = LicenseFeatureResolver(uow_factory)
    surfaces = SurfaceBindingResolver(uow_factory)
    services = AccessServices(
        permissions=permissions, features=features, surfaces=surfaces, settings=settings
    )
    return AccessControl(
        permissions=permissions,
        features=features,
        surfaces=surfaces,
        gates=Gates(services),
        pipeline=PermissionDeploymentPipeline(uow_factory, settings),
        audit=AuditLogger(uow_factory),
    )


_access_control: AccessControl | None = None


def get_access_control() -> AccessControl:
    """Get the global AccessControl singleton."""
    global _access_control
    if _access_control is None:
        _access_control = build_access_control()
    return _access_control


def init_access_control(
    settings: Settings | None = None,
    uow_factory: UnitOfWorkFactory | None = None,
) -> AccessControl:
    global _access_control
    _access_control = build_access_control(settings, uow_factory)
    return _access_control


def reset_access_control() -> None:
    """Reset the singleton (for testing)."""
    global _access_control
    _access_control = None
