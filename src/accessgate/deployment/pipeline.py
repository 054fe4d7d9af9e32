"""Materialize licensed features into a tenant's permission and role graph.

Every write is an idempotent upsert keyed by a uniqueness constraint, so
concurrent runs for the same tenant converge. One feature is one
transaction; a tenant-wide sync is a sequence of them, and re-running a sync
after a partial failure finishes the job.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from accessgate.config import Settings, get_settings
from accessgate.deployment.results import (
    DeploymentOptions,
    DeploymentStatus,
    FeatureDeploymentResult,
    FeatureRemovalResult,
    FeatureStatus,
    RemovalResult,
    SyncSummary,
)
from accessgate.errors import ConfigurationError, ConflictError, NotFoundError
from accessgate.storage.models import Feature
from accessgate.storage.repositories import UnitOfWork, UnitOfWorkFactory
from accessgate.types import DeploymentState, PermissionSource, utcnow

logger = logging.getLogger("accessgate.deployment")

LICENSE_FEATURE = PermissionSource.LICENSE_FEATURE.value


class PermissionDeploymentPipeline:
    """Deploys, removes and reconciles license-derived permissions."""

    def __init__(self, uow_factory: UnitOfWorkFactory, settings: Settings | None = None) -> None:
        self._uow_factory = uow_factory
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _require_tenant(uow: UnitOfWork, tenant_id: str) -> None:
        if not tenant_id or await uow.tenants.get(tenant_id) is None:
            raise ConfigurationError(f"Unknown tenant: {tenant_id}")

    @staticmethod
    async def _finish(uow: UnitOfWork, options: DeploymentOptions) -> None:
        if options.dry_run:
            await uow.rollback()
        else:
            await uow.commit()

    def _metadata_key(self, role_key: str) -> str:
        prefix = self.settings.deployment.role_key_prefix
        return role_key if role_key.startswith(prefix) else f"{prefix}{role_key}"

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    async def deploy_feature_permissions(
        self,
        tenant_id: str,
        feature_id: str,
        options: DeploymentOptions | None = None,
    ) -> FeatureDeploymentResult:
        """Deploy one actively granted feature into the tenant.

        Raises:
            ConfigurationError: Unknown tenant, unknown feature, or no active grant.
        """
        options = options or DeploymentOptions()
        async with self._uow_factory() as uow:
            await self._require_tenant(uow, tenant_id)
            feature = await uow.features.get(feature_id)
            if feature is None:
                raise ConfigurationError(f"Unknown feature: {feature_id}")
            if not await uow.grants.has_active_grant(tenant_id, feature_id, utcnow()):
                raise ConfigurationError(
                    f"Feature not licensed: {feature.code} has no active grant for tenant {tenant_id}"
                )

            result = await self._deploy(uow, tenant_id, feature, options)
            await self._finish(uow, options)

        logger.info(
            "%sDeployed feature %s to tenant %s: %d permissions, %d role links, %d bindings, %d warnings",
            "[dry run] " if options.dry_run else "",
            result.feature_code,
            tenant_id,
            result.permissions_created,
            result.role_links_created,
            result.bindings_created,
            len(result.warnings),
        )
        return result

    async def _deploy(
        self,
        uow: UnitOfWork,
        tenant_id: str,
        feature: Feature,
        options: DeploymentOptions,
    ) -> FeatureDeploymentResult:
        result = FeatureDeploymentResult(
            feature_id=feature.id, feature_code=feature.code, feature_name=feature.name
        )
        owned = 0
        linked = 0
        # role ids in first-seen order
        roles: dict[str, None] = {}

        for template in await uow.features.list_permission_templates(feature.id):
            permission, created = await uow.permissions.insert_if_absent(
                tenant_id,
                template.permission_code,
                source=LICENSE_FEATURE,
                source_reference=feature.id,
                name=template.display_name,
                description=template.description,
                category=template.category,
            )
            if created:
                result.permissions_created += 1
            elif permission.source != LICENSE_FEATURE:
                conflict = ConflictError(permission.code, permission.source)
                result.conflicts.append(permission.code)
                result.warnings.append(f"{conflict}; skipped")
                logger.warning("Tenant %s: %s", tenant_id, conflict)
                continue
            owned += 1

            if options.skip_role_templates:
                continue

            for role_template in await uow.features.list_role_templates(template.id):
                metadata_key = self._metadata_key(role_template.role_key)
                role = await uow.roles.find_by_metadata_key(tenant_id, metadata_key)
                if role is None:
                    missing = NotFoundError("role", metadata_key)
                    result.warnings.append(f"{missing}; skipped role template for {permission.code}")
                    logger.warning("Tenant %s: %s", tenant_id, missing)
                    continue
                if await uow.permissions.link_role(role.id, permission.id):
                    result.role_links_created += 1
                linked += 1
                roles[role.id] = None

        bound = 0
        if (
            feature.surface_id
            and self.settings.deployment.create_surface_bindings
            and not options.skip_surface_bindings
        ):
            for role_id in roles:
                if await uow.surfaces.bind_if_absent(
                    tenant_id,
                    feature.surface_id,
                    "role",
                    role_id,
                    required_feature_code=feature.code,
                    enforces_license=True,
                    source=LICENSE_FEATURE,
                    source_reference=feature.id,
                ):
                    result.bindings_created += 1
                bound += 1

        await uow.deployments.record(
            tenant_id,
            feature.id,
            DeploymentState.DEPLOYED,
            permission_count=owned,
            role_link_count=linked,
            binding_count=bound,
        )
        if result.changed:
            await uow.audit.add(
                tenant_id,
                "deploy_feature",
                feature.id,
                {
                    "feature_code": feature.code,
                    "permissions_created": result.permissions_created,
                    "role_links_created": result.role_links_created,
                    "bindings_created": result.bindings_created,
                    "conflicts": result.conflicts,
                },
            )
        return result

    async def deploy_all_feature_permissions(
        self, tenant_id: str, options: DeploymentOptions | None = None
    ) -> SyncSummary:
        """Deploy every actively granted feature, isolating per-feature failures."""
        options = options or DeploymentOptions()
        async with self._uow_factory() as uow:
            await self._require_tenant(uow, tenant_id)
            active = await uow.grants.active_feature_ids(tenant_id, utcnow())

        summary = SyncSummary(tenant_id=tenant_id, dry_run=options.dry_run)
        for feature_id in sorted(active):
            if options.includes(feature_id):
                await self._deploy_isolated(tenant_id, feature_id, options, summary)
        return summary

    async def _deploy_isolated(
        self,
        tenant_id: str,
        feature_id: str,
        options: DeploymentOptions,
        summary: SyncSummary,
    ) -> None:
        try:
            summary.deployed.append(
                await self.deploy_feature_permissions(tenant_id, feature_id, options)
            )
        except Exception as exc:
            logger.exception("Deployment of feature %s failed for tenant %s", feature_id, tenant_id)
            summary.errors.append(f"Feature {feature_id}: {exc}")

    # ------------------------------------------------------------------
    # Remove
    # ------------------------------------------------------------------

    async def remove_unlicensed_permissions(
        self, tenant_id: str, options: DeploymentOptions | None = None
    ) -> RemovalResult:
        """Remove permissions derived from features that are no longer granted.

        Manual and system permissions are never touched. With the
        ``grace_period`` revocation policy a lapsed feature is kept (state
        ``pending_removal``) until its last grant expired more than
        ``grace_period_days`` ago.
        """
        options = options or DeploymentOptions()
        async with self._uow_factory() as uow:
            await self._require_tenant(uow, tenant_id)
            active = await uow.grants.active_feature_ids(tenant_id, utcnow())
            derived = await uow.permissions.list_by_tenant(tenant_id, source=LICENSE_FEATURE)
            records = await uow.deployments.list_by_tenant(tenant_id)

        candidates = {p.source_reference for p in derived if p.source_reference}
        candidates |= {
            r.feature_id
            for r in records
            if r.state in (DeploymentState.DEPLOYED, DeploymentState.PENDING_REMOVAL)
        }
        lapsed = sorted(f for f in candidates - active if options.includes(f))

        result = RemovalResult(tenant_id=tenant_id)
        for feature_id in lapsed:
            try:
                result.features.append(await self._remove_feature(tenant_id, feature_id, options))
            except Exception as exc:
                logger.exception("Removal of feature %s failed for tenant %s", feature_id, tenant_id)
                result.errors.append(f"Feature {feature_id}: {exc}")
        return result

    async def _remove_feature(
        self, tenant_id: str, feature_id: str, options: DeploymentOptions
    ) -> FeatureRemovalResult:
        cfg = self.settings.deployment
        now = utcnow()
        removal = FeatureRemovalResult(feature_id=feature_id)

        async with self._uow_factory() as uow:
            if cfg.revocation_policy == "grace_period":
                expiry = await uow.grants.latest_expiry(tenant_id, feature_id)
                if expiry is not None:
                    deadline = expiry + timedelta(days=cfg.grace_period_days)
                    if now < deadline:
                        record = await uow.deployments.get(tenant_id, feature_id)
                        await uow.deployments.record(
                            tenant_id,
                            feature_id,
                            DeploymentState.PENDING_REMOVAL,
                            permission_count=record.permission_count if record else 0,
                            role_link_count=record.role_link_count if record else 0,
                            binding_count=record.binding_count if record else 0,
                        )
                        await self._finish(uow, options)
                        removal.deferred_until = deadline.isoformat()
                        logger.info(
                            "Feature %s lapsed for tenant %s; removal deferred until %s",
                            feature_id, tenant_id, removal.deferred_until,
                        )
                        return removal

            permission_ids = [
                p.id
                for p in await uow.permissions.list_by_tenant(tenant_id, source=LICENSE_FEATURE)
                if p.source_reference == feature_id
            ]
            removal.role_links_removed = await uow.permissions.unlink_all(permission_ids)
            removal.permissions_removed = await uow.permissions.delete(permission_ids)
            removal.bindings_removed = await uow.surfaces.delete_derived(tenant_id, feature_id)
            await uow.deployments.record(tenant_id, feature_id, DeploymentState.REMOVED)

            if removal.permissions_removed or removal.role_links_removed or removal.bindings_removed:
                await uow.audit.add(
                    tenant_id,
                    "remove_feature",
                    feature_id,
                    {
                        "permissions_removed": removal.permissions_removed,
                        "role_links_removed": removal.role_links_removed,
                        "bindings_removed": removal.bindings_removed,
                    },
                )
            await self._finish(uow, options)

        logger.info(
            "%sRemoved feature %s from tenant %s: %d permissions, %d role links, %d bindings",
            "[dry run] " if options.dry_run else "",
            feature_id,
            tenant_id,
            removal.permissions_removed,
            removal.role_links_removed,
            removal.bindings_removed,
        )
        return removal

    # ------------------------------------------------------------------
    # Sync & status
    # ------------------------------------------------------------------

    async def sync_tenant_permissions(
        self, tenant_id: str, options: DeploymentOptions | None = None
    ) -> SyncSummary:
        """Reconcile the tenant with its current grants.

        Lapsed features are removed first, then every granted feature is
        redeployed. A redeploy that finds nothing missing writes nothing, so
        repeated syncs are idempotent and pick up roles or templates added
        since the last run. Per-feature errors land in the summary; only an
        unknown tenant raises.
        """
        options = options or DeploymentOptions()
        removal = await self.remove_unlicensed_permissions(tenant_id, options)
        summary = await self.deploy_all_feature_permissions(tenant_id, options)
        summary.removal = removal

        logger.info(
            "Synced tenant %s: %d features processed (%d permissions created, %d role links created), %d permissions removed, %d errors",
            tenant_id,
            summary.features_processed,
            summary.permissions_created,
            summary.role_links_created,
            summary.permissions_removed,
            len(summary.all_errors),
        )
        return summary

    async def get_deployment_status(self, tenant_id: str) -> DeploymentStatus:
        """Report how far each granted feature has materialized. Read-only."""
        async with self._uow_factory() as uow:
            await self._require_tenant(uow, tenant_id)
            active = await uow.grants.active_feature_ids(tenant_id, utcnow())
            permissions = await uow.permissions.list_by_tenant(tenant_id)
            records = {r.feature_id: r for r in await uow.deployments.list_by_tenant(tenant_id)}
            by_code = {p.code: p for p in permissions}

            status = DeploymentStatus(tenant_id=tenant_id, licensed_feature_count=len(active))
            for feature_id in sorted(active):
                feature = await uow.features.get(feature_id)
                if feature is None:
                    continue
                templates = await uow.features.list_permission_templates(feature_id)
                entry = FeatureStatus(
                    feature_id=feature.id,
                    feature_code=feature.code,
                    feature_name=feature.name,
                    permission_count=len(templates),
                )
                for template in templates:
                    permission = by_code.get(template.permission_code)
                    if permission is None:
                        continue
                    if permission.source == LICENSE_FEATURE:
                        entry.deployed_count += 1
                    else:
                        entry.conflicted_count += 1

                outstanding = entry.permission_count - entry.deployed_count - entry.conflicted_count
                if entry.permission_count == 0:
                    entry.status = "empty"
                elif outstanding == 0:
                    entry.status = "complete"
                elif entry.deployed_count:
                    entry.status = "partial"
                else:
                    entry.status = "missing"

                record = records.get(feature_id)
                entry.state = record.state if record else DeploymentState.PENDING_DEPLOYMENT

                status.features.append(entry)
                status.deployed_permission_count += entry.deployed_count
                status.missing_permission_count += outstanding

            status.orphaned_permission_count = sum(
                1
                for p in permissions
                if p.source == LICENSE_FEATURE and p.source_reference not in active
            )
        return status
