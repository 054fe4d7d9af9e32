"""Options and result objects of the permission deployment pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class DeploymentOptions:
    """Knobs for a single pipeline call.

    ``dry_run`` computes and reports, then rolls every transaction back.
    ``specific_feature_ids`` restricts a sync or deploy-all to those features.
    """

    dry_run: bool = False
    skip_role_templates: bool = False
    skip_surface_bindings: bool = False
    specific_feature_ids: list[str] | None = None

    def includes(self, feature_id: str) -> bool:
        return self.specific_feature_ids is None or feature_id in self.specific_feature_ids


@dataclass
class FeatureDeploymentResult:
    feature_id: str
    feature_code: str = ""
    feature_name: str = ""
    permissions_created: int = 0
    role_links_created: int = 0
    bindings_created: int = 0
    warnings: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.permissions_created or self.role_links_created or self.bindings_created)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass
class FeatureRemovalResult:
    feature_id: str
    permissions_removed: int = 0
    role_links_removed: int = 0
    bindings_removed: int = 0
    deferred_until: str | None = None


@dataclass
class RemovalResult:
    tenant_id: str
    features: list[FeatureRemovalResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def permissions_removed(self) -> int:
        return sum(f.permissions_removed for f in self.features)

    @property
    def role_links_removed(self) -> int:
        return sum(f.role_links_removed for f in self.features)

    @property
    def bindings_removed(self) -> int:
        return sum(f.bindings_removed for f in self.features)

    @property
    def deferred(self) -> list[str]:
        return [f.feature_id for f in self.features if f.deferred_until]


@dataclass
class SyncSummary:
    """Outcome of a tenant-wide sync. Errors are collected, never raised."""

    tenant_id: str
    dry_run: bool = False
    deployed: list[FeatureDeploymentResult] = field(default_factory=list)
    removal: RemovalResult | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def features_processed(self) -> int:
        return len(self.deployed)

    @property
    def permissions_created(self) -> int:
        return sum(r.permissions_created for r in self.deployed)

    @property
    def role_links_created(self) -> int:
        return sum(r.role_links_created for r in self.deployed)

    @property
    def bindings_created(self) -> int:
        return sum(r.bindings_created for r in self.deployed)

    @property
    def permissions_removed(self) -> int:
        return self.removal.permissions_removed if self.removal else 0

    @property
    def warnings(self) -> list[str]:
        return [w for r in self.deployed for w in r.warnings]

    @property
    def all_errors(self) -> list[str]:
        errors = list(self.errors)
        if self.removal:
            errors.extend(self.removal.errors)
        errors.extend(e for r in self.deployed for e in r.errors)
        return errors

    @property
    def success(self) -> bool:
        return not self.all_errors


@dataclass
class FeatureStatus:
    feature_id: str
    feature_code: str
    feature_name: str
    permission_count: int = 0
    deployed_count: int = 0
    conflicted_count: int = 0
    # complete | partial | missing | empty
    status: str = "empty"
    state: str = "pending_deployment"


@dataclass
class DeploymentStatus:
    tenant_id: str
    features: list[FeatureStatus] = field(default_factory=list)
    licensed_feature_count: int = 0
    deployed_permission_count: int = 0
    missing_permission_count: int = 0
    orphaned_permission_count: int = 0

    @property
    def in_sync(self) -> bool:
        return self.missing_permission_count == 0 and self.orphaned_permission_count == 0
