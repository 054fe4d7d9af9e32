"""License-to-RBAC permission deployment."""

from .listener import DeploymentListener
from .pipeline import PermissionDeploymentPipeline
from .results import (
    DeploymentOptions,
    DeploymentStatus,
    FeatureDeploymentResult,
    FeatureRemovalResult,
    FeatureStatus,
    RemovalResult,
    SyncSummary,
)

__all__ = [
    "DeploymentListener",
    "DeploymentOptions",
    "DeploymentStatus",
    "FeatureDeploymentResult",
    "FeatureRemovalResult",
    "FeatureStatus",
    "PermissionDeploymentPipeline",
    "RemovalResult",
    "SyncSummary",
]
