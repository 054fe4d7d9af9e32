"""Read-only resolvers over the tenant RBAC graph and license grants."""

from .features import LicenseFeatureResolver
from .permissions import PermissionResolver
from .surfaces import SurfaceBindingResolver

__all__ = [
    "LicenseFeatureResolver",
    "PermissionResolver",
    "SurfaceBindingResolver",
]
