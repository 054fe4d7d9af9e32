"""Composable access gates: check, allows, verify."""

from .base import EvaluationContext, Gate
from .combinators import All, Any
from .factory import Gates
from .gates import (
    AccessServices,
    AuthenticatedGate,
    CustomGate,
    LicenseGate,
    PermissionGate,
    RoleGate,
    SuperAdminGate,
    SurfaceGate,
)

__all__ = [
    "AccessServices",
    "All",
    "Any",
    "AuthenticatedGate",
    "CustomGate",
    "EvaluationContext",
    "Gate",
    "Gates",
    "LicenseGate",
    "PermissionGate",
    "RoleGate",
    "SuperAdminGate",
    "SurfaceGate",
]
