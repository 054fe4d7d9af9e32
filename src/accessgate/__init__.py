"""Multi-tenant RBAC with license-driven permission deployment."""

__version__ = "0.1.0"
