"""SQLAlchemy ORM models for the tenant RBAC graph and license catalog."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from accessgate.types import utcnow


def _utcnow() -> datetime:
    return utcnow()


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class Tenant(Base):
    """An isolated customer organisation."""

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class PrincipalProfile(Base):
    """Platform-level administrative role of a user (e.g. ``super_admin``)."""

    __tablename__ = "principal_profiles"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    admin_role: Mapped[str] = mapped_column(String(50), default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)


class Role(Base):
    """Tenant role, or a tenant-agnostic system role when ``tenant_id`` is null."""

    __tablename__ = "roles"
    __table_args__ = (
        Index("ix_roles_tenant_metadata_key", "tenant_id", "metadata_key", unique=True),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    key: Mapped[str] = mapped_column(String(100))
    name: Mapped[str] = mapped_column(String(255), default="")
    metadata_key: Mapped[str] = mapped_column(String(100))
    is_system: Mapped[bool] = mapped_column(Boolean, default=False)
    is_delegatable: Mapped[bool] = mapped_column(Boolean, default=False)
    scope: Mapped[str] = mapped_column(String(20), default="tenant")
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class Permission(Base):
    """Atomic right named ``{category}:{action}``, unique per tenant."""

    __tablename__ = "permissions"
    __table_args__ = (
        Index("ix_permissions_tenant_code", "tenant_id", "code", unique=True),
        Index("ix_permissions_tenant_source", "tenant_id", "source"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(36))
    code: Mapped[str] = mapped_column(String(150))
    name: Mapped[str] = mapped_column(String(255), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    module: Mapped[str] = mapped_column(String(100), default="general")
    category: Mapped[str] = mapped_column(String(100), default="")
    # manual | license_feature | system
    source: Mapped[str] = mapped_column(String(30), default="manual")
    source_reference: Mapped[str | None] = mapped_column(String(36), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class PermissionBundle(Base):
    """Named, reusable group of permissions."""

    __tablename__ = "permission_bundles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    key: Mapped[str] = mapped_column(String(100))
    name: Mapped[str] = mapped_column(String(255), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class BundlePermission(Base):
    __tablename__ = "bundle_permissions"
    __table_args__ = (
        Index("ix_bundle_permissions_pair", "bundle_id", "permission_id", unique=True),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    bundle_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("permission_bundles.id", ondelete="CASCADE")
    )
    permission_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("permissions.id", ondelete="CASCADE")
    )


class RolePermission(Base):
    __tablename__ = "role_permissions"
    __table_args__ = (
        Index("ix_role_permissions_pair", "role_id", "permission_id", unique=True),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    role_id: Mapped[str] = mapped_column(String(36), ForeignKey("roles.id", ondelete="CASCADE"))
    permission_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("permissions.id", ondelete="CASCADE"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class RoleBundle(Base):
    __tablename__ = "role_bundles"
    __table_args__ = (
        Index("ix_role_bundles_pair", "role_id", "bundle_id", unique=True),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    role_id: Mapped[str] = mapped_column(String(36), ForeignKey("roles.id", ondelete="CASCADE"))
    bundle_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("permission_bundles.id", ondelete="CASCADE")
    )


class UserRoleAssignment(Base):
    """A user holding a role in a tenant, optionally delegated and time-boxed."""

    __tablename__ = "user_role_assignments"
    __table_args__ = (
        Index("ix_user_role_assignments_triple", "user_id", "role_id", "tenant_id", unique=True),
        Index("ix_user_role_assignments_user_tenant", "user_id", "tenant_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36))
    role_id: Mapped[str] = mapped_column(String(36), ForeignKey("roles.id", ondelete="CASCADE"))
    tenant_id: Mapped[str] = mapped_column(String(36))
    delegated_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    delegation_scope: Mapped[str | None] = mapped_column(String(50), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class Feature(Base):
    """Licensable capability in the feature catalog."""

    __tablename__ = "features"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    code: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    surface_id: Mapped[str | None] = mapped_column(String(150), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class FeaturePermission(Base):
    """Template: feature F requires permission code C."""

    __tablename__ = "feature_permissions"
    __table_args__ = (
        Index("ix_feature_permissions_pair", "feature_id", "permission_code", unique=True),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    feature_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("features.id", ondelete="CASCADE")
    )
    permission_code: Mapped[str] = mapped_column(String(150))
    display_name: Mapped[str] = mapped_column(String(255), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(100), default="")
    is_required: Mapped[bool] = mapped_column(Boolean, default=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0)


class PermissionRoleTemplate(Base):
    """Recommendation that a feature permission defaults onto a role key."""

    __tablename__ = "permission_role_templates"
    __table_args__ = (
        Index("ix_permission_role_templates_pair", "feature_permission_id", "role_key", unique=True),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    feature_permission_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("feature_permissions.id", ondelete="CASCADE")
    )
    role_key: Mapped[str] = mapped_column(String(100))
    is_recommended: Mapped[bool] = mapped_column(Boolean, default=True)


class TenantFeatureGrant(Base):
    """Time-bounded entitlement of a tenant to a feature."""

    __tablename__ = "tenant_feature_grants"
    __table_args__ = (
        Index("ix_tenant_feature_grants_tenant_feature", "tenant_id", "feature_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(36))
    feature_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("features.id", ondelete="CASCADE")
    )
    starts_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    grant_source: Mapped[str] = mapped_column(String(50), default="manual")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class Surface(Base):
    """Registered UI page, menu item or API route."""

    __tablename__ = "surfaces"

    id: Mapped[str] = mapped_column(String(150), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), default="page")  # page, menu, api
    title: Mapped[str] = mapped_column(String(255), default="")
    feature_code: Mapped[str | None] = mapped_column(String(100), nullable=True)


class SurfaceBindingRow(Base):
    """Surface gated by exactly one role, bundle or menu target."""

    __tablename__ = "surface_bindings"
    __table_args__ = (
        Index(
            "ix_surface_bindings_target",
            "tenant_id", "surface_id", "target_kind", "target_id",
            unique=True,
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    surface_id: Mapped[str] = mapped_column(String(150), index=True)
    target_kind: Mapped[str] = mapped_column(String(10))  # role, bundle, menu
    target_id: Mapped[str] = mapped_column(String(36))
    required_feature_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    enforces_license: Mapped[bool] = mapped_column(Boolean, default=False)
    source: Mapped[str] = mapped_column(String(30), default="manual")
    source_reference: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class DeploymentRecord(Base):
    """Last synced state of one (tenant, feature) pair."""

    __tablename__ = "deployment_records"
    __table_args__ = (
        Index("ix_deployment_records_pair", "tenant_id", "feature_id", unique=True),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(36))
    feature_id: Mapped[str] = mapped_column(String(36))
    state: Mapped[str] = mapped_column(String(30), default="pending_deployment")
    permission_count: Mapped[int] = mapped_column(Integer, default=0)
    role_link_count: Mapped[int] = mapped_column(Integer, default=0)
    binding_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str] = mapped_column(Text, default="")
    last_synced_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class RbacAuditLog(Base):
    """Audit trail of deployment operations that changed the RBAC graph."""

    __tablename__ = "rbac_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(36), index=True)
    operation: Mapped[str] = mapped_column(String(50))
    feature_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    detail: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, index=True)
