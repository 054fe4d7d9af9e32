"""Initial tenant RBAC and license catalog schema.

Revision ID: 0001
Revises: None
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)

    op.create_table(
        "principal_profiles",
        sa.Column("user_id", sa.String(36), primary_key=True),
        sa.Column("admin_role", sa.String(50), server_default=""),
        sa.Column("updated_at", sa.DateTime),
    )

    # --- RBAC graph ---
    op.create_table(
        "roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=True, index=True),
        sa.Column("key", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), server_default=""),
        sa.Column("metadata_key", sa.String(100), nullable=False),
        sa.Column("is_system", sa.Boolean, server_default=sa.false()),
        sa.Column("is_delegatable", sa.Boolean, server_default=sa.false()),
        sa.Column("scope", sa.String(20), server_default="tenant"),
        sa.Column("deleted_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index(
        "ix_roles_tenant_metadata_key", "roles", ["tenant_id", "metadata_key"], unique=True
    )

    op.create_table(
        "permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("code", sa.String(150), nullable=False),
        sa.Column("name", sa.String(255), server_default=""),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("module", sa.String(100), server_default="general"),
        sa.Column("category", sa.String(100), server_default=""),
        sa.Column("source", sa.String(30), server_default="manual"),
        sa.Column("source_reference", sa.String(36), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index(
        "ix_permissions_tenant_code", "permissions", ["tenant_id", "code"], unique=True
    )
    op.create_index("ix_permissions_tenant_source", "permissions", ["tenant_id", "source"])

    op.create_table(
        "permission_bundles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=True, index=True),
        sa.Column("key", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), server_default=""),
        sa.Column("created_at", sa.DateTime),
    )

    op.create_table(
        "bundle_permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "bundle_id",
            sa.String(36),
            sa.ForeignKey("permission_bundles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "permission_id",
            sa.String(36),
            sa.ForeignKey("permissions.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_bundle_permissions_pair",
        "bundle_permissions",
        ["bundle_id", "permission_id"],
        unique=True,
    )

    op.create_table(
        "role_permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "role_id", sa.String(36), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "permission_id",
            sa.String(36),
            sa.ForeignKey("permissions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index(
        "ix_role_permissions_pair", "role_permissions", ["role_id", "permission_id"], unique=True
    )

    op.create_table(
        "role_bundles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "role_id", sa.String(36), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "bundle_id",
            sa.String(36),
            sa.ForeignKey("permission_bundles.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    op.create_index("ix_role_bundles_pair", "role_bundles", ["role_id", "bundle_id"], unique=True)

    op.create_table(
        "user_role_assignments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column(
            "role_id", sa.String(36), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("delegated_by", sa.String(36), nullable=True),
        sa.Column("delegation_scope", sa.String(50), nullable=True),
        sa.Column("expires_at", sa.DateTime, nullable=True),
        sa.Column("revoked_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index(
        "ix_user_role_assignments_triple",
        "user_role_assignments",
        ["user_id", "role_id", "tenant_id"],
        unique=True,
    )
    op.create_index(
        "ix_user_role_assignments_user_tenant", "user_role_assignments", ["user_id", "tenant_id"]
    )

    # --- License catalog ---
    op.create_table(
        "features",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("code", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), server_default=""),
        sa.Column("surface_id", sa.String(150), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index("ix_features_code", "features", ["code"], unique=True)

    op.create_table(
        "feature_permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "feature_id",
            sa.String(36),
            sa.ForeignKey("features.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("permission_code", sa.String(150), nullable=False),
        sa.Column("display_name", sa.String(255), server_default=""),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("category", sa.String(100), server_default=""),
        sa.Column("is_required", sa.Boolean, server_default=sa.true()),
        sa.Column("display_order", sa.Integer, server_default="0"),
    )
    op.create_index(
        "ix_feature_permissions_pair",
        "feature_permissions",
        ["feature_id", "permission_code"],
        unique=True,
    )

    op.create_table(
        "permission_role_templates",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "feature_permission_id",
            sa.String(36),
            sa.ForeignKey("feature_permissions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role_key", sa.String(100), nullable=False),
        sa.Column("is_recommended", sa.Boolean, server_default=sa.true()),
    )
    op.create_index(
        "ix_permission_role_templates_pair",
        "permission_role_templates",
        ["feature_permission_id", "role_key"],
        unique=True,
    )

    op.create_table(
        "tenant_feature_grants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column(
            "feature_id",
            sa.String(36),
            sa.ForeignKey("features.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("starts_at", sa.DateTime),
        sa.Column("expires_at", sa.DateTime, nullable=True),
        sa.Column("grant_source", sa.String(50), server_default="manual"),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index(
        "ix_tenant_feature_grants_tenant_feature",
        "tenant_feature_grants",
        ["tenant_id", "feature_id"],
    )

    # --- Surfaces ---
    op.create_table(
        "surfaces",
        sa.Column("id", sa.String(150), primary_key=True),
        sa.Column("kind", sa.String(20), server_default="page"),
        sa.Column("title", sa.String(255), server_default=""),
        sa.Column("feature_code", sa.String(100), nullable=True),
    )

    op.create_table(
        "surface_bindings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=True),
        sa.Column("surface_id", sa.String(150), nullable=False, index=True),
        sa.Column("target_kind", sa.String(10), nullable=False),
        sa.Column("target_id", sa.String(36), nullable=False),
        sa.Column("required_feature_code", sa.String(100), nullable=True),
        sa.Column("enforces_license", sa.Boolean, server_default=sa.false()),
        sa.Column("source", sa.String(30), server_default="manual"),
        sa.Column("source_reference", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index(
        "ix_surface_bindings_target",
        "surface_bindings",
        ["tenant_id", "surface_id", "target_kind", "target_id"],
        unique=True,
    )

    # --- Deployment bookkeeping ---
    op.create_table(
        "deployment_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("feature_id", sa.String(36), nullable=False),
        sa.Column("state", sa.String(30), server_default="pending_deployment"),
        sa.Column("permission_count", sa.Integer, server_default="0"),
        sa.Column("role_link_count", sa.Integer, server_default="0"),
        sa.Column("binding_count", sa.Integer, server_default="0"),
        sa.Column("last_error", sa.Text, server_default=""),
        sa.Column("last_synced_at", sa.DateTime),
    )
    op.create_index(
        "ix_deployment_records_pair",
        "deployment_records",
        ["tenant_id", "feature_id"],
        unique=True,
    )

    op.create_table(
        "rbac_audit_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(36), nullable=False, index=True),
        sa.Column("operation", sa.String(50), nullable=False),
        sa.Column("feature_id", sa.String(36), nullable=True),
        sa.Column("detail", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime, index=True),
    )


def downgrade() -> None:
    for table in (
        "rbac_audit_log",
        "deployment_records",
        "surface_bindings",
        "surfaces",
        "tenant_feature_grants",
        "permission_role_templates",
        "feature_permissions",
        "features",
        "user_role_assignments",
        "role_bundles",
        "role_permissions",
        "bundle_permissions",
        "permission_bundles",
        "permissions",
        "roles",
        "principal_profiles",
        "tenants",
    ):
        op.drop_table(table)
