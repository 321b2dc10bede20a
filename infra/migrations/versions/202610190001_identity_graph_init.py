"""identity graph and association tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "landlords",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_landlords_name", "landlords", ["name"], unique=True)
    op.create_index("ix_landlords_created_at", "landlords", ["created_at"])

    op.create_table(
        "tenants",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("landlord_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("domain", sa.String(), nullable=True),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["landlord_id"], ["landlords.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tenants_landlord_id", "tenants", ["landlord_id"])
    op.create_index("ix_tenants_name", "tenants", ["name"], unique=True)
    op.create_index("ix_tenants_created_at", "tenants", ["created_at"])
    op.create_index("ix_tenants_landlord_name", "tenants", ["landlord_id", "name"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_created_at", "users", ["created_at"])

    op.create_table(
        "roles",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("landlord_id", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["landlord_id"], ["landlords.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("landlord_id", "code", name="uq_roles_landlord_code"),
        sa.UniqueConstraint("landlord_id", "name", name="uq_roles_landlord_name"),
    )
    op.create_index("ix_roles_landlord_id", "roles", ["landlord_id"])
    op.create_index("ix_roles_code", "roles", ["code"])
    op.create_index("ix_roles_created_at", "roles", ["created_at"])

    op.create_table(
        "policies",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("effect", sa.String(), nullable=False),
        sa.Column("actions", sa.JSON(), nullable=False),
        sa.Column("resources", sa.JSON(), nullable=False),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_policies_tenant_code"),
        sa.UniqueConstraint("tenant_id", "name", name="uq_policies_tenant_name"),
    )
    op.create_index("ix_policies_tenant_id", "policies", ["tenant_id"])
    op.create_index("ix_policies_created_at", "policies", ["created_at"])
    op.create_index("ix_policies_tenant_effect", "policies", ["tenant_id", "effect"])

    op.create_table(
        "permissions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("landlord_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("policy_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["landlord_id"], ["landlords.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["policy_id"], ["policies.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "landlord_id",
            "action",
            "resource",
            name="uq_permissions_landlord_action_resource",
        ),
    )
    op.create_index("ix_permissions_landlord_id", "permissions", ["landlord_id"])
    op.create_index("ix_permissions_action", "permissions", ["action"])
    op.create_index("ix_permissions_resource", "permissions", ["resource"])
    op.create_index("ix_permissions_policy_id", "permissions", ["policy_id"])
    op.create_index("ix_permissions_created_at", "permissions", ["created_at"])

    op.create_table(
        "users_tenants_roles",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("role_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "tenant_id", "role_id"),
    )
    op.create_index("ix_users_tenants_roles_created_at", "users_tenants_roles", ["created_at"])
    op.create_index("ix_users_tenants_roles_tenant_user", "users_tenants_roles", ["tenant_id", "user_id"])
    op.create_index("ix_users_tenants_roles_role", "users_tenants_roles", ["role_id"])

    op.create_table(
        "users_tenants_permissions",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("permission_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "tenant_id", "permission_id"),
    )
    op.create_index("ix_users_tenants_permissions_created_at", "users_tenants_permissions", ["created_at"])
    op.create_index(
        "ix_users_tenants_permissions_tenant_user",
        "users_tenants_permissions",
        ["tenant_id", "user_id"],
    )
    op.create_index(
        "ix_users_tenants_permissions_permission",
        "users_tenants_permissions",
        ["permission_id"],
    )

    op.create_table(
        "roles_permissions",
        sa.Column("role_id", sa.String(), nullable=False),
        sa.Column("permission_id", sa.String(), nullable=False),
        sa.Column("policy_id", sa.String(), nullable=True),
        sa.Column("inherit_default_policy", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["policy_id"], ["policies.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("role_id", "permission_id"),
    )
    op.create_index("ix_roles_permissions_policy_id", "roles_permissions", ["policy_id"])
    op.create_index("ix_roles_permissions_created_at", "roles_permissions", ["created_at"])
    op.create_index("ix_roles_permissions_permission", "roles_permissions", ["permission_id"])


def downgrade() -> None:
    op.drop_table("roles_permissions")
    op.drop_table("users_tenants_permissions")
    op.drop_table("users_tenants_roles")
    op.drop_table("permissions")
    op.drop_table("policies")
    op.drop_table("roles")
    op.drop_table("users")
    op.drop_table("tenants")
    op.drop_table("landlords")
