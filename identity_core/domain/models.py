from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


class PolicyEffect(StrEnum):
    ALLOW = "ALLOW"
    DENY = "DENY"


class Landlord(SQLModel, table=True):
    __tablename__ = "landlords"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    config: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"
    __table_args__ = (
        ForeignKeyConstraint(["landlord_id"], ["landlords.id"], ondelete="CASCADE"),
        Index("ix_tenants_landlord_name", "landlord_id", "name"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    landlord_id: str = Field(index=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    domain: str | None = None
    config: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Role(SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (
        ForeignKeyConstraint(["landlord_id"], ["landlords.id"], ondelete="CASCADE"),
        UniqueConstraint("landlord_id", "code", name="uq_roles_landlord_code"),
        UniqueConstraint("landlord_id", "name", name="uq_roles_landlord_name"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    landlord_id: str = Field(index=True)
    code: str = Field(index=True)
    name: str
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Policy(SQLModel, table=True):
    __tablename__ = "policies"
    __table_args__ = (
        ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        UniqueConstraint("tenant_id", "code", name="uq_policies_tenant_code"),
        UniqueConstraint("tenant_id", "name", name="uq_policies_tenant_name"),
        Index("ix_policies_tenant_effect", "tenant_id", "effect"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    code: str
    name: str
    description: str | None = None
    effect: PolicyEffect = Field(default=PolicyEffect.ALLOW)
    actions: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    resources: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    conditions: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)

    def applies_to(self, action: str, resource: str) -> bool:
        return action in (self.actions or []) and resource in (self.resources or [])


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"
    __table_args__ = (
        ForeignKeyConstraint(["landlord_id"], ["landlords.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["policy_id"], ["policies.id"], ondelete="SET NULL"),
        UniqueConstraint(
            "landlord_id",
            "action",
            "resource",
            name="uq_permissions_landlord_action_resource",
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    landlord_id: str = Field(index=True)
    action: str = Field(index=True)
    resource: str = Field(index=True)
    policy_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)

    @property
    def permission_string(self) -> str:
        return f"{self.action}:{self.resource}"


class UserTenantRole(SQLModel, table=True):
    __tablename__ = "users_tenants_roles"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        Index("ix_users_tenants_roles_tenant_user", "tenant_id", "user_id"),
        Index("ix_users_tenants_roles_role", "role_id"),
    )

    user_id: str = Field(primary_key=True)
    tenant_id: str = Field(primary_key=True)
    role_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class UserTenantPermission(SQLModel, table=True):
    __tablename__ = "users_tenants_permissions"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
        Index("ix_users_tenants_permissions_tenant_user", "tenant_id", "user_id"),
        Index("ix_users_tenants_permissions_permission", "permission_id"),
    )

    user_id: str = Field(primary_key=True)
    tenant_id: str = Field(primary_key=True)
    permission_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class RolePermissionPolicy(SQLModel, table=True):
    __tablename__ = "roles_permissions"
    __table_args__ = (
        ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["policy_id"], ["policies.id"], ondelete="SET NULL"),
        Index("ix_roles_permissions_permission", "permission_id"),
    )

    role_id: str = Field(primary_key=True)
    permission_id: str = Field(primary_key=True)
    policy_id: str | None = Field(default=None, index=True)
    inherit_default_policy: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class LandlordCreate(BaseModel):
    name: str
    config: dict[str, Any] = PydanticField(default_factory=dict)


class LandlordUpdate(BaseModel):
    name: str | None = None
    config: dict[str, Any] | None = None


class LandlordRead(ORMReadModel):
    id: str
    name: str
    config: dict[str, Any]
    created_at: datetime


class TenantCreate(BaseModel):
    name: str
    description: str | None = None
    domain: str | None = None
    config: dict[str, Any] = PydanticField(default_factory=dict)


class TenantUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    domain: str | None = None
    config: dict[str, Any] | None = None
    is_active: bool | None = None


class TenantRead(ORMReadModel):
    id: str
    landlord_id: str
    name: str
    description: str | None = None
    domain: str | None = None
    config: dict[str, Any]
    is_active: bool
    created_at: datetime


class UserCreate(BaseModel):
    name: str
    email: str


class UserRead(ORMReadModel):
    id: str
    name: str
    email: str
    is_active: bool
    created_at: datetime


class RoleCreate(BaseModel):
    code: str
    name: str
    description: str | None = None


class RoleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None


class RoleRead(ORMReadModel):
    id: str
    landlord_id: str
    code: str
    name: str
    description: str | None = None
    created_at: datetime


class PermissionCreate(BaseModel):
    action: str
    resource: str
    policy_id: str | None = None


class PermissionUpdate(BaseModel):
    action: str | None = None
    resource: str | None = None


class PermissionDefaultPolicyUpdate(BaseModel):
    policy_id: str | None = None


class PermissionRead(ORMReadModel):
    id: str
    landlord_id: str
    action: str
    resource: str
    permission_string: str
    policy_id: str | None = None
    created_at: datetime


class PolicyCreate(BaseModel):
    code: str
    name: str
    description: str | None = None
    effect: PolicyEffect = PolicyEffect.ALLOW
    actions: list[str]
    resources: list[str]
    conditions: dict[str, Any] | None = None


class PolicyUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    effect: PolicyEffect | None = None
    actions: list[str] | None = None
    resources: list[str] | None = None
    conditions: dict[str, Any] | None = None


class PolicyRead(ORMReadModel):
    id: str
    tenant_id: str
    code: str
    name: str
    description: str | None = None
    effect: PolicyEffect
    actions: list[str]
    resources: list[str]
    conditions: dict[str, Any] | None = None
    created_at: datetime


class PolicyPresetRead(BaseModel):
    key: str
    name: str
    description: str
    effect: PolicyEffect
    actions: list[str]
    resources: list[str]
    conditions: dict[str, Any]


class PolicyFromPresetCreateRequest(BaseModel):
    preset_key: str
    code: str | None = None


class RolePermissionAttachRequest(BaseModel):
    permission_id: str
    policy_id: str | None = None
    inherit_default_policy: bool = True


class RolePermissionPolicyUpdate(BaseModel):
    policy_id: str | None = None
    inherit_default_policy: bool = True


class RolePermissionRead(BaseModel):
    role_id: str
    role_code: str
    permission_id: str
    action: str
    resource: str
    permission_string: str
    policy_id: str | None = None
    policy_code: str | None = None
    inherit_default_policy: bool
    effective_policy_id: str | None = None
    effective_effect: PolicyEffect | None = None


class UserTenantRoleRead(BaseModel):
    user_id: str
    tenant_id: str
    role_id: str
    role_code: str
    role_name: str
    created_at: datetime


class UserTenantPermissionRead(BaseModel):
    user_id: str
    tenant_id: str
    permission_id: str
    action: str
    resource: str
    permission_string: str
    created_at: datetime


class UserRoleAssignRequest(BaseModel):
    role_ids: list[str | None]


class UserPermissionAssignRequest(BaseModel):
    permission_ids: list[str | None]


class AssignmentResult(BaseModel):
    user_id: str
    tenant_id: str
    requested_role_ids: list[str] = PydanticField(default_factory=list)
    newly_assigned_role_ids: list[str] = PydanticField(default_factory=list)
    already_assigned_role_ids: list[str] = PydanticField(default_factory=list)
    requested_permission_ids: list[str] = PydanticField(default_factory=list)
    newly_assigned_permission_ids: list[str] = PydanticField(default_factory=list)
    already_assigned_permission_ids: list[str] = PydanticField(default_factory=list)
    propagated_permission_ids: list[str] = PydanticField(default_factory=list)


class AccessCheckRequest(BaseModel):
    action: str
    resource: str
    context: dict[str, Any] = PydanticField(default_factory=dict)


class AccessDecision(BaseModel):
    allowed: bool
    reason: str
    permission_id: str | None = None
    policy_id: str | None = None
    effect: PolicyEffect | None = None


class SetupRequest(BaseModel):
    landlord_name: str
    tenant_name: str
    admin_name: str
    admin_email: str


class SetupRead(BaseModel):
    landlord_id: str
    tenant_id: str
    user_id: str
    role_id: str
    permissions: list[str]
