from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete, update
from sqlalchemy.orm import aliased
from sqlmodel import Session, col, select

from identity_core.domain.models import (
    Landlord,
    Permission,
    Policy,
    Role,
    RolePermissionPolicy,
    Tenant,
    User,
    UserTenantPermission,
    UserTenantRole,
)


@dataclass(frozen=True)
class RoleGrant:
    """One role-permission fact with the entities it references."""

    fact: RolePermissionPolicy
    permission: Permission
    policy: Policy | None = None
    default_policy: Policy | None = None


@dataclass(frozen=True)
class RoleAggregate:
    role: Role
    grants: list[RoleGrant] = field(default_factory=list)

    @property
    def permission_ids(self) -> list[str]:
        return [grant.permission.id for grant in self.grants]


class IdentityGraphStore:
    """Lookups and cascades over landlords, tenants, roles, permissions and policies.

    The store never commits; the caller owns the session and its transaction.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_landlord(self, landlord_id: str) -> Landlord | None:
        return self.session.get(Landlord, landlord_id)

    def get_tenant(self, tenant_id: str) -> Tenant | None:
        return self.session.get(Tenant, tenant_id)

    def get_user(self, user_id: str) -> User | None:
        return self.session.get(User, user_id)

    def get_role(self, role_id: str) -> Role | None:
        return self.session.get(Role, role_id)

    def get_permission(self, permission_id: str) -> Permission | None:
        return self.session.get(Permission, permission_id)

    def get_policy(self, policy_id: str) -> Policy | None:
        return self.session.get(Policy, policy_id)

    def find_landlord_by_name(self, name: str) -> Landlord | None:
        return self.session.exec(select(Landlord).where(Landlord.name == name)).first()

    def find_tenant_by_name(self, name: str) -> Tenant | None:
        return self.session.exec(select(Tenant).where(Tenant.name == name)).first()

    def find_user_by_email(self, email: str) -> User | None:
        return self.session.exec(select(User).where(User.email == email)).first()

    def find_role_by_code(self, landlord_id: str, code: str) -> Role | None:
        statement = select(Role).where(Role.landlord_id == landlord_id).where(Role.code == code)
        return self.session.exec(statement).first()

    def find_role_by_name(self, landlord_id: str, name: str) -> Role | None:
        statement = select(Role).where(Role.landlord_id == landlord_id).where(Role.name == name)
        return self.session.exec(statement).first()

    def find_permission(self, landlord_id: str, action: str, resource: str) -> Permission | None:
        statement = (
            select(Permission)
            .where(Permission.landlord_id == landlord_id)
            .where(Permission.action == action)
            .where(Permission.resource == resource)
        )
        return self.session.exec(statement).first()

    def find_policy_by_code(self, tenant_id: str, code: str) -> Policy | None:
        statement = select(Policy).where(Policy.tenant_id == tenant_id).where(Policy.code == code)
        return self.session.exec(statement).first()

    def find_policy_by_name(self, tenant_id: str, name: str) -> Policy | None:
        statement = select(Policy).where(Policy.tenant_id == tenant_id).where(Policy.name == name)
        return self.session.exec(statement).first()

    def policy_landlord_id(self, policy: Policy) -> str | None:
        tenant = self.get_tenant(policy.tenant_id)
        return tenant.landlord_id if tenant is not None else None

    def _grants_statement(self) -> Any:
        default_policy = aliased(Policy)
        return (
            select(RolePermissionPolicy, Role, Permission, Policy, default_policy)
            .select_from(RolePermissionPolicy)
            .join(Role, col(Role.id) == col(RolePermissionPolicy.role_id))
            .join(Permission, col(Permission.id) == col(RolePermissionPolicy.permission_id))
            .join(Policy, col(Policy.id) == col(RolePermissionPolicy.policy_id), isouter=True)
            .join(default_policy, default_policy.id == col(Permission.policy_id), isouter=True)
        )

    def _load_grants(self, statement: Any) -> list[tuple[Role, RoleGrant]]:
        return [
            (role, RoleGrant(fact=fact, permission=permission, policy=policy, default_policy=inherited))
            for fact, role, permission, policy, inherited in self.session.exec(statement).all()
        ]

    def find_role_with_permissions(self, role_id: str) -> RoleAggregate | None:
        role = self.get_role(role_id)
        if role is None:
            return None
        statement = (
            self._grants_statement()
            .where(RolePermissionPolicy.role_id == role_id)
            .order_by(col(RolePermissionPolicy.created_at), col(RolePermissionPolicy.permission_id))
        )
        return RoleAggregate(role=role, grants=[grant for _, grant in self._load_grants(statement)])

    def find_permission_grants(self, permission_id: str) -> list[tuple[Role, RoleGrant]]:
        statement = (
            self._grants_statement()
            .where(RolePermissionPolicy.permission_id == permission_id)
            .order_by(col(Role.code))
        )
        return self._load_grants(statement)

    def delete_policy_detaching(self, policy_id: str) -> None:
        self.session.exec(
            update(RolePermissionPolicy)
            .where(col(RolePermissionPolicy.policy_id) == policy_id)
            .values(policy_id=None)
        )
        self.session.exec(
            update(Permission).where(col(Permission.policy_id) == policy_id).values(policy_id=None)
        )
        self.session.exec(delete(Policy).where(col(Policy.id) == policy_id))

    def delete_roles_cascade(self, role_ids: list[str]) -> None:
        if not role_ids:
            return
        self.session.exec(delete(UserTenantRole).where(col(UserTenantRole.role_id).in_(role_ids)))
        self.session.exec(
            delete(RolePermissionPolicy).where(col(RolePermissionPolicy.role_id).in_(role_ids))
        )
        self.session.exec(delete(Role).where(col(Role.id).in_(role_ids)))

    def delete_permissions_cascade(self, permission_ids: list[str]) -> None:
        if not permission_ids:
            return
        self.session.exec(
            delete(UserTenantPermission).where(col(UserTenantPermission.permission_id).in_(permission_ids))
        )
        self.session.exec(
            delete(RolePermissionPolicy).where(col(RolePermissionPolicy.permission_id).in_(permission_ids))
        )
        self.session.exec(delete(Permission).where(col(Permission.id).in_(permission_ids)))

    def delete_tenant_cascade(self, tenant_id: str) -> None:
        self.session.exec(delete(UserTenantRole).where(col(UserTenantRole.tenant_id) == tenant_id))
        self.session.exec(delete(UserTenantPermission).where(col(UserTenantPermission.tenant_id) == tenant_id))
        policy_ids = list(self.session.exec(select(Policy.id).where(Policy.tenant_id == tenant_id)).all())
        for policy_id in policy_ids:
            self.delete_policy_detaching(policy_id)
        self.session.exec(delete(Tenant).where(col(Tenant.id) == tenant_id))

    def delete_landlord_cascade(self, landlord_id: str) -> None:
        tenant_ids = list(self.session.exec(select(Tenant.id).where(Tenant.landlord_id == landlord_id)).all())
        for tenant_id in tenant_ids:
            self.delete_tenant_cascade(tenant_id)
        role_ids = list(self.session.exec(select(Role.id).where(Role.landlord_id == landlord_id)).all())
        self.delete_roles_cascade(role_ids)
        permission_ids = list(
            self.session.exec(select(Permission.id).where(Permission.landlord_id == landlord_id)).all()
        )
        self.delete_permissions_cascade(permission_ids)
        self.session.exec(delete(Landlord).where(col(Landlord.id) == landlord_id))
