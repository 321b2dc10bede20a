from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, SQLModel, col, select

from identity_core.domain.errors import IntegrityError, ResourceNotFound
from identity_core.domain.models import (
    Permission,
    Role,
    RolePermissionPolicy,
    RolePermissionRead,
    Tenant,
    UserTenantPermission,
    UserTenantPermissionRead,
    UserTenantRole,
    UserTenantRoleRead,
    now_utc,
)
from identity_core.services.policy_resolver import PolicyResolver
from identity_core.stores.graph import IdentityGraphStore, RoleGrant

logger = logging.getLogger(__name__)


class AssociationStore:
    """Set semantics over the three pivot facts.

    Inserting an existing key is a no-op that reports ``False``; it never
    raises and never duplicates a fact. The store never commits.
    """

    def __init__(self, session: Session, graph: IdentityGraphStore | None = None) -> None:
        self.session = session
        self.graph = graph or IdentityGraphStore(session)

    def _insert_ignore(self, model: type[SQLModel], values: dict[str, Any]) -> bool:
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            statement = pg_insert(model).values(**values).on_conflict_do_nothing()
        elif dialect == "sqlite":
            statement = sqlite_insert(model).values(**values).on_conflict_do_nothing()
        else:
            key = tuple(values[column.name] for column in model.__table__.primary_key.columns)  # type: ignore[attr-defined]
            if self.session.get(model, key) is not None:
                return False
            self.session.add(model(**values))
            self.session.flush()
            return True
        result = self.session.exec(statement)
        return bool(result.rowcount)

    def _require_tenant(self, tenant_id: str) -> Tenant:
        tenant = self.graph.get_tenant(tenant_id)
        if tenant is None:
            raise ResourceNotFound(f"tenant not found: {tenant_id}")
        return tenant

    def _check_same_landlord(self, tenant: Tenant, owner_landlord_id: str, kind: str, item_id: str) -> None:
        if owner_landlord_id != tenant.landlord_id:
            logger.warning(
                "cross-landlord %s rejected: %s landlord=%s tenant=%s landlord=%s",
                kind,
                item_id,
                owner_landlord_id,
                tenant.id,
                tenant.landlord_id,
            )
            raise IntegrityError(f"{kind} {item_id} does not belong to the landlord of tenant {tenant.id}")

    # users x tenants x roles

    def exists_user_tenant_role(self, user_id: str, tenant_id: str, role_id: str) -> bool:
        return self.session.get(UserTenantRole, (user_id, tenant_id, role_id)) is not None

    def add_user_tenant_role(self, user_id: str, tenant_id: str, role_id: str) -> bool:
        tenant = self._require_tenant(tenant_id)
        role = self.graph.get_role(role_id)
        if role is None:
            raise ResourceNotFound(f"role not found: {role_id}")
        self._check_same_landlord(tenant, role.landlord_id, "role", role_id)
        return self._insert_ignore(
            UserTenantRole,
            {"user_id": user_id, "tenant_id": tenant_id, "role_id": role_id, "created_at": now_utc()},
        )

    def remove_user_tenant_role(self, user_id: str, tenant_id: str, role_id: str) -> bool:
        result = self.session.exec(
            delete(UserTenantRole)
            .where(col(UserTenantRole.user_id) == user_id)
            .where(col(UserTenantRole.tenant_id) == tenant_id)
            .where(col(UserTenantRole.role_id) == role_id)
        )
        return bool(result.rowcount)

    def list_roles_by_user(self, user_id: str, tenant_id: str | None = None) -> list[UserTenantRoleRead]:
        statement = (
            select(UserTenantRole, Role)
            .join(Role, col(Role.id) == col(UserTenantRole.role_id))
            .where(UserTenantRole.user_id == user_id)
        )
        if tenant_id is not None:
            statement = statement.where(UserTenantRole.tenant_id == tenant_id)
        rows = self.session.exec(statement.order_by(col(UserTenantRole.tenant_id), col(Role.code))).all()
        return [
            UserTenantRoleRead(
                user_id=link.user_id,
                tenant_id=link.tenant_id,
                role_id=role.id,
                role_code=role.code,
                role_name=role.name,
                created_at=link.created_at,
            )
            for link, role in rows
        ]

    # users x tenants x permissions

    def exists_user_tenant_permission(self, user_id: str, tenant_id: str, permission_id: str) -> bool:
        return self.session.get(UserTenantPermission, (user_id, tenant_id, permission_id)) is not None

    def add_user_tenant_permission(self, user_id: str, tenant_id: str, permission_id: str) -> bool:
        tenant = self._require_tenant(tenant_id)
        permission = self.graph.get_permission(permission_id)
        if permission is None:
            raise ResourceNotFound(f"permission not found: {permission_id}")
        self._check_same_landlord(tenant, permission.landlord_id, "permission", permission_id)
        return self._insert_ignore(
            UserTenantPermission,
            {
                "user_id": user_id,
                "tenant_id": tenant_id,
                "permission_id": permission_id,
                "created_at": now_utc(),
            },
        )

    def remove_user_tenant_permission(self, user_id: str, tenant_id: str, permission_id: str) -> bool:
        result = self.session.exec(
            delete(UserTenantPermission)
            .where(col(UserTenantPermission.user_id) == user_id)
            .where(col(UserTenantPermission.tenant_id) == tenant_id)
            .where(col(UserTenantPermission.permission_id) == permission_id)
        )
        return bool(result.rowcount)

    def remove_all_user_tenant_permissions(self, user_id: str, tenant_id: str) -> int:
        result = self.session.exec(
            delete(UserTenantPermission)
            .where(col(UserTenantPermission.user_id) == user_id)
            .where(col(UserTenantPermission.tenant_id) == tenant_id)
        )
        return int(result.rowcount or 0)

    def list_permissions_by_user(
        self,
        user_id: str,
        tenant_id: str | None = None,
    ) -> list[UserTenantPermissionRead]:
        statement = (
            select(UserTenantPermission, Permission)
            .join(Permission, col(Permission.id) == col(UserTenantPermission.permission_id))
            .where(UserTenantPermission.user_id == user_id)
        )
        if tenant_id is not None:
            statement = statement.where(UserTenantPermission.tenant_id == tenant_id)
        statement = statement.order_by(
            col(UserTenantPermission.tenant_id),
            col(Permission.action),
            col(Permission.resource),
        )
        return [
            UserTenantPermissionRead(
                user_id=link.user_id,
                tenant_id=link.tenant_id,
                permission_id=permission.id,
                action=permission.action,
                resource=permission.resource,
                permission_string=permission.permission_string,
                created_at=link.created_at,
            )
            for link, permission in self.session.exec(statement).all()
        ]

    # roles x permissions x policies

    def get_role_permission(self, role_id: str, permission_id: str) -> RolePermissionPolicy | None:
        return self.session.get(RolePermissionPolicy, (role_id, permission_id))

    def _check_role_permission_owners(self, role_id: str, permission_id: str, policy_id: str | None) -> None:
        role = self.graph.get_role(role_id)
        if role is None:
            raise ResourceNotFound(f"role not found: {role_id}")
        permission = self.graph.get_permission(permission_id)
        if permission is None:
            raise ResourceNotFound(f"permission not found: {permission_id}")
        if permission.landlord_id != role.landlord_id:
            logger.warning("cross-landlord permission %s rejected for role %s", permission_id, role_id)
            raise IntegrityError(f"permission {permission_id} does not belong to the landlord of role {role_id}")
        if policy_id is None:
            return
        policy = self.graph.get_policy(policy_id)
        if policy is None:
            raise ResourceNotFound(f"policy not found: {policy_id}")
        if self.graph.policy_landlord_id(policy) != role.landlord_id:
            logger.warning("cross-landlord policy %s rejected for role %s", policy_id, role_id)
            raise IntegrityError(f"policy {policy_id} does not belong to the landlord of role {role_id}")

    def attach_role_permission(
        self,
        role_id: str,
        permission_id: str,
        policy_id: str | None = None,
        inherit_default: bool = True,
    ) -> RolePermissionPolicy:
        self._check_role_permission_owners(role_id, permission_id, policy_id)
        link = self.get_role_permission(role_id, permission_id)
        if link is None:
            link = RolePermissionPolicy(role_id=role_id, permission_id=permission_id)
        link.policy_id = policy_id
        link.inherit_default_policy = inherit_default
        link.updated_at = now_utc()
        self.session.add(link)
        self.session.flush()
        return link

    def update_role_permission_policy(
        self,
        role_id: str,
        permission_id: str,
        policy_id: str | None,
        inherit_default: bool,
    ) -> RolePermissionPolicy:
        if self.get_role_permission(role_id, permission_id) is None:
            raise ResourceNotFound("role-permission association not found")
        return self.attach_role_permission(role_id, permission_id, policy_id, inherit_default)

    def detach_role_permission(self, role_id: str, permission_id: str) -> bool:
        link = self.get_role_permission(role_id, permission_id)
        if link is None:
            return False
        self.session.delete(link)
        self.session.flush()
        return True

    def _role_permission_row(self, role: Role, grant: RoleGrant, resolver: PolicyResolver) -> RolePermissionRead:
        link, permission = grant.fact, grant.permission
        effective = resolver.resolve_grant(grant)
        return RolePermissionRead(
            role_id=role.id,
            role_code=role.code,
            permission_id=permission.id,
            action=permission.action,
            resource=permission.resource,
            permission_string=permission.permission_string,
            policy_id=link.policy_id,
            policy_code=grant.policy.code if grant.policy is not None else None,
            inherit_default_policy=link.inherit_default_policy,
            effective_policy_id=effective.id if effective is not None else None,
            effective_effect=resolver.grant_effect(link, effective),
        )

    def list_by_role(self, role_id: str) -> list[RolePermissionRead]:
        aggregate = self.graph.find_role_with_permissions(role_id)
        if aggregate is None:
            return []
        resolver = PolicyResolver(self.graph)
        grants = sorted(aggregate.grants, key=lambda grant: (grant.permission.action, grant.permission.resource))
        return [self._role_permission_row(aggregate.role, grant, resolver) for grant in grants]

    def list_roles_by_permission(self, permission_id: str) -> list[RolePermissionRead]:
        resolver = PolicyResolver(self.graph)
        return [
            self._role_permission_row(role, grant, resolver)
            for role, grant in self.graph.find_permission_grants(permission_id)
        ]
