from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import exc as sa_exc
from sqlmodel import Session, col, select

from identity_core.domain.errors import ConflictError, IntegrityError, ResourceNotFound, ValidationError
from identity_core.domain.models import (
    Landlord,
    LandlordCreate,
    LandlordUpdate,
    Permission,
    PermissionCreate,
    PermissionUpdate,
    Policy,
    PolicyCreate,
    PolicyEffect,
    PolicyUpdate,
    Role,
    RoleCreate,
    RolePermissionAttachRequest,
    RolePermissionPolicyUpdate,
    RolePermissionRead,
    RoleUpdate,
    SetupRead,
    SetupRequest,
    Tenant,
    TenantCreate,
    TenantUpdate,
    User,
    UserCreate,
    UserTenantPermissionRead,
    UserTenantRoleRead,
    now_utc,
)
from identity_core.domain.permissions import ADMIN_PERMISSIONS, ADMIN_ROLE_CODE
from identity_core.domain.presets import POLICY_PRESETS, find_preset
from identity_core.infra.db import get_engine, store_errors
from identity_core.services.assignment_service import AssignmentService
from identity_core.stores.associations import AssociationStore
from identity_core.stores.graph import IdentityGraphStore

logger = logging.getLogger(__name__)

LANDLORD_NAME_MAX_LENGTH = 200
TENANT_NAME_MIN_LENGTH = 2
PERMISSION_PART_MIN_LENGTH = 2


def _required(value: str | None, field: str, *, min_length: int = 1, max_length: int | None = None) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{field} is required")
    if len(cleaned) < min_length:
        raise ValidationError(f"{field} must have at least {min_length} characters")
    if max_length is not None and len(cleaned) > max_length:
        raise ValidationError(f"{field} must have at most {max_length} characters")
    return cleaned


def _clean_list(values: list[str] | None, field: str) -> list[str]:
    cleaned: list[str] = []
    for item in values or []:
        value = item.strip()
        if value and value not in cleaned:
            cleaned.append(value)
    if not cleaned:
        raise ValidationError(f"{field} must not be empty")
    return cleaned


class IdentityService:
    """Administrative operations over the identity graph."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _require_landlord(self, graph: IdentityGraphStore, landlord_id: str) -> Landlord:
        landlord = graph.get_landlord(landlord_id)
        if landlord is None:
            raise ResourceNotFound("landlord not found")
        return landlord

    def _require_tenant(self, graph: IdentityGraphStore, tenant_id: str) -> Tenant:
        tenant = graph.get_tenant(tenant_id)
        if tenant is None:
            raise ResourceNotFound("tenant not found")
        return tenant

    def _require_role(self, graph: IdentityGraphStore, role_id: str) -> Role:
        role = graph.get_role(role_id)
        if role is None:
            raise ResourceNotFound("role not found")
        return role

    def _require_permission(self, graph: IdentityGraphStore, permission_id: str) -> Permission:
        permission = graph.get_permission(permission_id)
        if permission is None:
            raise ResourceNotFound("permission not found")
        return permission

    def _require_policy(self, graph: IdentityGraphStore, policy_id: str) -> Policy:
        policy = graph.get_policy(policy_id)
        if policy is None:
            raise ResourceNotFound("policy not found")
        return policy

    def _check_policy_landlord(self, graph: IdentityGraphStore, policy_id: str, landlord_id: str) -> None:
        policy = self._require_policy(graph, policy_id)
        if graph.policy_landlord_id(policy) != landlord_id:
            logger.warning("cross-landlord default policy %s rejected for landlord %s", policy_id, landlord_id)
            raise IntegrityError("policy does not belong to a tenant of the permission's landlord")

    # landlords

    def create_landlord(self, payload: LandlordCreate) -> Landlord:
        name = _required(payload.name, "landlord name", max_length=LANDLORD_NAME_MAX_LENGTH)
        with self._session() as session, store_errors("landlord name already exists"):
            graph = IdentityGraphStore(session)
            if graph.find_landlord_by_name(name) is not None:
                raise ConflictError("landlord name already exists")
            landlord = Landlord(name=name, config=dict(payload.config))
            session.add(landlord)
            session.commit()
            session.refresh(landlord)
        logger.info("created landlord %s", landlord.id)
        return landlord

    def list_landlords(self) -> list[Landlord]:
        with self._session() as session, store_errors():
            return list(session.exec(select(Landlord).order_by(col(Landlord.name))).all())

    def get_landlord(self, landlord_id: str) -> Landlord:
        with self._session() as session, store_errors():
            return self._require_landlord(IdentityGraphStore(session), landlord_id)

    def update_landlord(self, landlord_id: str, payload: LandlordUpdate) -> Landlord:
        with self._session() as session, store_errors("landlord name already exists"):
            graph = IdentityGraphStore(session)
            landlord = self._require_landlord(graph, landlord_id)
            if payload.name is not None:
                name = _required(payload.name, "landlord name", max_length=LANDLORD_NAME_MAX_LENGTH)
                existing = graph.find_landlord_by_name(name)
                if existing is not None and existing.id != landlord_id:
                    raise ConflictError("landlord name already exists")
                landlord.name = name
            if payload.config is not None:
                landlord.config = dict(payload.config)
            landlord.updated_at = now_utc()
            session.add(landlord)
            session.commit()
            session.refresh(landlord)
            return landlord

    def delete_landlord(self, landlord_id: str) -> None:
        with self._session() as session, store_errors():
            graph = IdentityGraphStore(session)
            self._require_landlord(graph, landlord_id)
            graph.delete_landlord_cascade(landlord_id)
            session.commit()
        logger.info("deleted landlord %s", landlord_id)

    # tenants

    def create_tenant(self, landlord_id: str, payload: TenantCreate) -> Tenant:
        name = _required(payload.name, "tenant name", min_length=TENANT_NAME_MIN_LENGTH)
        with self._session() as session, store_errors("tenant name already exists"):
            graph = IdentityGraphStore(session)
            self._require_landlord(graph, landlord_id)
            if graph.find_tenant_by_name(name) is not None:
                raise ConflictError("tenant name already exists")
            tenant = Tenant(
                landlord_id=landlord_id,
                name=name,
                description=payload.description,
                domain=payload.domain,
                config=dict(payload.config),
            )
            session.add(tenant)
            session.commit()
            session.refresh(tenant)
        logger.info("created tenant %s for landlord %s", tenant.id, landlord_id)
        return tenant

    def list_tenants(self, landlord_id: str) -> list[Tenant]:
        statement = select(Tenant).where(Tenant.landlord_id == landlord_id).order_by(col(Tenant.name))
        with self._session() as session, store_errors():
            return list(session.exec(statement).all())

    def get_tenant(self, tenant_id: str) -> Tenant:
        with self._session() as session, store_errors():
            return self._require_tenant(IdentityGraphStore(session), tenant_id)

    def find_tenant_by_id(self, tenant_id: str) -> Tenant | None:
        with self._session() as session, store_errors():
            return IdentityGraphStore(session).get_tenant(tenant_id)

    def update_tenant(self, tenant_id: str, payload: TenantUpdate) -> Tenant:
        with self._session() as session, store_errors("tenant name already exists"):
            graph = IdentityGraphStore(session)
            tenant = self._require_tenant(graph, tenant_id)
            if payload.name is not None:
                name = _required(payload.name, "tenant name", min_length=TENANT_NAME_MIN_LENGTH)
                existing = graph.find_tenant_by_name(name)
                if existing is not None and existing.id != tenant_id:
                    raise ConflictError("tenant name already exists")
                tenant.name = name
            if payload.description is not None:
                tenant.description = payload.description
            if payload.domain is not None:
                tenant.domain = payload.domain
            if payload.config is not None:
                tenant.config = dict(payload.config)
            if payload.is_active is not None:
                tenant.is_active = payload.is_active
            tenant.updated_at = now_utc()
            session.add(tenant)
            session.commit()
            session.refresh(tenant)
            return tenant

    def set_tenant_active(self, tenant_id: str, is_active: bool) -> Tenant:
        return self.update_tenant(tenant_id, TenantUpdate(is_active=is_active))

    def delete_tenant(self, tenant_id: str) -> None:
        with self._session() as session, store_errors():
            graph = IdentityGraphStore(session)
            self._require_tenant(graph, tenant_id)
            graph.delete_tenant_cascade(tenant_id)
            session.commit()
        logger.info("deleted tenant %s", tenant_id)

    # users

    def create_user(self, payload: UserCreate) -> User:
        name = _required(payload.name, "user name")
        email = _required(payload.email, "email").lower()
        with self._session() as session, store_errors("email already exists"):
            if IdentityGraphStore(session).find_user_by_email(email) is not None:
                raise ConflictError("email already exists")
            user = User(name=name, email=email)
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def get_user(self, user_id: str) -> User:
        user = self.find_user_by_id(user_id)
        if user is None:
            raise ResourceNotFound("user not found")
        return user

    def find_user_by_id(self, user_id: str) -> User | None:
        with self._session() as session, store_errors():
            return IdentityGraphStore(session).get_user(user_id)

    def list_user_roles(self, user_id: str, tenant_id: str | None = None) -> list[UserTenantRoleRead]:
        with self._session() as session, store_errors():
            return AssociationStore(session).list_roles_by_user(user_id, tenant_id)

    def list_user_permissions(self, user_id: str, tenant_id: str | None = None) -> list[UserTenantPermissionRead]:
        with self._session() as session, store_errors():
            return AssociationStore(session).list_permissions_by_user(user_id, tenant_id)

    # roles

    def create_role(self, landlord_id: str, payload: RoleCreate) -> Role:
        code = _required(payload.code, "role code")
        name = _required(payload.name, "role name")
        with self._session() as session, store_errors("role code or name already exists"):
            graph = IdentityGraphStore(session)
            self._require_landlord(graph, landlord_id)
            existing = graph.find_role_by_code(landlord_id, code)
            if existing is not None:
                return self._same_role(existing, name, payload.description)
            if graph.find_role_by_name(landlord_id, name) is not None:
                raise ConflictError("role name already exists in landlord")
            role = Role(landlord_id=landlord_id, code=code, name=name, description=payload.description)
            session.add(role)
            try:
                session.commit()
            except sa_exc.IntegrityError as exc:
                # a concurrent identical create won the insert
                session.rollback()
                existing = graph.find_role_by_code(landlord_id, code)
                if existing is None:
                    raise ConflictError("role name already exists in landlord") from exc
                return self._same_role(existing, name, payload.description)
            session.refresh(role)
        logger.info("created role %s (%s) for landlord %s", role.id, code, landlord_id)
        return role

    def _same_role(self, existing: Role, name: str, description: str | None) -> Role:
        if existing.name == name and existing.description == description:
            logger.debug("role %s already exists for landlord %s", existing.code, existing.landlord_id)
            return existing
        raise ConflictError("role code already exists in landlord")

    def list_roles(self, landlord_id: str) -> list[Role]:
        statement = select(Role).where(Role.landlord_id == landlord_id).order_by(col(Role.code))
        with self._session() as session, store_errors():
            return list(session.exec(statement).all())

    def get_role(self, role_id: str) -> Role:
        with self._session() as session, store_errors():
            return self._require_role(IdentityGraphStore(session), role_id)

    def find_role_by_code(self, landlord_id: str, code: str) -> Role | None:
        with self._session() as session, store_errors():
            return IdentityGraphStore(session).find_role_by_code(landlord_id, code)

    def update_role(self, role_id: str, payload: RoleUpdate) -> Role:
        with self._session() as session, store_errors("role name already exists in landlord"):
            graph = IdentityGraphStore(session)
            role = self._require_role(graph, role_id)
            if payload.name is not None:
                name = _required(payload.name, "role name")
                existing = graph.find_role_by_name(role.landlord_id, name)
                if existing is not None and existing.id != role_id:
                    raise ConflictError("role name already exists in landlord")
                role.name = name
            if payload.description is not None:
                role.description = payload.description
            role.updated_at = now_utc()
            session.add(role)
            session.commit()
            session.refresh(role)
            return role

    def delete_role(self, role_id: str) -> None:
        with self._session() as session, store_errors():
            graph = IdentityGraphStore(session)
            self._require_role(graph, role_id)
            graph.delete_roles_cascade([role_id])
            session.commit()
        logger.info("deleted role %s", role_id)

    # permissions

    def create_permission(self, landlord_id: str, payload: PermissionCreate) -> Permission:
        action = _required(payload.action, "action", min_length=PERMISSION_PART_MIN_LENGTH)
        resource = _required(payload.resource, "resource", min_length=PERMISSION_PART_MIN_LENGTH)
        with self._session() as session, store_errors("permission already exists in landlord"):
            graph = IdentityGraphStore(session)
            self._require_landlord(graph, landlord_id)
            if payload.policy_id is not None:
                self._check_policy_landlord(graph, payload.policy_id, landlord_id)
            existing = graph.find_permission(landlord_id, action, resource)
            if existing is not None:
                if existing.policy_id == payload.policy_id:
                    return existing
                raise ConflictError("permission already exists in landlord with another default policy")
            permission = Permission(
                landlord_id=landlord_id,
                action=action,
                resource=resource,
                policy_id=payload.policy_id,
            )
            session.add(permission)
            session.commit()
            session.refresh(permission)
        logger.info("created permission %s (%s) for landlord %s", permission.id, permission.permission_string, landlord_id)
        return permission

    def list_permissions(self, landlord_id: str) -> list[Permission]:
        statement = (
            select(Permission)
            .where(Permission.landlord_id == landlord_id)
            .order_by(col(Permission.action), col(Permission.resource))
        )
        with self._session() as session, store_errors():
            return list(session.exec(statement).all())

    def get_permission(self, permission_id: str) -> Permission:
        with self._session() as session, store_errors():
            return self._require_permission(IdentityGraphStore(session), permission_id)

    def find_permission(self, landlord_id: str, action: str, resource: str) -> Permission | None:
        with self._session() as session, store_errors():
            return IdentityGraphStore(session).find_permission(landlord_id, action.strip(), resource.strip())

    def update_permission(self, permission_id: str, payload: PermissionUpdate) -> Permission:
        with self._session() as session, store_errors("permission already exists in landlord"):
            graph = IdentityGraphStore(session)
            permission = self._require_permission(graph, permission_id)
            action = permission.action
            resource = permission.resource
            if payload.action is not None:
                action = _required(payload.action, "action", min_length=PERMISSION_PART_MIN_LENGTH)
            if payload.resource is not None:
                resource = _required(payload.resource, "resource", min_length=PERMISSION_PART_MIN_LENGTH)
            existing = graph.find_permission(permission.landlord_id, action, resource)
            if existing is not None and existing.id != permission_id:
                raise ConflictError("permission already exists in landlord")
            permission.action = action
            permission.resource = resource
            permission.updated_at = now_utc()
            session.add(permission)
            session.commit()
            session.refresh(permission)
            return permission

    def set_default_policy(self, permission_id: str, policy_id: str | None) -> Permission:
        with self._session() as session, store_errors():
            graph = IdentityGraphStore(session)
            permission = self._require_permission(graph, permission_id)
            if policy_id is not None:
                self._check_policy_landlord(graph, policy_id, permission.landlord_id)
            permission.policy_id = policy_id
            permission.updated_at = now_utc()
            session.add(permission)
            session.commit()
            session.refresh(permission)
        logger.info("default policy of permission %s set to %s", permission_id, policy_id)
        return permission

    def delete_permission(self, permission_id: str) -> None:
        with self._session() as session, store_errors():
            graph = IdentityGraphStore(session)
            self._require_permission(graph, permission_id)
            graph.delete_permissions_cascade([permission_id])
            session.commit()
        logger.info("deleted permission %s", permission_id)

    # policies

    def create_policy(self, tenant_id: str, payload: PolicyCreate) -> Policy:
        code = _required(payload.code, "policy code")
        name = _required(payload.name, "policy name")
        actions = _clean_list(payload.actions, "actions")
        resources = _clean_list(payload.resources, "resources")
        with self._session() as session, store_errors("policy code or name already exists in tenant"):
            graph = IdentityGraphStore(session)
            self._require_tenant(graph, tenant_id)
            existing = graph.find_policy_by_code(tenant_id, code)
            if existing is not None:
                identical = (
                    existing.name == name
                    and existing.description == payload.description
                    and existing.effect == payload.effect
                    and existing.actions == actions
                    and existing.resources == resources
                    and existing.conditions == payload.conditions
                )
                if identical:
                    return existing
                raise ConflictError("policy code already exists in tenant")
            if graph.find_policy_by_name(tenant_id, name) is not None:
                raise ConflictError("policy name already exists in tenant")
            policy = Policy(
                tenant_id=tenant_id,
                code=code,
                name=name,
                description=payload.description,
                effect=payload.effect,
                actions=actions,
                resources=resources,
                conditions=payload.conditions,
            )
            session.add(policy)
            session.commit()
            session.refresh(policy)
        logger.info("created %s policy %s (%s) for tenant %s", policy.effect, policy.id, code, tenant_id)
        return policy

    def list_policies(self, tenant_id: str, effect: PolicyEffect | None = None) -> list[Policy]:
        statement = select(Policy).where(Policy.tenant_id == tenant_id)
        if effect is not None:
            statement = statement.where(Policy.effect == effect)
        with self._session() as session, store_errors():
            return list(session.exec(statement.order_by(col(Policy.code))).all())

    def get_policy(self, policy_id: str) -> Policy:
        with self._session() as session, store_errors():
            return self._require_policy(IdentityGraphStore(session), policy_id)

    def find_policy_by_code(self, tenant_id: str, code: str) -> Policy | None:
        with self._session() as session, store_errors():
            return IdentityGraphStore(session).find_policy_by_code(tenant_id, code)

    def update_policy(self, policy_id: str, payload: PolicyUpdate) -> Policy:
        with self._session() as session, store_errors("policy name already exists in tenant"):
            graph = IdentityGraphStore(session)
            policy = self._require_policy(graph, policy_id)
            if payload.name is not None:
                name = _required(payload.name, "policy name")
                existing = graph.find_policy_by_name(policy.tenant_id, name)
                if existing is not None and existing.id != policy_id:
                    raise ConflictError("policy name already exists in tenant")
                policy.name = name
            if payload.description is not None:
                policy.description = payload.description
            if payload.effect is not None:
                policy.effect = payload.effect
            if payload.actions is not None:
                policy.actions = _clean_list(payload.actions, "actions")
            if payload.resources is not None:
                policy.resources = _clean_list(payload.resources, "resources")
            if payload.conditions is not None:
                policy.conditions = dict(payload.conditions)
            policy.updated_at = now_utc()
            session.add(policy)
            session.commit()
            session.refresh(policy)
            return policy

    def delete_policy(self, policy_id: str) -> None:
        with self._session() as session, store_errors():
            graph = IdentityGraphStore(session)
            self._require_policy(graph, policy_id)
            graph.delete_policy_detaching(policy_id)
            session.commit()
        logger.info("deleted policy %s", policy_id)

    def list_policy_presets(self) -> list[dict[str, Any]]:
        return [
            {
                "key": str(item["key"]),
                "name": str(item["name"]),
                "description": str(item["description"]),
                "effect": item["effect"],
                "actions": list(item["actions"]),
                "resources": list(item["resources"]),
                "conditions": dict(item["conditions"]),
            }
            for item in POLICY_PRESETS
        ]

    def create_policy_from_preset(self, tenant_id: str, preset_key: str, code: str | None = None) -> Policy:
        preset = find_preset(preset_key)
        if preset is None:
            raise ResourceNotFound("policy preset not found")
        payload = PolicyCreate(
            code=code or str(preset["key"]),
            name=str(preset["name"]),
            description=str(preset["description"]),
            effect=preset["effect"],
            actions=list(preset["actions"]),
            resources=list(preset["resources"]),
            conditions=dict(preset["conditions"]) or None,
        )
        return self.create_policy(tenant_id, payload)

    # role x permission grants

    def attach_role_permission(self, role_id: str, payload: RolePermissionAttachRequest) -> RolePermissionRead:
        with self._session() as session, store_errors():
            associations = AssociationStore(session)
            associations.attach_role_permission(
                role_id,
                payload.permission_id,
                payload.policy_id,
                payload.inherit_default_policy,
            )
            session.commit()
            row = self._role_permission_row(associations, role_id, payload.permission_id)
        logger.info("attached permission %s to role %s", payload.permission_id, role_id)
        return row

    def update_role_permission_policy(
        self,
        role_id: str,
        permission_id: str,
        payload: RolePermissionPolicyUpdate,
    ) -> RolePermissionRead:
        with self._session() as session, store_errors():
            associations = AssociationStore(session)
            associations.update_role_permission_policy(
                role_id,
                permission_id,
                payload.policy_id,
                payload.inherit_default_policy,
            )
            session.commit()
            return self._role_permission_row(associations, role_id, permission_id)

    def detach_role_permission(self, role_id: str, permission_id: str) -> bool:
        with self._session() as session, store_errors():
            removed = AssociationStore(session).detach_role_permission(role_id, permission_id)
            session.commit()
        if removed:
            logger.info("detached permission %s from role %s", permission_id, role_id)
        return removed

    def list_role_permissions(self, role_id: str) -> list[RolePermissionRead]:
        with self._session() as session, store_errors():
            self._require_role(IdentityGraphStore(session), role_id)
            return AssociationStore(session).list_by_role(role_id)

    def list_permission_roles(self, permission_id: str) -> list[RolePermissionRead]:
        with self._session() as session, store_errors():
            self._require_permission(IdentityGraphStore(session), permission_id)
            return AssociationStore(session).list_roles_by_permission(permission_id)

    def _role_permission_row(self, associations: AssociationStore, role_id: str, permission_id: str) -> RolePermissionRead:
        rows = [item for item in associations.list_by_role(role_id) if item.permission_id == permission_id]
        if not rows:
            raise ResourceNotFound("role-permission association not found")
        return rows[0]

    # setup

    def bootstrap(self, payload: SetupRequest) -> SetupRead:
        """Create a landlord, its first tenant and an administrator in one transaction."""
        landlord_name = _required(payload.landlord_name, "landlord name", max_length=LANDLORD_NAME_MAX_LENGTH)
        tenant_name = _required(payload.tenant_name, "tenant name", min_length=TENANT_NAME_MIN_LENGTH)
        admin_name = _required(payload.admin_name, "admin name")
        admin_email = _required(payload.admin_email, "admin email").lower()
        with self._session() as session, store_errors("identity setup already exists"):
            graph = IdentityGraphStore(session)
            associations = AssociationStore(session, graph)
            if graph.find_landlord_by_name(landlord_name) is not None:
                raise ConflictError("landlord name already exists")
            if graph.find_tenant_by_name(tenant_name) is not None:
                raise ConflictError("tenant name already exists")

            landlord = Landlord(name=landlord_name)
            session.add(landlord)
            session.flush()
            tenant = Tenant(landlord_id=landlord.id, name=tenant_name)
            role = Role(
                landlord_id=landlord.id,
                code=ADMIN_ROLE_CODE,
                name="Administrator",
                description="bootstrap identity administrator",
            )
            session.add(tenant)
            session.add(role)
            user = graph.find_user_by_email(admin_email)
            if user is None:
                user = User(name=admin_name, email=admin_email)
                session.add(user)
            permissions = [
                Permission(landlord_id=landlord.id, action=action, resource=resource)
                for action, resource in ADMIN_PERMISSIONS
            ]
            session.add_all(permissions)
            session.flush()
            for permission in permissions:
                associations.attach_role_permission(role.id, permission.id)

            AssignmentService().assign_roles_in(session, user.id, tenant.id, [role.id])
            session.commit()
            setup = SetupRead(
                landlord_id=landlord.id,
                tenant_id=tenant.id,
                user_id=user.id,
                role_id=role.id,
                permissions=sorted(item.permission_string for item in permissions),
            )
        logger.info("bootstrapped landlord %s tenant %s admin %s", setup.landlord_id, setup.tenant_id, setup.user_id)
        return setup
