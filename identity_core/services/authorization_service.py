from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlmodel import Session, col, or_, select

from identity_core.domain.conditions import AttributeEqualityMatcher, ConditionMatcher
from identity_core.domain.models import (
    AccessDecision,
    Permission,
    PolicyEffect,
    Role,
    RolePermissionPolicy,
    UserTenantPermission,
    UserTenantRole,
    UserTenantRoleRead,
)
from identity_core.infra.db import get_engine, store_errors
from identity_core.services.policy_resolver import PolicyResolver
from identity_core.stores.associations import AssociationStore
from identity_core.stores.graph import IdentityGraphStore

logger = logging.getLogger(__name__)


class AuthorizationService:
    """Read-only access questions asked on every authorized request.

    Role-derived permissions are already materialized as direct facts, so
    permission checks never walk roles.
    """

    def __init__(self, matcher: ConditionMatcher | None = None) -> None:
        self.matcher = matcher or AttributeEqualityMatcher()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _held_permission(
        self,
        session: Session,
        user_id: str,
        tenant_id: str,
        action: str,
        resource: str,
    ) -> Permission | None:
        statement = (
            select(Permission)
            .join(UserTenantPermission, col(UserTenantPermission.permission_id) == col(Permission.id))
            .where(UserTenantPermission.user_id == user_id)
            .where(UserTenantPermission.tenant_id == tenant_id)
            .where(Permission.action == action)
            .where(Permission.resource == resource)
        )
        return session.exec(statement).first()

    def user_has_permission(self, user_id: str, tenant_id: str, action: str, resource: str) -> bool:
        with self._session() as session, store_errors():
            found = self._held_permission(session, user_id, tenant_id, action, resource) is not None
        logger.debug("permission check user=%s tenant=%s %s:%s -> %s", user_id, tenant_id, action, resource, found)
        return found

    def user_has_role(self, user_id: str, tenant_id: str, role: str) -> bool:
        """``role`` may be the role id, its code or its name."""
        statement = (
            select(UserTenantRole.role_id)
            .join(Role, col(Role.id) == col(UserTenantRole.role_id))
            .where(UserTenantRole.user_id == user_id)
            .where(UserTenantRole.tenant_id == tenant_id)
            .where(or_(col(Role.id) == role, col(Role.code) == role, col(Role.name) == role))
        )
        with self._session() as session, store_errors():
            return session.exec(statement).first() is not None

    def list_user_permissions(self, user_id: str, tenant_id: str) -> list[str]:
        statement = (
            select(Permission)
            .join(UserTenantPermission, col(UserTenantPermission.permission_id) == col(Permission.id))
            .where(UserTenantPermission.user_id == user_id)
            .where(UserTenantPermission.tenant_id == tenant_id)
        )
        with self._session() as session, store_errors():
            permissions = session.exec(statement).all()
        return sorted({item.permission_string for item in permissions})

    def list_user_roles(self, user_id: str, tenant_id: str) -> list[UserTenantRoleRead]:
        with self._session() as session, store_errors():
            return AssociationStore(session).list_roles_by_user(user_id, tenant_id)

    def check_access(
        self,
        user_id: str,
        tenant_id: str,
        action: str,
        resource: str,
        context: Mapping[str, Any] | None = None,
    ) -> AccessDecision:
        """Decide a request against the held permission and the policies of its grants.

        A matching DENY policy on any carrying role wins. Otherwise the first
        grant that is allowed decides; an ALLOW policy whose actions, resources
        or conditions do not cover the request grants nothing on its own.
        """
        context = context or {}
        with self._session() as session, store_errors():
            permission = self._held_permission(session, user_id, tenant_id, action, resource)
            if permission is None:
                return AccessDecision(allowed=False, reason="permission not granted")

            statement = (
                select(RolePermissionPolicy)
                .join(UserTenantRole, col(UserTenantRole.role_id) == col(RolePermissionPolicy.role_id))
                .where(UserTenantRole.user_id == user_id)
                .where(UserTenantRole.tenant_id == tenant_id)
                .where(RolePermissionPolicy.permission_id == permission.id)
                .order_by(col(RolePermissionPolicy.role_id))
            )
            grants = session.exec(statement).all()
            if not grants:
                return AccessDecision(
                    allowed=True,
                    reason="direct grant",
                    permission_id=permission.id,
                    effect=PolicyEffect.ALLOW,
                )

            resolver = PolicyResolver(IdentityGraphStore(session))
            allowed: AccessDecision | None = None
            for grant in grants:
                policy = resolver.resolve(grant, permission=permission)
                if policy is None:
                    effect = resolver.grant_effect(grant, None)
                    if effect == PolicyEffect.DENY:
                        return AccessDecision(
                            allowed=False,
                            reason="grant has no resolvable policy",
                            permission_id=permission.id,
                            effect=effect,
                        )
                    if allowed is None:
                        allowed = AccessDecision(
                            allowed=True,
                            reason="grant without policy",
                            permission_id=permission.id,
                            effect=effect,
                        )
                    continue

                covers = policy.applies_to(action, resource) and self.matcher.matches(policy.conditions, context)
                if policy.effect == PolicyEffect.DENY:
                    if covers:
                        return AccessDecision(
                            allowed=False,
                            reason=f"denied by policy {policy.code}",
                            permission_id=permission.id,
                            policy_id=policy.id,
                            effect=PolicyEffect.DENY,
                        )
                    if allowed is None:
                        allowed = AccessDecision(
                            allowed=True,
                            reason=f"deny policy {policy.code} does not apply",
                            permission_id=permission.id,
                            policy_id=policy.id,
                            effect=PolicyEffect.ALLOW,
                        )
                elif covers and allowed is None:
                    allowed = AccessDecision(
                        allowed=True,
                        reason=f"allowed by policy {policy.code}",
                        permission_id=permission.id,
                        policy_id=policy.id,
                        effect=PolicyEffect.ALLOW,
                    )

        if allowed is not None:
            return allowed
        return AccessDecision(
            allowed=False,
            reason="no policy allows the request",
            permission_id=permission.id,
        )
