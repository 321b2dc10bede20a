from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlmodel import Session

from identity_core.domain.errors import IntegrityError, ResourceNotFound, ValidationError
from identity_core.domain.models import AssignmentResult, Tenant
from identity_core.infra.db import get_engine, store_errors
from identity_core.stores.associations import AssociationStore
from identity_core.stores.graph import IdentityGraphStore, RoleAggregate

logger = logging.getLogger(__name__)


def clean_ids(values: Iterable[str | None] | None) -> list[str]:
    """Drop nulls, blanks and duplicates while keeping first-seen order."""
    cleaned: list[str] = []
    for item in values or []:
        if item is None:
            continue
        value = item.strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


class AssignmentService:
    """Grants roles and permissions to a user inside a tenant.

    Each public call is one unit of work: validation happens before the first
    write and the session commits once, so a failure leaves no partial grant.
    """

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _require_user_tenant(self, graph: IdentityGraphStore, user_id: str, tenant_id: str) -> Tenant:
        if graph.get_user(user_id) is None:
            raise ResourceNotFound(f"user not found: {user_id}")
        tenant = graph.get_tenant(tenant_id)
        if tenant is None:
            raise ResourceNotFound(f"tenant not found: {tenant_id}")
        return tenant

    def _load_roles(self, graph: IdentityGraphStore, tenant: Tenant, role_ids: list[str]) -> list[RoleAggregate]:
        aggregates: list[RoleAggregate] = []
        for role_id in role_ids:
            aggregate = graph.find_role_with_permissions(role_id)
            if aggregate is None:
                raise ResourceNotFound(f"role not found: {role_id}")
            if aggregate.role.landlord_id != tenant.landlord_id:
                logger.warning(
                    "cross-landlord role %s rejected for tenant %s",
                    role_id,
                    tenant.id,
                )
                raise IntegrityError(f"role {role_id} does not belong to the landlord of tenant {tenant.id}")
            aggregates.append(aggregate)
        return aggregates

    def assign_roles_in(
        self,
        session: Session,
        user_id: str,
        tenant_id: str,
        role_ids: list[str],
    ) -> AssignmentResult:
        """Run the role assignment inside a caller-owned session without committing."""
        if not role_ids:
            raise ValidationError("role_ids must contain at least one role id")
        graph = IdentityGraphStore(session)
        associations = AssociationStore(session, graph)
        tenant = self._require_user_tenant(graph, user_id, tenant_id)
        aggregates = self._load_roles(graph, tenant, role_ids)

        result = AssignmentResult(user_id=user_id, tenant_id=tenant_id, requested_role_ids=list(role_ids))
        derived: list[str] = []
        for aggregate in aggregates:
            role_id = aggregate.role.id
            if associations.add_user_tenant_role(user_id, tenant_id, role_id):
                result.newly_assigned_role_ids.append(role_id)
            else:
                logger.debug("role %s already assigned to user %s in tenant %s", role_id, user_id, tenant_id)
                result.already_assigned_role_ids.append(role_id)
            for permission_id in aggregate.permission_ids:
                if permission_id not in derived:
                    derived.append(permission_id)

        for permission_id in derived:
            if associations.add_user_tenant_permission(user_id, tenant_id, permission_id):
                result.newly_assigned_permission_ids.append(permission_id)
                result.propagated_permission_ids.append(permission_id)
            else:
                result.already_assigned_permission_ids.append(permission_id)
        return result

    def assign_roles(self, user_id: str, tenant_id: str, role_ids: Iterable[str | None]) -> AssignmentResult:
        requested = clean_ids(role_ids)
        if not requested:
            raise ValidationError("role_ids must contain at least one role id")
        with self._session() as session, store_errors("concurrent change to the assignment, retry"):
            result = self.assign_roles_in(session, user_id, tenant_id, requested)
            session.commit()
        logger.info(
            "assigned roles user=%s tenant=%s new=%d existing=%d propagated=%d",
            user_id,
            tenant_id,
            len(result.newly_assigned_role_ids),
            len(result.already_assigned_role_ids),
            len(result.propagated_permission_ids),
        )
        return result

    def assign_permissions(
        self,
        user_id: str,
        tenant_id: str,
        permission_ids: Iterable[str | None],
    ) -> AssignmentResult:
        requested = clean_ids(permission_ids)
        if not requested:
            raise ValidationError("permission_ids must contain at least one permission id")
        with self._session() as session, store_errors("concurrent change to the assignment, retry"):
            graph = IdentityGraphStore(session)
            associations = AssociationStore(session, graph)
            tenant = self._require_user_tenant(graph, user_id, tenant_id)
            for permission_id in requested:
                permission = graph.get_permission(permission_id)
                if permission is None:
                    raise ResourceNotFound(f"permission not found: {permission_id}")
                if permission.landlord_id != tenant.landlord_id:
                    logger.warning("cross-landlord permission %s rejected for tenant %s", permission_id, tenant_id)
                    raise IntegrityError(
                        f"permission {permission_id} does not belong to the landlord of tenant {tenant_id}"
                    )

            result = AssignmentResult(
                user_id=user_id,
                tenant_id=tenant_id,
                requested_permission_ids=requested,
            )
            for permission_id in requested:
                if associations.add_user_tenant_permission(user_id, tenant_id, permission_id):
                    result.newly_assigned_permission_ids.append(permission_id)
                else:
                    result.already_assigned_permission_ids.append(permission_id)
            session.commit()
        logger.info(
            "assigned permissions user=%s tenant=%s new=%d existing=%d",
            user_id,
            tenant_id,
            len(result.newly_assigned_permission_ids),
            len(result.already_assigned_permission_ids),
        )
        return result

    def unassign_role(self, user_id: str, tenant_id: str, role_id: str) -> bool:
        with self._session() as session, store_errors():
            removed = AssociationStore(session).remove_user_tenant_role(user_id, tenant_id, role_id)
            session.commit()
        if removed:
            logger.info("unassigned role %s from user %s in tenant %s", role_id, user_id, tenant_id)
        return removed

    def revoke_permission(self, user_id: str, tenant_id: str, permission_id: str) -> bool:
        with self._session() as session, store_errors():
            removed = AssociationStore(session).remove_user_tenant_permission(user_id, tenant_id, permission_id)
            session.commit()
        if removed:
            logger.info("revoked permission %s from user %s in tenant %s", permission_id, user_id, tenant_id)
        return removed
