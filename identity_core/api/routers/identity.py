from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Response, status

from identity_core.api.deps import get_authorization_service, get_current_claims, require_perm
from identity_core.domain.errors import (
    ConflictError,
    IdentityError,
    ResourceNotFound,
    StoreUnavailable,
    ValidationError,
)
from identity_core.domain.models import (
    AccessCheckRequest,
    AccessDecision,
    AssignmentResult,
    PermissionCreate,
    PermissionDefaultPolicyUpdate,
    PermissionRead,
    PermissionUpdate,
    PolicyCreate,
    PolicyEffect,
    PolicyFromPresetCreateRequest,
    PolicyPresetRead,
    PolicyRead,
    PolicyUpdate,
    RoleCreate,
    RolePermissionAttachRequest,
    RolePermissionPolicyUpdate,
    RolePermissionRead,
    RoleRead,
    RoleUpdate,
    SetupRead,
    SetupRequest,
    TenantCreate,
    TenantRead,
    TenantUpdate,
    UserCreate,
    UserPermissionAssignRequest,
    UserRead,
    UserRoleAssignRequest,
    UserTenantPermissionRead,
    UserTenantRoleRead,
)
from identity_core.domain.permissions import (
    PERM_IDENTITY_READ,
    PERM_IDENTITY_WRITE,
    PERM_PERMISSIONS_ASSIGN,
    PERM_POLICIES_WRITE,
    PERM_ROLES_ASSIGN,
)
from identity_core.services.assignment_service import AssignmentService
from identity_core.services.authorization_service import AuthorizationService
from identity_core.services.identity_service import IdentityService

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[IdentityService, Depends(get_identity_service)]
Assignments = Annotated[AssignmentService, Depends(get_assignment_service)]
Authorization = Annotated[AuthorizationService, Depends(get_authorization_service)]


def _handle_identity_error(exc: Exception) -> None:
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if isinstance(exc, ResourceNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, StoreUnavailable):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    raise exc


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def _landlord_id(claims: dict[str, Any], service: IdentityService) -> str:
    try:
        return service.get_tenant(claims["tenant_id"]).landlord_id
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


def _ensure_tenant_scope(tenant_id: str, claims: dict[str, Any], service: IdentityService) -> None:
    tenant = service.find_tenant_by_id(tenant_id)
    if tenant is None or tenant.landlord_id != _landlord_id(claims, service):
        raise _not_found("tenant not found")


def _ensure_role_scope(role_id: str, claims: dict[str, Any], service: IdentityService) -> None:
    try:
        role = service.get_role(role_id)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise
    if role.landlord_id != _landlord_id(claims, service):
        raise _not_found("role not found")


def _ensure_permission_scope(permission_id: str, claims: dict[str, Any], service: IdentityService) -> None:
    try:
        permission = service.get_permission(permission_id)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise
    if permission.landlord_id != _landlord_id(claims, service):
        raise _not_found("permission not found")


def _ensure_policy_scope(policy_id: str, claims: dict[str, Any], service: IdentityService) -> None:
    try:
        policy = service.get_policy(policy_id)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise
    if policy.tenant_id != claims["tenant_id"]:
        raise _not_found("policy not found")


@router.post("/setup", response_model=SetupRead, status_code=status.HTTP_201_CREATED)
def setup(payload: SetupRequest, service: Service) -> SetupRead:
    try:
        return service.bootstrap(payload)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.get("/me/permissions", response_model=list[str])
def my_permissions(claims: Claims, authorization: Authorization) -> list[str]:
    try:
        return authorization.list_user_permissions(claims["sub"], claims["tenant_id"])
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.post("/authorize", response_model=AccessDecision)
def authorize(payload: AccessCheckRequest, claims: Claims, authorization: Authorization) -> AccessDecision:
    try:
        return authorization.check_access(
            claims["sub"],
            claims["tenant_id"],
            payload.action,
            payload.resource,
            payload.context,
        )
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.post(
    "/tenants",
    response_model=TenantRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def create_tenant(payload: TenantCreate, claims: Claims, service: Service) -> TenantRead:
    landlord_id = _landlord_id(claims, service)
    try:
        tenant = service.create_tenant(landlord_id, payload)
        return TenantRead.model_validate(tenant)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.get(
    "/tenants",
    response_model=list[TenantRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_tenants(claims: Claims, service: Service) -> list[TenantRead]:
    tenants = service.list_tenants(_landlord_id(claims, service))
    return [TenantRead.model_validate(item) for item in tenants]


@router.get(
    "/tenants/{tenant_id}",
    response_model=TenantRead,
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def get_tenant(tenant_id: str, claims: Claims, service: Service) -> TenantRead:
    _ensure_tenant_scope(tenant_id, claims, service)
    try:
        tenant = service.get_tenant(tenant_id)
        return TenantRead.model_validate(tenant)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.patch(
    "/tenants/{tenant_id}",
    response_model=TenantRead,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def update_tenant(tenant_id: str, payload: TenantUpdate, claims: Claims, service: Service) -> TenantRead:
    _ensure_tenant_scope(tenant_id, claims, service)
    try:
        tenant = service.update_tenant(tenant_id, payload)
        return TenantRead.model_validate(tenant)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.delete(
    "/tenants/{tenant_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def delete_tenant(tenant_id: str, claims: Claims, service: Service) -> Response:
    if tenant_id == claims["tenant_id"]:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="cannot delete the acting tenant")
    _ensure_tenant_scope(tenant_id, claims, service)
    try:
        service.delete_tenant(tenant_id)
    except IdentityError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/users",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def create_user(payload: UserCreate, service: Service) -> UserRead:
    try:
        user = service.create_user(payload)
        return UserRead.model_validate(user)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.get(
    "/users/{user_id}",
    response_model=UserRead,
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def get_user(user_id: str, service: Service) -> UserRead:
    try:
        user = service.get_user(user_id)
        return UserRead.model_validate(user)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.post(
    "/roles",
    response_model=RoleRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def create_role(payload: RoleCreate, claims: Claims, service: Service) -> RoleRead:
    landlord_id = _landlord_id(claims, service)
    try:
        role = service.create_role(landlord_id, payload)
        return RoleRead.model_validate(role)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.get(
    "/roles",
    response_model=list[RoleRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_roles(claims: Claims, service: Service) -> list[RoleRead]:
    roles = service.list_roles(_landlord_id(claims, service))
    return [RoleRead.model_validate(item) for item in roles]


@router.get(
    "/roles/{role_id}",
    response_model=RoleRead,
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def get_role(role_id: str, claims: Claims, service: Service) -> RoleRead:
    _ensure_role_scope(role_id, claims, service)
    return RoleRead.model_validate(service.get_role(role_id))


@router.patch(
    "/roles/{role_id}",
    response_model=RoleRead,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def update_role(role_id: str, payload: RoleUpdate, claims: Claims, service: Service) -> RoleRead:
    _ensure_role_scope(role_id, claims, service)
    try:
        role = service.update_role(role_id, payload)
        return RoleRead.model_validate(role)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.delete(
    "/roles/{role_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def delete_role(role_id: str, claims: Claims, service: Service) -> Response:
    _ensure_role_scope(role_id, claims, service)
    try:
        service.delete_role(role_id)
    except IdentityError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/roles/{role_id}/permissions",
    response_model=list[RolePermissionRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_role_permissions(role_id: str, claims: Claims, service: Service) -> list[RolePermissionRead]:
    _ensure_role_scope(role_id, claims, service)
    try:
        return service.list_role_permissions(role_id)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.post(
    "/roles/{role_id}/permissions",
    response_model=RolePermissionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_POLICIES_WRITE))],
)
def attach_role_permission(
    role_id: str,
    payload: RolePermissionAttachRequest,
    claims: Claims,
    service: Service,
) -> RolePermissionRead:
    _ensure_role_scope(role_id, claims, service)
    try:
        return service.attach_role_permission(role_id, payload)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.patch(
    "/roles/{role_id}/permissions/{permission_id}",
    response_model=RolePermissionRead,
    dependencies=[Depends(require_perm(PERM_POLICIES_WRITE))],
)
def update_role_permission_policy(
    role_id: str,
    permission_id: str,
    payload: RolePermissionPolicyUpdate,
    claims: Claims,
    service: Service,
) -> RolePermissionRead:
    _ensure_role_scope(role_id, claims, service)
    try:
        return service.update_role_permission_policy(role_id, permission_id, payload)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.delete(
    "/roles/{role_id}/permissions/{permission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_POLICIES_WRITE))],
)
def detach_role_permission(role_id: str, permission_id: str, claims: Claims, service: Service) -> Response:
    _ensure_role_scope(role_id, claims, service)
    try:
        removed = service.detach_role_permission(role_id, permission_id)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise
    if not removed:
        raise _not_found("role-permission association not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/permissions",
    response_model=PermissionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def create_permission(payload: PermissionCreate, claims: Claims, service: Service) -> PermissionRead:
    landlord_id = _landlord_id(claims, service)
    try:
        permission = service.create_permission(landlord_id, payload)
        return PermissionRead.model_validate(permission)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.get(
    "/permissions",
    response_model=list[PermissionRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_permissions(claims: Claims, service: Service) -> list[PermissionRead]:
    permissions = service.list_permissions(_landlord_id(claims, service))
    return [PermissionRead.model_validate(item) for item in permissions]


@router.get(
    "/permissions/{permission_id}",
    response_model=PermissionRead,
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def get_permission(permission_id: str, claims: Claims, service: Service) -> PermissionRead:
    _ensure_permission_scope(permission_id, claims, service)
    return PermissionRead.model_validate(service.get_permission(permission_id))


@router.patch(
    "/permissions/{permission_id}",
    response_model=PermissionRead,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def update_permission(
    permission_id: str,
    payload: PermissionUpdate,
    claims: Claims,
    service: Service,
) -> PermissionRead:
    _ensure_permission_scope(permission_id, claims, service)
    try:
        permission = service.update_permission(permission_id, payload)
        return PermissionRead.model_validate(permission)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.put(
    "/permissions/{permission_id}/default-policy",
    response_model=PermissionRead,
    dependencies=[Depends(require_perm(PERM_POLICIES_WRITE))],
)
def set_default_policy(
    permission_id: str,
    payload: PermissionDefaultPolicyUpdate,
    claims: Claims,
    service: Service,
) -> PermissionRead:
    _ensure_permission_scope(permission_id, claims, service)
    try:
        permission = service.set_default_policy(permission_id, payload.policy_id)
        return PermissionRead.model_validate(permission)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.delete(
    "/permissions/{permission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def delete_permission(permission_id: str, claims: Claims, service: Service) -> Response:
    _ensure_permission_scope(permission_id, claims, service)
    try:
        service.delete_permission(permission_id)
    except IdentityError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/policies",
    response_model=PolicyRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_POLICIES_WRITE))],
)
def create_policy(payload: PolicyCreate, claims: Claims, service: Service) -> PolicyRead:
    try:
        policy = service.create_policy(claims["tenant_id"], payload)
        return PolicyRead.model_validate(policy)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.get(
    "/policies",
    response_model=list[PolicyRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_policies(claims: Claims, service: Service, effect: PolicyEffect | None = None) -> list[PolicyRead]:
    policies = service.list_policies(claims["tenant_id"], effect)
    return [PolicyRead.model_validate(item) for item in policies]


@router.get(
    "/policy-presets",
    response_model=list[PolicyPresetRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_policy_presets(service: Service) -> list[PolicyPresetRead]:
    rows = service.list_policy_presets()
    return [PolicyPresetRead.model_validate(item) for item in rows]


@router.post(
    "/policies:from-preset",
    response_model=PolicyRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_POLICIES_WRITE))],
)
def create_policy_from_preset(
    payload: PolicyFromPresetCreateRequest,
    claims: Claims,
    service: Service,
) -> PolicyRead:
    try:
        policy = service.create_policy_from_preset(claims["tenant_id"], payload.preset_key, payload.code)
        return PolicyRead.model_validate(policy)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.get(
    "/policies/{policy_id}",
    response_model=PolicyRead,
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def get_policy(policy_id: str, claims: Claims, service: Service) -> PolicyRead:
    _ensure_policy_scope(policy_id, claims, service)
    return PolicyRead.model_validate(service.get_policy(policy_id))


@router.patch(
    "/policies/{policy_id}",
    response_model=PolicyRead,
    dependencies=[Depends(require_perm(PERM_POLICIES_WRITE))],
)
def update_policy(policy_id: str, payload: PolicyUpdate, claims: Claims, service: Service) -> PolicyRead:
    _ensure_policy_scope(policy_id, claims, service)
    try:
        policy = service.update_policy(policy_id, payload)
        return PolicyRead.model_validate(policy)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.delete(
    "/policies/{policy_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_POLICIES_WRITE))],
)
def delete_policy(policy_id: str, claims: Claims, service: Service) -> Response:
    _ensure_policy_scope(policy_id, claims, service)
    try:
        service.delete_policy(policy_id)
    except IdentityError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/users/{user_id}/roles",
    response_model=AssignmentResult,
    dependencies=[Depends(require_perm(PERM_ROLES_ASSIGN))],
)
def assign_user_roles(
    user_id: str,
    payload: UserRoleAssignRequest,
    claims: Claims,
    assignments: Assignments,
) -> AssignmentResult:
    try:
        return assignments.assign_roles(user_id, claims["tenant_id"], payload.role_ids)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.get(
    "/users/{user_id}/roles",
    response_model=list[UserTenantRoleRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_user_roles(user_id: str, claims: Claims, service: Service) -> list[UserTenantRoleRead]:
    try:
        return service.list_user_roles(user_id, claims["tenant_id"])
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.delete(
    "/users/{user_id}/roles/{role_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ROLES_ASSIGN))],
)
def unassign_user_role(user_id: str, role_id: str, claims: Claims, assignments: Assignments) -> Response:
    try:
        removed = assignments.unassign_role(user_id, claims["tenant_id"], role_id)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise
    if not removed:
        raise _not_found("role assignment not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/users/{user_id}/permissions",
    response_model=AssignmentResult,
    dependencies=[Depends(require_perm(PERM_PERMISSIONS_ASSIGN))],
)
def assign_user_permissions(
    user_id: str,
    payload: UserPermissionAssignRequest,
    claims: Claims,
    assignments: Assignments,
) -> AssignmentResult:
    try:
        return assignments.assign_permissions(user_id, claims["tenant_id"], payload.permission_ids)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.get(
    "/users/{user_id}/permissions",
    response_model=list[UserTenantPermissionRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_user_permissions(user_id: str, claims: Claims, service: Service) -> list[UserTenantPermissionRead]:
    try:
        return service.list_user_permissions(user_id, claims["tenant_id"])
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise


@router.delete(
    "/users/{user_id}/permissions/{permission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_PERMISSIONS_ASSIGN))],
)
def revoke_user_permission(
    user_id: str,
    permission_id: str,
    claims: Claims,
    assignments: Assignments,
) -> Response:
    try:
        removed = assignments.revoke_permission(user_id, claims["tenant_id"], permission_id)
    except IdentityError as exc:
        _handle_identity_error(exc)
        raise
    if not removed:
        raise _not_found("permission assignment not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
