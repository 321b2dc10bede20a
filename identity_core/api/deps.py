from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any

from fastapi import Depends, Header, HTTPException, Request, status

from identity_core.domain.errors import StoreUnavailable
from identity_core.domain.permissions import permission_string
from identity_core.services.authorization_service import AuthorizationService


def get_authorization_service() -> AuthorizationService:
    return AuthorizationService()


def get_current_claims(
    request: Request,
    x_user_id: Annotated[str | None, Header()] = None,
    x_tenant_id: Annotated[str | None, Header()] = None,
) -> dict[str, Any]:
    """Acting identity as forwarded by the trusted gateway."""
    if not x_user_id or not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing identity headers",
        )
    claims = {"sub": x_user_id, "tenant_id": x_tenant_id}
    request.state.claims = claims
    return claims


def require_perm(permission: tuple[str, str]) -> Callable[..., dict[str, Any]]:
    action, resource = permission

    def _checker(
        claims: Annotated[dict[str, Any], Depends(get_current_claims)],
        authorization: Annotated[AuthorizationService, Depends(get_authorization_service)],
    ) -> dict[str, Any]:
        try:
            allowed = authorization.user_has_permission(claims["sub"], claims["tenant_id"], action, resource)
        except StoreUnavailable as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message) from exc
        if not allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission_string(action, resource)}",
            )
        return claims

    return _checker
