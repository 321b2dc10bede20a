from __future__ import annotations

PERM_IDENTITY_READ = ("read", "identity")
PERM_IDENTITY_WRITE = ("manage", "identity")
PERM_ROLES_ASSIGN = ("assign", "roles")
PERM_PERMISSIONS_ASSIGN = ("assign", "permissions")
PERM_POLICIES_WRITE = ("manage", "policies")

ADMIN_PERMISSIONS: list[tuple[str, str]] = [
    PERM_IDENTITY_READ,
    PERM_IDENTITY_WRITE,
    PERM_ROLES_ASSIGN,
    PERM_PERMISSIONS_ASSIGN,
    PERM_POLICIES_WRITE,
]

ADMIN_ROLE_CODE = "admin"


def permission_string(action: str, resource: str) -> str:
    return f"{action}:{resource}"
