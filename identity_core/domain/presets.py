from __future__ import annotations

from typing import Any

from identity_core.domain.models import PolicyEffect

POLICY_PRESETS: tuple[dict[str, Any], ...] = (
    {
        "key": "admin-full-access",
        "name": "Admin Full Access",
        "description": "full control over critical operations, settings and user management",
        "effect": PolicyEffect.ALLOW,
        "actions": ["create", "read", "update", "delete", "manage"],
        "resources": ["users", "members", "payments", "reports", "settings", "permissions"],
        "conditions": {"mfa_required": True, "device_posture": "managed"},
    },
    {
        "key": "management-access",
        "name": "Management Access",
        "description": "executive management without access to critical settings",
        "effect": PolicyEffect.ALLOW,
        "actions": ["create", "read", "update", "delete"],
        "resources": ["members", "payments", "reports", "users"],
        "conditions": {"mfa_required": True, "risk_level": "medium"},
    },
    {
        "key": "financial-access",
        "name": "Financial Access",
        "description": "financial processing, plans and sensitive reports",
        "effect": PolicyEffect.ALLOW,
        "actions": ["read", "create", "update"],
        "resources": ["payments", "invoices", "financial_reports", "members"],
        "conditions": {"requires_dual_approval": True},
    },
    {
        "key": "operations-access",
        "name": "Operations Access",
        "description": "back office for registrations and administrative support",
        "effect": PolicyEffect.ALLOW,
        "actions": ["read", "update", "create"],
        "resources": ["members", "equipment", "payments"],
        "conditions": {"department": "operations"},
    },
    {
        "key": "reception-access",
        "name": "Reception Access",
        "description": "front desk registrations, schedules and basic reports",
        "effect": PolicyEffect.ALLOW,
        "actions": ["read", "create"],
        "resources": ["members", "schedules", "basic_reports"],
        "conditions": {"department": "frontdesk"},
    },
    {
        "key": "security-access",
        "name": "Security Access",
        "description": "physical access control, surveillance and logs",
        "effect": PolicyEffect.ALLOW,
        "actions": ["read"],
        "resources": ["members", "equipment", "access_logs", "facilities"],
        "conditions": {"department": "security"},
    },
    {
        "key": "read-only-access",
        "name": "Read Only Access",
        "description": "deny every write on the covered resources",
        "effect": PolicyEffect.DENY,
        "actions": ["create", "update", "delete", "manage"],
        "resources": ["users", "members", "payments", "settings", "permissions"],
        "conditions": {},
    },
)


def find_preset(key: str) -> dict[str, Any] | None:
    return next((item for item in POLICY_PRESETS if item["key"] == key), None)
