from __future__ import annotations

import os

from identity_core.domain.models import Permission, Policy, PolicyEffect, RolePermissionPolicy
from identity_core.stores.graph import IdentityGraphStore, RoleGrant

UNRESOLVED_POLICY_EFFECT = PolicyEffect(os.getenv("UNRESOLVED_POLICY_EFFECT", PolicyEffect.ALLOW.value).upper())


class PolicyResolver:
    """Computes the effective policy of a role-permission grant.

    An explicit ``policy_id`` always wins. Without one, a grant that inherits
    takes the permission's default policy; a grant that does not inherit is
    policy-less. Resolution order is fixed and must not change.
    """

    def __init__(self, graph: IdentityGraphStore, unresolved_effect: PolicyEffect | None = None) -> None:
        self.graph = graph
        self.unresolved_effect = unresolved_effect or UNRESOLVED_POLICY_EFFECT

    def resolve(
        self,
        fact: RolePermissionPolicy,
        *,
        permission: Permission | None = None,
    ) -> Policy | None:
        if fact.policy_id is not None:
            return self.graph.get_policy(fact.policy_id)
        if not fact.inherit_default_policy:
            return None
        if permission is None:
            permission = self.graph.get_permission(fact.permission_id)
        if permission is None or permission.policy_id is None:
            return None
        return self.graph.get_policy(permission.policy_id)

    def resolve_grant(self, grant: RoleGrant) -> Policy | None:
        # same rule as resolve(), over an eagerly loaded grant
        if grant.fact.policy_id is not None:
            return grant.policy
        if grant.fact.inherit_default_policy:
            return grant.default_policy
        return None

    def effective_effect(self, policy: Policy | None) -> PolicyEffect:
        if policy is None:
            return self.unresolved_effect
        return PolicyEffect(policy.effect)

    def grant_effect(self, fact: RolePermissionPolicy, policy: Policy | None) -> PolicyEffect:
        """Effect of a grant once its policy is resolved.

        A grant that neither names a policy nor inherits one is an
        unconditional ALLOW; only an inheriting grant whose permission has no
        default falls back to the configured unresolved effect.
        """
        if policy is not None:
            return PolicyEffect(policy.effect)
        if fact.policy_id is None and not fact.inherit_default_policy:
            return PolicyEffect.ALLOW
        return self.unresolved_effect
