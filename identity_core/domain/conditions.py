from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol


class ConditionMatcher(Protocol):
    def matches(self, conditions: Mapping[str, Any] | None, context: Mapping[str, Any]) -> bool: ...


class OpenConditionMatcher:
    def matches(self, conditions: Mapping[str, Any] | None, context: Mapping[str, Any]) -> bool:
        return True


class AttributeEqualityMatcher:
    """Every condition key must be present in the context with an equal value.

    A list value in the conditions means "context value is one of these".
    Empty or missing conditions always match.
    """

    def matches(self, conditions: Mapping[str, Any] | None, context: Mapping[str, Any]) -> bool:
        if not conditions:
            return True
        for key, expected in conditions.items():
            if key not in context:
                return False
            actual = context[key]
            if isinstance(expected, list):
                if actual not in expected:
                    return False
                continue
            if actual != expected:
                return False
        return True
