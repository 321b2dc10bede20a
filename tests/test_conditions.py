from __future__ import annotations

from identity_core.domain.conditions import AttributeEqualityMatcher, OpenConditionMatcher
from identity_core.domain.presets import POLICY_PRESETS, find_preset


def test_attribute_equality_matcher() -> None:
    matcher = AttributeEqualityMatcher()

    assert matcher.matches(None, {})
    assert matcher.matches({}, {"department": "ops"})
    assert matcher.matches({"department": "ops", "mfa": True}, {"department": "ops", "mfa": True, "ip": "10.0.0.1"})
    assert not matcher.matches({"department": "ops"}, {})
    assert not matcher.matches({"department": "ops"}, {"department": "finance"})
    assert matcher.matches({"department": ["ops", "security"]}, {"department": "security"})
    assert not matcher.matches({"department": ["ops", "security"]}, {"department": "finance"})


def test_open_matcher_accepts_everything() -> None:
    assert OpenConditionMatcher().matches({"department": "ops"}, {})


def test_presets_are_unique_and_complete() -> None:
    keys = [item["key"] for item in POLICY_PRESETS]
    assert len(keys) == len(set(keys))
    for item in POLICY_PRESETS:
        assert item["actions"]
        assert item["resources"]
    assert find_preset("security-access")["resources"][0] == "members"  # type: ignore[index]
    assert find_preset("missing") is None
