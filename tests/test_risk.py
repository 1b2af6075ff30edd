"""Tests for action risk classification and the confirmation policy."""

from __future__ import annotations

import pytest

from tabpilot.guards.risk import (
    ActionDescriptor,
    ConfirmationReason,
    KeywordRiskClassifier,
    RiskClassifier,
    RiskLevel,
    describe_reason,
    format_action,
)
from tabpilot.session.models import ActionType, PlanStep
from tabpilot.storage.permissions import PermissionMode, SitePermission


@pytest.fixture
def classifier() -> KeywordRiskClassifier:
    return KeywordRiskClassifier()


def autonomous(*allowed: str, denied: tuple[str, ...] = ()) -> SitePermission:
    return SitePermission(
        mode=PermissionMode.AUTONOMOUS,
        allowed_actions=list(allowed),
        denied_actions=list(denied),
    )


class TestClassify:
    """Risk levels from vocabulary."""

    @pytest.mark.parametrize("text", ["Buy now", "Proceed to Checkout", "Pay $20", "Transfer funds", "Purchase"])
    def test_financial_is_critical(self, classifier: KeywordRiskClassifier, text: str) -> None:
        assert classifier.classify({"action": "click", "text": text}).level is RiskLevel.CRITICAL

    @pytest.mark.parametrize("text", ["Delete account", "Remove item", "Change password", "Publish post", "Send message"])
    def test_data_modification_is_high(self, classifier: KeywordRiskClassifier, text: str) -> None:
        assert classifier.classify({"action": "click", "text": text}).level is RiskLevel.HIGH

    @pytest.mark.parametrize("text", ["Submit form", "Share", "Logout"])
    def test_state_change_is_medium(self, classifier: KeywordRiskClassifier, text: str) -> None:
        assert classifier.classify({"action": "click", "text": text}).level is RiskLevel.MEDIUM

    def test_plain_navigation_is_low(self, classifier: KeywordRiskClassifier) -> None:
        assert classifier.classify({"action": "click", "text": "Next page"}).level is RiskLevel.LOW

    def test_words_inside_other_words_do_not_match(self, classifier: KeywordRiskClassifier) -> None:
        """Test that "pay" does not fire inside "copay"."""
        assert classifier.classify({"action": "click", "text": "Copay details"}).level is RiskLevel.LOW

    def test_financial_beats_modification(self, classifier: KeywordRiskClassifier) -> None:
        result = classifier.classify({"action": "click", "text": "Delete and pay"})
        assert result.level is RiskLevel.CRITICAL
        assert result.matched == "pay"

    def test_plan_step_uses_target_description(self, classifier: KeywordRiskClassifier) -> None:
        step = PlanStep(step=1, action=ActionType.CLICK, target_id="b1", target_description="Place order and pay")
        assert classifier.classify(step).level is RiskLevel.CRITICAL

    def test_custom_vocabulary(self) -> None:
        classifier = KeywordRiskClassifier(financial_terms=("donate",))
        assert classifier.classify({"action": "click", "text": "Donate"}).level is RiskLevel.CRITICAL
        assert classifier.classify({"action": "click", "text": "Buy"}).level is RiskLevel.LOW

    def test_satisfies_protocol(self, classifier: KeywordRiskClassifier) -> None:
        assert isinstance(classifier, RiskClassifier)


class TestRequiresConfirmation:
    """The fixed decision order."""

    def test_high_risk_beats_autonomous_permission(self, classifier: KeywordRiskClassifier) -> None:
        """Test that dangerous actions need confirmation even on trusted sites."""
        decision = classifier.requires_confirmation(
            {"action": "click", "text": "Delete account"}, autonomous("click")
        )
        assert decision.required is True
        assert decision.reason is ConfirmationReason.HIGH_RISK_ACTION
        assert decision.risk_level is RiskLevel.HIGH

    def test_financial_is_critical_high_risk(self, classifier: KeywordRiskClassifier) -> None:
        decision = classifier.requires_confirmation({"action": "click", "text": "Checkout"}, None)
        assert decision.reason is ConfirmationReason.HIGH_RISK_ACTION
        assert decision.risk_level is RiskLevel.CRITICAL

    @pytest.mark.parametrize("value", ["my password is hunter2", "123-45-6789", "4111 1111 1111 1111", "CVV 123"])
    def test_sensitive_value_requires_confirmation(self, classifier: KeywordRiskClassifier, value: str) -> None:
        decision = classifier.requires_confirmation(
            {"action": "type", "text": "Notes", "value": value}, autonomous("type")
        )
        assert decision.required is True
        assert decision.reason is ConfirmationReason.SENSITIVE_DATA

    def test_no_permission_record(self, classifier: KeywordRiskClassifier) -> None:
        decision = classifier.requires_confirmation({"action": "click", "text": "Next"}, None)
        assert decision.required is True
        assert decision.reason is ConfirmationReason.NO_SITE_PERMISSION

    def test_ask_mode(self, classifier: KeywordRiskClassifier) -> None:
        decision = classifier.requires_confirmation({"action": "click", "text": "Next"}, SitePermission())
        assert decision.required is True
        assert decision.reason is ConfirmationReason.USER_PREFERENCE

    def test_action_not_in_allow_list(self, classifier: KeywordRiskClassifier) -> None:
        decision = classifier.requires_confirmation({"action": "select", "text": "Size"}, autonomous("click"))
        assert decision.required is True
        assert decision.reason is ConfirmationReason.ACTION_NOT_ALLOWED

    def test_denied_action(self, classifier: KeywordRiskClassifier) -> None:
        decision = classifier.requires_confirmation(
            {"action": "click", "text": "Next"}, autonomous("click", denied=("click",))
        )
        assert decision.reason is ConfirmationReason.ACTION_NOT_ALLOWED

    def test_autonomous_allowed_action(self, classifier: KeywordRiskClassifier) -> None:
        decision = classifier.requires_confirmation({"action": "click", "text": "Next"}, autonomous("click"))
        assert decision.required is False
        assert decision.reason is ConfirmationReason.AUTONOMOUS_MODE

    def test_medium_risk_passes_on_autonomous_site(self, classifier: KeywordRiskClassifier) -> None:
        decision = classifier.requires_confirmation({"action": "click", "text": "Submit"}, autonomous("click"))
        assert decision.required is False
        assert decision.risk_level is RiskLevel.MEDIUM

    def test_accepts_camel_case_mapping(self, classifier: KeywordRiskClassifier) -> None:
        descriptor = ActionDescriptor.from_mapping({"action": "click", "targetId": "b2", "text": "Go"})
        assert descriptor.target_id == "b2"

    def test_decision_to_dict(self, classifier: KeywordRiskClassifier) -> None:
        data = classifier.requires_confirmation({"action": "click", "text": "Next"}, None).to_dict()
        assert data["reason"] == "no-site-permission"
        assert data["required"] is True


class TestDescriptions:
    def test_describe_reason(self, classifier: KeywordRiskClassifier) -> None:
        decision = classifier.requires_confirmation({"action": "click", "text": "Next"}, None)
        assert "first time" in describe_reason(decision)

    def test_format_click(self) -> None:
        assert format_action({"action": "click", "text": "Login"}) == 'Click on "Login"'

    def test_format_type(self) -> None:
        step = PlanStep(step=1, action=ActionType.TYPE, target_id="q", value="shoes", target_description="search box")
        assert format_action(step) == 'Type "shoes" into search box'

    def test_format_scroll(self) -> None:
        step = PlanStep(step=1, action=ActionType.SCROLL, amount=-300)
        assert format_action(step) == "Scroll up by 300px"

    def test_format_fallback(self) -> None:
        assert format_action({"action": "wait"}) == "wait on page"
