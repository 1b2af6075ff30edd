"""Action risk classification and confirmation policy.

The decision order is fixed and first match wins:

1. financial vocabulary in the action type or target text -> critical
2. data-modification vocabulary                          -> high
3. sensitive data in the value payload                   -> sensitive-data
4. no stored permission for the domain                   -> no-site-permission
5. stored mode is "ask"                                  -> user-preference
6. action type not allowed (or denied) on the domain     -> action-not-allowed
7. otherwise                                             -> autonomous-mode

Checks 1-3 never consult the permission record, so an autonomous site
cannot waive confirmation for a dangerous action.

Matching is keyword/regex based and therefore heuristic; anything that
satisfies the RiskClassifier protocol can replace KeywordRiskClassifier.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, Union, runtime_checkable

from tabpilot.session.models import PlanStep
from tabpilot.storage.permissions import PermissionMode, SitePermission

FINANCIAL_TERMS = ("purchase", "buy", "pay", "checkout", "transfer")
DATA_MODIFICATION_TERMS = ("delete", "remove", "password", "publish", "send")
STATE_CHANGE_TERMS = ("submit", "post", "share", "logout")
SENSITIVE_TERMS = (
    "password",
    "credit card",
    "card number",
    "ssn",
    "social security",
    "bank account",
    "routing number",
    "pin",
    "cvv",
    "secret",
    "private key",
)
SENSITIVE_PATTERNS = (
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),  # SSN
    re.compile(r"\b(?:\d[ -]?){12,18}\d\b"),  # card number
)


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConfirmationReason(Enum):
    HIGH_RISK_ACTION = "high-risk-action"
    SENSITIVE_DATA = "sensitive-data"
    NO_SITE_PERMISSION = "no-site-permission"
    USER_PREFERENCE = "user-preference"
    ACTION_NOT_ALLOWED = "action-not-allowed"
    AUTONOMOUS_MODE = "autonomous-mode"


_REASON_TEXT = {
    ConfirmationReason.HIGH_RISK_ACTION: (
        "This is a high-risk action that could have significant consequences."
    ),
    ConfirmationReason.SENSITIVE_DATA: "This action involves sensitive personal information.",
    ConfirmationReason.NO_SITE_PERMISSION: "This is your first time automating on this website.",
    ConfirmationReason.USER_PREFERENCE: "You have chosen to confirm all actions on this site.",
    ConfirmationReason.ACTION_NOT_ALLOWED: (
        "This action type has not been pre-approved for this site."
    ),
}


@dataclass(frozen=True, slots=True)
class ActionDescriptor:
    """What the classifier looks at: action type, target text and value."""

    action: str
    text: str = ""
    value: str = ""
    target_id: str | None = None

    @classmethod
    def from_step(cls, step: PlanStep, text: str | None = None) -> ActionDescriptor:
        return cls(
            action=step.action.value,
            text=text if text is not None else (step.target_description or ""),
            value=step.value or "",
            target_id=step.target_id,
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ActionDescriptor:
        target_id = data.get("target_id", data.get("targetId"))
        return cls(
            action=str(data.get("action") or ""),
            text=str(data.get("text") or data.get("target_description") or ""),
            value="" if data.get("value") is None else str(data["value"]),
            target_id=target_id,
        )


ActionLike = Union[ActionDescriptor, PlanStep, Mapping[str, Any]]


def as_descriptor(action: ActionLike) -> ActionDescriptor:
    if isinstance(action, ActionDescriptor):
        return action
    if isinstance(action, PlanStep):
        return ActionDescriptor.from_step(action)
    return ActionDescriptor.from_mapping(action)


@dataclass(frozen=True, slots=True)
class RiskAssessment:
    level: RiskLevel
    matched: str | None = None  # Vocabulary term that triggered the level


@dataclass(frozen=True, slots=True)
class ConfirmationDecision:
    required: bool
    reason: ConfirmationReason
    risk_level: RiskLevel
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "required": self.required,
            "reason": self.reason.value,
            "risk_level": self.risk_level.value,
            "description": self.description,
        }


@runtime_checkable
class RiskClassifier(Protocol):
    def classify(self, action: ActionLike) -> RiskAssessment: ...

    def requires_confirmation(
        self, action: ActionLike, permission: SitePermission | None
    ) -> ConfirmationDecision: ...


def _word_start_pattern(terms: Iterable[str]) -> re.Pattern[str]:
    # Word-start match so "pay" hits "payment" but not "copay"
    return re.compile(r"\b(" + "|".join(re.escape(t) for t in terms) + ")", re.IGNORECASE)


def _whole_word_pattern(terms: Iterable[str]) -> re.Pattern[str]:
    return re.compile(r"\b(" + "|".join(re.escape(t) for t in terms) + r")\b", re.IGNORECASE)


class KeywordRiskClassifier:
    """Vocabulary-driven classifier with the fixed decision order above."""

    def __init__(
        self,
        *,
        financial_terms: Iterable[str] = FINANCIAL_TERMS,
        modification_terms: Iterable[str] = DATA_MODIFICATION_TERMS,
        state_change_terms: Iterable[str] = STATE_CHANGE_TERMS,
        sensitive_terms: Iterable[str] = SENSITIVE_TERMS,
        sensitive_patterns: Iterable[re.Pattern[str]] = SENSITIVE_PATTERNS,
    ) -> None:
        self._tiers = (
            (RiskLevel.CRITICAL, _word_start_pattern(financial_terms)),
            (RiskLevel.HIGH, _word_start_pattern(modification_terms)),
            (RiskLevel.MEDIUM, _word_start_pattern(state_change_terms)),
        )
        self._sensitive_terms = _whole_word_pattern(sensitive_terms)
        self._sensitive_patterns = tuple(sensitive_patterns)

    def classify(self, action: ActionLike) -> RiskAssessment:
        descriptor = as_descriptor(action)
        haystack = f"{descriptor.action} {descriptor.text}"
        for level, pattern in self._tiers:
            match = pattern.search(haystack)
            if match:
                return RiskAssessment(level=level, matched=match.group(1).lower())
        return RiskAssessment(level=RiskLevel.LOW)

    def find_sensitive_data(self, value: str) -> str | None:
        """Return the sensitive keyword or pattern found in `value`, if any."""
        if not value:
            return None
        match = self._sensitive_terms.search(value)
        if match:
            return match.group(1).lower()
        for pattern in self._sensitive_patterns:
            if pattern.search(value):
                return "sensitive number"
        return None

    def requires_confirmation(
        self, action: ActionLike, permission: SitePermission | None
    ) -> ConfirmationDecision:
        descriptor = as_descriptor(action)
        risk = self.classify(descriptor)

        if risk.level in (RiskLevel.CRITICAL, RiskLevel.HIGH):
            return ConfirmationDecision(
                required=True,
                reason=ConfirmationReason.HIGH_RISK_ACTION,
                risk_level=risk.level,
                description=f'This action involves "{risk.matched}" which requires confirmation',
            )

        sensitive = self.find_sensitive_data(descriptor.value)
        if sensitive:
            return ConfirmationDecision(
                required=True,
                reason=ConfirmationReason.SENSITIVE_DATA,
                risk_level=RiskLevel.HIGH,
                description=f"This action involves sensitive data ({sensitive})",
            )

        if permission is None:
            return ConfirmationDecision(
                required=True,
                reason=ConfirmationReason.NO_SITE_PERMISSION,
                risk_level=RiskLevel.MEDIUM,
                description="First-time automation on this site",
            )

        if permission.mode is PermissionMode.ASK:
            return ConfirmationDecision(
                required=True,
                reason=ConfirmationReason.USER_PREFERENCE,
                risk_level=risk.level,
                description="User prefers to confirm actions on this site",
            )

        if (
            descriptor.action not in permission.allowed_actions
            or descriptor.action in permission.denied_actions
        ):
            return ConfirmationDecision(
                required=True,
                reason=ConfirmationReason.ACTION_NOT_ALLOWED,
                risk_level=RiskLevel.MEDIUM,
                description=f'Action "{descriptor.action}" not in allowed list for this site',
            )

        return ConfirmationDecision(
            required=False,
            reason=ConfirmationReason.AUTONOMOUS_MODE,
            risk_level=risk.level,
        )


def describe_reason(decision: ConfirmationDecision) -> str:
    """Human-readable explanation of why confirmation is needed."""
    return _REASON_TEXT.get(decision.reason, "Confirmation required for safety.")


def format_action(action: ActionLike) -> str:
    """One-line description of an action for a confirmation prompt."""
    if isinstance(action, PlanStep):
        label = action.target_description or action.target_id or "page"
        kind, value, amount = action.action.value, action.value, action.amount
    else:
        descriptor = as_descriptor(action)
        label = descriptor.text or descriptor.target_id or "page"
        kind, value = descriptor.action, descriptor.value
        amount = action.get("amount") if isinstance(action, Mapping) else None

    if kind == "click":
        return f'Click on "{label}"'
    if kind == "type":
        return f'Type "{value}" into {label}'
    if kind == "select":
        return f'Select "{value}" from {label}'
    if kind == "scroll" and amount:
        direction = "down" if amount > 0 else "up"
        return f"Scroll {direction} by {abs(amount)}px"
    return f"{kind} on {label}"
