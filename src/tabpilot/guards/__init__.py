"""Pluggable safety classifiers: action risk and page-content injection."""

from tabpilot.guards.injection import InjectionDetector, InjectionReport
from tabpilot.guards.risk import (
    ActionDescriptor,
    ConfirmationDecision,
    ConfirmationReason,
    KeywordRiskClassifier,
    RiskAssessment,
    RiskClassifier,
    RiskLevel,
    describe_reason,
    format_action,
)

__all__ = [
    "ActionDescriptor",
    "ConfirmationDecision",
    "ConfirmationReason",
    "InjectionDetector",
    "InjectionReport",
    "KeywordRiskClassifier",
    "RiskAssessment",
    "RiskClassifier",
    "RiskLevel",
    "describe_reason",
    "format_action",
]
