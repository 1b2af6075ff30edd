"""Confidence routing.

Maps a confidence record to exactly one zone:

    overall <  ask_below             -> ask
    ask_below <= overall < proceed_at -> assume_announce
    overall >= proceed_at            -> proceed

Lower bounds are inclusive. Out-of-range input raises ValidationError.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from tabpilot.errors import ValidationError
from tabpilot.session.models import Confidence, ConfidenceZone

DEFAULT_ASK_BELOW = 0.5
DEFAULT_PROCEED_AT = 0.9


def evaluate_confidence(
    confidence: Confidence | Mapping[str, Any],
    *,
    ask_below: float = DEFAULT_ASK_BELOW,
    proceed_at: float = DEFAULT_PROCEED_AT,
) -> ConfidenceZone:
    """Return the routing zone for a confidence record."""
    if not 0.0 <= ask_below <= proceed_at <= 1.0:
        raise ValidationError(
            f"Invalid thresholds: ask_below={ask_below}, proceed_at={proceed_at}"
        )
    if not isinstance(confidence, Confidence):
        confidence = Confidence.from_dict(dict(confidence))

    if confidence.overall >= proceed_at:
        return ConfidenceZone.PROCEED
    if confidence.overall >= ask_below:
        return ConfidenceZone.ASSUME_ANNOUNCE
    return ConfidenceZone.ASK


def should_ask(confidence: Confidence, **thresholds: float) -> bool:
    return evaluate_confidence(confidence, **thresholds) is ConfidenceZone.ASK


def should_assume_announce(confidence: Confidence, **thresholds: float) -> bool:
    return evaluate_confidence(confidence, **thresholds) is ConfidenceZone.ASSUME_ANNOUNCE


def should_proceed(confidence: Confidence, **thresholds: float) -> bool:
    return evaluate_confidence(confidence, **thresholds) is ConfidenceZone.PROCEED
