"""Tests for confidence routing."""

from __future__ import annotations

import pytest

from tabpilot.errors import ValidationError
from tabpilot.session.confidence import (
    evaluate_confidence,
    should_ask,
    should_assume_announce,
    should_proceed,
)
from tabpilot.session.models import Confidence, ConfidenceZone


class TestEvaluateConfidence:
    """Zone boundaries."""

    @pytest.mark.parametrize("overall", [0.0, 0.1, 0.3, 0.49, 0.4999])
    def test_below_half_asks(self, overall: float) -> None:
        """Test that overall below 0.5 routes to ask."""
        assert evaluate_confidence(Confidence(overall=overall)) is ConfidenceZone.ASK

    @pytest.mark.parametrize("overall", [0.5, 0.6, 0.75, 0.89, 0.8999])
    def test_middle_band_assumes_and_announces(self, overall: float) -> None:
        """Test that [0.5, 0.9) routes to assume_announce."""
        assert evaluate_confidence(Confidence(overall=overall)) is ConfidenceZone.ASSUME_ANNOUNCE

    @pytest.mark.parametrize("overall", [0.9, 0.95, 1.0])
    def test_high_confidence_proceeds(self, overall: float) -> None:
        """Test that 0.9 and above (0.9 inclusive) routes to proceed."""
        assert evaluate_confidence(Confidence(overall=overall)) is ConfidenceZone.PROCEED

    def test_accepts_mapping(self) -> None:
        """Test that a plain dict is validated and routed."""
        assert evaluate_confidence({"overall": 0.92}) is ConfidenceZone.PROCEED

    @pytest.mark.parametrize("overall", [-0.01, 1.01, 2, float("nan")])
    def test_out_of_range_rejected(self, overall: float) -> None:
        """Test that values outside [0, 1] raise instead of clamping."""
        with pytest.raises(ValidationError):
            evaluate_confidence({"overall": overall})

    def test_out_of_range_sub_field_rejected(self) -> None:
        """Test that every confidence field is range-checked."""
        with pytest.raises(ValidationError):
            Confidence(overall=0.9, target_match=1.5)

    def test_missing_overall_rejected(self) -> None:
        with pytest.raises(ValidationError):
            evaluate_confidence({"intent_clarity": 0.9})

    def test_boolean_is_not_a_number(self) -> None:
        with pytest.raises(ValidationError):
            Confidence(overall=True)

    def test_custom_thresholds(self) -> None:
        """Test that configured thresholds move the band edges."""
        conf = Confidence(overall=0.7)
        assert evaluate_confidence(conf, ask_below=0.8, proceed_at=0.95) is ConfidenceZone.ASK
        assert evaluate_confidence(conf, ask_below=0.3, proceed_at=0.7) is ConfidenceZone.PROCEED

    def test_invalid_thresholds_rejected(self) -> None:
        with pytest.raises(ValidationError):
            evaluate_confidence(Confidence(overall=0.5), ask_below=0.9, proceed_at=0.5)


class TestZonePredicates:
    def test_predicates_are_exclusive(self) -> None:
        """Test that exactly one predicate holds for any valid record."""
        for value in (0.0, 0.25, 0.5, 0.7, 0.9, 1.0):
            conf = Confidence(overall=value)
            results = [should_ask(conf), should_assume_announce(conf), should_proceed(conf)]
            assert results.count(True) == 1
