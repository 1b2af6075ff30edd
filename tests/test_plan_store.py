"""Tests for plan validation and versioning."""

from __future__ import annotations

import pytest

from tabpilot.errors import ValidationError
from tabpilot.session.models import ActionType, Confidence, Plan, PlanStep, SessionState
from tabpilot.session.plan_store import PlanStore
from tests.utils import make_confidence, make_plan


@pytest.fixture
def state() -> SessionState:
    return SessionState(tab_id=7)


class TestPlanVersioning:
    """Versions and history."""

    def test_first_plan_is_version_one(self, state: SessionState) -> None:
        stored = PlanStore().set_plan(state, make_plan(), make_confidence(0.95))
        assert stored.version == 1
        assert state.current_plan == stored
        assert state.plan_history == []

    def test_versions_increase_and_history_grows(self, state: SessionState) -> None:
        """Test that history length is always version - 1."""
        plans = PlanStore()
        for expected in range(1, 6):
            stored = plans.set_plan(state, make_plan(summary=f"plan {expected}"), make_confidence(0.6))
            assert stored.version == expected
            assert len(state.plan_history) == expected - 1

    def test_previous_plan_moved_to_history_unchanged(self, state: SessionState) -> None:
        plans = PlanStore()
        first = plans.set_plan(state, make_plan(summary="first"), make_confidence(0.6))
        plans.set_plan(state, make_plan(summary="second"), make_confidence(0.95))

        assert PlanStore.history(state) == (first,)
        assert PlanStore.current_plan(state).summary == "second"

    def test_confidence_replaced(self, state: SessionState) -> None:
        plans = PlanStore()
        plans.set_plan(state, make_plan(), make_confidence(0.6))
        plans.set_plan(state, make_plan(), make_confidence(0.92))
        assert state.confidence.overall == 0.92

    def test_accepts_plain_dicts(self, state: SessionState) -> None:
        stored = PlanStore().set_plan(
            state,
            {"summary": "Search", "steps": [{"action": "type", "target_id": "q", "value": "shoes"}]},
            {"overall": 0.9},
        )
        assert stored.steps[0].step == 1
        assert stored.steps[0].value == "shoes"


class TestPlanValidation:
    """Rejected plans never touch the state."""

    def _assert_unchanged(self, state: SessionState, plan, confidence) -> None:
        plans = PlanStore()
        original = plans.set_plan(state, make_plan(summary="original"), make_confidence(0.6))
        with pytest.raises(ValidationError):
            plans.set_plan(state, plan, confidence)
        assert state.current_plan == original
        assert state.plan_history == []
        assert state.confidence == make_confidence(0.6)

    def test_too_many_steps(self, state: SessionState) -> None:
        self._assert_unchanged(state, make_plan(steps=6), make_confidence(0.95))

    def test_configurable_step_limit(self, state: SessionState) -> None:
        plans = PlanStore(max_steps=2)
        with pytest.raises(ValidationError, match="limit is 2"):
            plans.set_plan(state, make_plan(steps=3), make_confidence(0.95))

    def test_understood_plan_needs_steps(self, state: SessionState) -> None:
        self._assert_unchanged(state, make_plan(steps=0), make_confidence(0.95))

    def test_understood_plan_needs_summary(self, state: SessionState) -> None:
        self._assert_unchanged(state, make_plan(summary=None), make_confidence(0.95))

    def test_not_understood_needs_question(self, state: SessionState) -> None:
        plan = Plan(version=0, summary=None, understood=False)
        self._assert_unchanged(state, plan, make_confidence(0.2))

    def test_not_understood_with_question_accepted(self, state: SessionState) -> None:
        plan = Plan(version=0, summary=None, understood=False, clarifying_questions=("Which item?",))
        stored = PlanStore().set_plan(state, plan, make_confidence(0.2))
        assert stored.version == 1
        assert stored.steps == ()

    @pytest.mark.parametrize("action", [ActionType.CLICK, ActionType.TYPE, ActionType.SELECT, ActionType.HOVER])
    def test_targeted_action_needs_target(self, state: SessionState, action: ActionType) -> None:
        plan = Plan(version=0, summary="x", steps=(PlanStep(step=1, action=action, target_id=" "),))
        self._assert_unchanged(state, plan, make_confidence(0.95))

    @pytest.mark.parametrize("action", [ActionType.SCROLL, ActionType.NAVIGATE, ActionType.WAIT])
    def test_untargeted_actions_allowed(self, state: SessionState, action: ActionType) -> None:
        plan = Plan(version=0, summary="x", steps=(PlanStep(step=1, action=action),))
        assert PlanStore().set_plan(state, plan, make_confidence(0.95)).version == 1

    def test_non_contiguous_steps_rejected(self, state: SessionState) -> None:
        plan = Plan(
            version=0,
            summary="x",
            steps=(
                PlanStep(step=1, action=ActionType.CLICK, target_id="a"),
                PlanStep(step=3, action=ActionType.CLICK, target_id="b"),
            ),
        )
        self._assert_unchanged(state, plan, make_confidence(0.95))

    def test_invalid_confidence_rejected(self, state: SessionState) -> None:
        self._assert_unchanged(state, make_plan(), {"overall": 1.2})

    def test_unknown_action_rejected(self, state: SessionState) -> None:
        with pytest.raises(ValidationError):
            PlanStore().set_plan(state, {"summary": "x", "steps": [{"action": "teleport"}]}, {"overall": 0.9})
        assert state.current_plan is None

    def test_stored_plans_are_frozen(self, state: SessionState) -> None:
        stored = PlanStore().set_plan(state, make_plan(), Confidence(overall=0.95))
        with pytest.raises(AttributeError):
            stored.summary = "changed"  # type: ignore[misc]
