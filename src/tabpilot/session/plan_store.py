"""Versioned plan container.

The PlanStore owns the rules for accepting a plan into a SessionState:
every check runs before anything is written, so a rejected plan leaves the
current plan, the history and the confidence exactly as they were.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Mapping
from typing import Any

from tabpilot.errors import ValidationError
from tabpilot.logging import get_logger
from tabpilot.session.models import Confidence, Plan, SessionState

log = get_logger("plans")

DEFAULT_MAX_STEPS = 5


class PlanStore:
    """Validates and versions plans for a session.

    Attributes:
        max_steps: Upper bound on steps in one plan.
    """

    def __init__(self, max_steps: int = DEFAULT_MAX_STEPS) -> None:
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self.max_steps = max_steps

    def validate(self, plan: Plan) -> None:
        """Raise ValidationError if the plan cannot be accepted."""
        if len(plan.steps) > self.max_steps:
            raise ValidationError(
                f"Plan has {len(plan.steps)} steps, limit is {self.max_steps}"
            )

        if plan.understood:
            if not plan.steps:
                raise ValidationError("An understood plan needs at least one step")
            if not plan.summary:
                raise ValidationError("An understood plan needs a summary")
        elif not plan.clarifying_questions:
            raise ValidationError("A plan that is not understood needs a clarifying question")

        for position, step in enumerate(plan.steps, start=1):
            if step.step != position:
                raise ValidationError(
                    f"Step at position {position} is numbered {step.step}"
                )
            if step.action.requires_target and not (step.target_id or "").strip():
                raise ValidationError(
                    f"Step {step.step} ({step.action.value}) requires a target_id"
                )

    def set_plan(
        self,
        state: SessionState,
        plan: Plan | Mapping[str, Any],
        confidence: Confidence | Mapping[str, Any],
    ) -> Plan:
        """Accept a plan as the session's current plan.

        Assigns the next version, moves the previous plan to the end of the
        history unchanged and replaces the confidence.

        Returns:
            The stored (versioned) plan.

        Raises:
            ValidationError: Nothing in `state` is modified.
        """
        if not isinstance(plan, Plan):
            plan = Plan.from_dict(dict(plan))
        if not isinstance(confidence, Confidence):
            confidence = Confidence.from_dict(dict(confidence))
        self.validate(plan)

        previous = state.current_plan
        version = previous.version + 1 if previous else len(state.plan_history) + 1
        stored = dataclasses.replace(plan, version=version, created_at=time.time())

        if previous is not None:
            state.plan_history.append(previous)
        state.current_plan = stored
        state.confidence = confidence

        log.debug(
            "plan v%d accepted (%d steps, overall=%.2f)",
            version,
            len(stored.steps),
            confidence.overall,
            extra={"tab_id": state.tab_id},
        )
        return stored

    @staticmethod
    def current_plan(state: SessionState) -> Plan | None:
        return state.current_plan

    @staticmethod
    def history(state: SessionState) -> tuple[Plan, ...]:
        """Superseded plans, oldest first."""
        return tuple(state.plan_history)
