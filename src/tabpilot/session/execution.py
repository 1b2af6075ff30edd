"""Per-step progress ledger for an approved plan."""

from __future__ import annotations

from enum import Enum
from typing import Any

from tabpilot.errors import OrderingError, TransitionError
from tabpilot.session.models import CompletedStep, ExecutionState, FailedStep, Plan


class ExecutionPhase(Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class ExecutionTracker:
    """Drives an ExecutionState through not_started -> in_progress -> done.

    Steps are completed strictly in order, each exactly once. The tracker
    wraps (and mutates) the ExecutionState it is given, so the owning
    session snapshot always reflects its progress.
    """

    def __init__(self, state: ExecutionState | None = None) -> None:
        self._state = state

    @property
    def state(self) -> ExecutionState | None:
        return self._state

    @property
    def phase(self) -> ExecutionPhase:
        if self._state is None:
            return ExecutionPhase.NOT_STARTED
        if self.is_complete():
            return ExecutionPhase.DONE
        return ExecutionPhase.IN_PROGRESS

    def start(self, plan: Plan) -> ExecutionState:
        """Snapshot the plan's step count and reset progress to step 0."""
        if self._state is not None:
            raise TransitionError("start execution", self.phase.value)
        self._state = ExecutionState(
            current_step_index=0,
            total_steps=len(plan.steps),
            plan_version=plan.version,
        )
        return self._state

    def _require_started(self, operation: str) -> ExecutionState:
        if self._state is None:
            raise TransitionError(operation, ExecutionPhase.NOT_STARTED.value)
        if self.is_complete():
            raise TransitionError(operation, ExecutionPhase.DONE.value)
        return self._state

    def complete_step(self, index: int, result: Any = None) -> CompletedStep:
        """Record step `index` as done and advance.

        Raises:
            OrderingError: `index` is not the current step; nothing is recorded.
        """
        state = self._require_started("complete a step")
        if index != state.current_step_index:
            raise OrderingError(state.current_step_index, index)

        entry = CompletedStep(step_index=index, result=result)
        state.completed_steps.append(entry)
        state.current_step_index += 1
        return entry

    def record_failure(self, index: int, error: str) -> FailedStep:
        """Record a failed attempt at the current step without advancing."""
        state = self._require_started("record a step failure")
        if index != state.current_step_index:
            raise OrderingError(state.current_step_index, index)

        entry = FailedStep(step_index=index, error=error)
        state.failed_steps.append(entry)
        return entry

    def is_complete(self) -> bool:
        return (
            self._state is not None
            and self._state.current_step_index == self._state.total_steps
        )
