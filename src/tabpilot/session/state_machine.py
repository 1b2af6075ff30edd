"""Per-tab dialogue state machine.

States and edges (initial idle, terminal completed/failed):

    idle                   --submit_task-->          planning
    planning               --plan (questions/ask)--> awaiting_clarification
    planning               --plan (proceed)-->       awaiting_approval
    planning               --plan (assume)-->        refining      (iteration += 1)
    refining               --plan (proceed)-->       awaiting_approval
    refining               --plan (at bound)-->      awaiting_approval (IterationLimitReached)
    refining               --plan (questions)-->     awaiting_clarification
    refining               --plan (otherwise)-->     planning -> refining (iteration += 1)
    awaiting_clarification --answer-->               planning
    awaiting_approval      --approve-->              executing (completed for 0 steps)
    awaiting_approval      --reject-->               idle
    executing              --last step done-->       completed
    executing              --step failed-->          failed
    any                    --stop-->                 idle

Every mutation works on a copy of the state, checkpoints the copy to the
SessionStore and only then replaces the live state. A failed checkpoint
leaves the machine at its last-known-good state and raises ExternalFailure.
Mutations on one machine are serialized with an asyncio.Lock.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from tabpilot.audit import AuditLog
from tabpilot.config.schema import DialogueConfig
from tabpilot.errors import ExternalFailure, IterationLimitReached, TransitionError, ValidationError
from tabpilot.logging import get_tab_logger
from tabpilot.session.confidence import evaluate_confidence
from tabpilot.session.execution import ExecutionTracker
from tabpilot.session.models import (
    Confidence,
    ConfidenceZone,
    DialogueState,
    MessageType,
    Plan,
    SessionState,
    SessionStatus,
    Turn,
)
from tabpilot.session.plan_store import PlanStore
from tabpilot.storage.sessions import SessionStore

DEFAULT_CLARIFYING_QUESTION = "Could you provide more details about what you want to do?"

S = SessionStatus

ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    S.IDLE: frozenset({S.PLANNING}),
    S.PLANNING: frozenset({S.REFINING, S.AWAITING_CLARIFICATION, S.AWAITING_APPROVAL}),
    S.REFINING: frozenset({S.PLANNING, S.AWAITING_CLARIFICATION, S.AWAITING_APPROVAL}),
    S.AWAITING_CLARIFICATION: frozenset({S.PLANNING}),
    S.AWAITING_APPROVAL: frozenset({S.EXECUTING, S.COMPLETED, S.IDLE}),
    S.EXECUTING: frozenset({S.COMPLETED, S.FAILED}),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    """True if `target` is reachable from `current` in one edge.

    stop is not listed: it is legal from every status.
    """
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True, slots=True)
class RoutingResult:
    """Outcome of accepting a plan.

    Attributes:
        status: Session status after routing
        zone: Confidence zone of the accepted plan
        plan: The stored, versioned plan
        limit: Set when the refine bound forced awaiting_approval
        questions: Questions pending for the user, if routed to clarification
    """

    status: SessionStatus
    zone: ConfidenceZone
    plan: Plan
    limit: IterationLimitReached | None = None
    questions: tuple[str, ...] = ()

    @property
    def forced(self) -> bool:
        return self.limit is not None


def _same_content(a: Plan, b: Plan) -> bool:
    return dataclasses.replace(a, version=0, created_at=0.0) == dataclasses.replace(
        b, version=0, created_at=0.0
    )


class SessionStateMachine:
    """Owns one tab's SessionState and the transition API over it."""

    def __init__(
        self,
        tab_id: int | str,
        store: SessionStore,
        *,
        config: DialogueConfig | None = None,
        plan_store: PlanStore | None = None,
        audit: AuditLog | None = None,
        state: SessionState | None = None,
    ) -> None:
        self._config = config or DialogueConfig()
        self._store = store
        self._plans = plan_store or PlanStore(max_steps=self._config.max_plan_steps)
        self._audit = audit if audit is not None else AuditLog()
        self._state = state if state is not None else self._default_state(tab_id)
        if self._state.tab_id != tab_id:
            raise ValidationError(
                f"Snapshot belongs to tab {self._state.tab_id!r}, not {tab_id!r}"
            )
        self._log = get_tab_logger("session", tab_id)
        self._lock = asyncio.Lock()

    @classmethod
    async def restore(
        cls,
        tab_id: int | str,
        store: SessionStore,
        *,
        config: DialogueConfig | None = None,
        plan_store: PlanStore | None = None,
        audit: AuditLog | None = None,
    ) -> SessionStateMachine:
        """Rehydrate a session from the store (or start a default one).

        Raises:
            ExternalFailure: The store could not be read.
            ValidationError: The stored snapshot is malformed.
        """
        try:
            snapshot = await store.load(tab_id)
        except ExternalFailure:
            raise
        except Exception as e:
            raise ExternalFailure(f"Failed to load session for tab {tab_id}: {e}") from e

        state = SessionState.from_dict(snapshot) if snapshot is not None else None
        machine = cls(
            tab_id, store, config=config, plan_store=plan_store, audit=audit, state=state
        )
        if state is not None:
            machine._log.debug("restored in status %s", state.status.value)
        return machine

    def _default_state(self, tab_id: int | str) -> SessionState:
        return SessionState(
            tab_id=tab_id,
            dialogue_state=DialogueState(
                max_refine_iterations=self._config.max_refine_iterations,
                max_clarification_rounds=self._config.max_clarification_rounds,
            ),
        )

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    @property
    def tab_id(self) -> int | str:
        return self._state.tab_id

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    @property
    def audit(self) -> AuditLog:
        return self._audit

    def get_state(self) -> SessionState:
        """Deep copy of the current state; changes to it are not seen here."""
        return copy.deepcopy(self._state)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _draft(self) -> SessionState:
        return copy.deepcopy(self._state)

    def _require(self, operation: str, *allowed: SessionStatus) -> None:
        status = self._state.status
        if status not in allowed:
            self._audit.record(
                self.tab_id, "rejected", {"operation": operation, "status": status.value}
            )
            self._log.debug("rejected %s in %s", operation, status.value)
            raise TransitionError(operation, status.value)

    @staticmethod
    def _add_turn(
        draft: SessionState,
        role: str,
        content: str,
        message_type: MessageType,
        **metadata: Any,
    ) -> None:
        draft.conversation_history.append(
            Turn(role=role, content=content, message_type=message_type, metadata=metadata)
        )

    @staticmethod
    def _reset_to_idle(draft: SessionState) -> None:
        draft.status = S.IDLE
        draft.current_task = None
        draft.execution_state = None
        draft.error = None
        dialogue = draft.dialogue_state
        dialogue.refine_iteration = 0
        dialogue.refined_version = None
        dialogue.clarification_round = 0
        dialogue.pending_questions = []

    @staticmethod
    def _legal(previous: SessionStatus, target: SessionStatus) -> bool:
        if target is previous is S.EXECUTING:
            return True  # step progress
        if target is previous is S.REFINING:
            return can_transition(S.REFINING, S.PLANNING) and can_transition(S.PLANNING, S.REFINING)
        return can_transition(previous, target)

    async def _commit(self, draft: SessionState, operation: str) -> SessionState:
        """Checkpoint `draft`, then make it the live state."""
        previous = self._state.status
        if operation != "stop" and not self._legal(previous, draft.status):
            raise TransitionError(operation, previous.value)
        draft.updated_at = time.time()
        try:
            await self._store.save(draft.tab_id, draft.to_dict())
        except Exception as e:
            self._audit.record(
                self.tab_id, "checkpoint_failed", {"operation": operation, "error": str(e)}
            )
            raise ExternalFailure(
                f"Checkpoint failed during {operation}: {e}",
                status=previous.value,
                plan_version=self._state.plan_version,
            ) from e

        self._state = draft
        self._log.debug("checkpointed after %s", operation)
        if draft.status is not previous:
            self._log.info("%s -> %s", previous.value, draft.status.value)
        self._audit.record(
            self.tab_id,
            "transition",
            {
                "operation": operation,
                "from": previous.value,
                "to": draft.status.value,
                "plan_version": draft.plan_version,
            },
        )
        return self.get_state()

    def _request_clarification(self, draft: SessionState, questions: list[str]) -> SessionStatus:
        dialogue = draft.dialogue_state
        dialogue.clarification_round += 1
        if dialogue.clarification_round > dialogue.max_clarification_rounds:
            self._log.info(
                "clarification limit (%d) reached, proceeding with best effort",
                dialogue.max_clarification_rounds,
            )
            dialogue.pending_questions = []
            return S.AWAITING_APPROVAL

        dialogue.pending_questions = questions or [DEFAULT_CLARIFYING_QUESTION]
        self._add_turn(
            draft,
            "assistant",
            "\n".join(dialogue.pending_questions),
            MessageType.CLARIFICATION,
            round=dialogue.clarification_round,
        )
        return S.AWAITING_CLARIFICATION

    def _limit(self, draft: SessionState) -> IterationLimitReached:
        dialogue = draft.dialogue_state
        assert draft.current_plan is not None
        self._log.info(
            "refine limit (%d) reached, forcing approval of plan v%d",
            dialogue.max_refine_iterations,
            draft.current_plan.version,
        )
        return IterationLimitReached(
            iteration=dialogue.refine_iteration,
            max_iterations=dialogue.max_refine_iterations,
            plan_version=draft.current_plan.version,
        )

    def _record_limit(self, limit: IterationLimitReached) -> None:
        self._audit.record(self.tab_id, "iteration_limit", dataclasses.asdict(limit))

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def submit_task(self, task: str) -> SessionState:
        """idle -> planning."""
        if not isinstance(task, str) or not task.strip():
            raise ValidationError("Task must be a non-empty string")
        task = task.strip()

        async with self._lock:
            if self._state.status is S.PLANNING and self._state.current_task == task:
                return self.get_state()
            self._require("submit a task", S.IDLE)

            draft = self._draft()
            draft.status = S.PLANNING
            draft.current_task = task
            draft.error = None
            draft.dialogue_state.decision = None
            draft.dialogue_state.decided_version = None
            self._add_turn(draft, "user", task, MessageType.TASK)
            return await self._commit(draft, "submit_task")

    async def set_plan_with_confidence(
        self,
        plan: Plan | Mapping[str, Any],
        confidence: Confidence | Mapping[str, Any],
        *,
        based_on_version: int | None = None,
    ) -> RoutingResult:
        """Accept a planner response and route on its confidence.

        `based_on_version` is the plan version the planner was asked to
        improve on (0 when there was none). With it, a response that is
        identical to the current plan is a retried delivery only if the
        current plan has already superseded that version; without it, an
        identical plan counts as retried once it has been routed.

        Raises:
            ValidationError: Plan or confidence is malformed; nothing changes.
            TransitionError: Session is not planning or refining.
        """
        if not isinstance(plan, Plan):
            plan = Plan.from_dict(dict(plan))
        if not isinstance(confidence, Confidence):
            confidence = Confidence.from_dict(dict(confidence))

        async with self._lock:
            current = self._state
            if self._is_redelivery(plan, confidence, based_on_version):
                assert current.current_plan is not None
                return RoutingResult(
                    status=current.status,
                    zone=self._zone(current.confidence),
                    plan=current.current_plan,
                    questions=tuple(current.dialogue_state.pending_questions),
                )
            self._require("set a plan", S.PLANNING, S.REFINING)

            origin = current.status
            draft = self._draft()
            stored = self._plans.set_plan(draft, plan, confidence)
            zone = self._zone(confidence)
            dialogue = draft.dialogue_state
            questions = list(stored.clarifying_questions)
            needs_clarification = bool(questions) or not stored.understood
            at_bound = dialogue.refine_iteration >= dialogue.max_refine_iterations
            limit: IterationLimitReached | None = None

            self._add_turn(
                draft,
                "assistant",
                stored.summary or "Plan needs clarification",
                MessageType.PLAN,
                version=stored.version,
                zone=zone.value,
                overall=confidence.overall,
            )

            if origin is S.PLANNING:
                if needs_clarification or zone is ConfidenceZone.ASK:
                    target = self._request_clarification(draft, questions)
                elif zone is ConfidenceZone.PROCEED:
                    target = S.AWAITING_APPROVAL
                elif at_bound:
                    target = S.AWAITING_APPROVAL
                    limit = self._limit(draft)
                else:
                    dialogue.refine_iteration += 1
                    target = S.REFINING
                    dialogue.refined_version = stored.version
                    self._add_turn(
                        draft,
                        "assistant",
                        self._announcement(stored),
                        MessageType.ASSUME_ANNOUNCE,
                        iteration=dialogue.refine_iteration,
                    )
            else:
                if zone is ConfidenceZone.PROCEED and not needs_clarification:
                    target = S.AWAITING_APPROVAL
                elif at_bound:
                    target = S.AWAITING_APPROVAL
                    limit = self._limit(draft)
                elif needs_clarification:
                    target = self._request_clarification(draft, questions)
                else:
                    # refining -> planning -> refining, committed as one step
                    dialogue.refine_iteration += 1
                    target = S.REFINING
                    dialogue.refined_version = stored.version
                    self._add_turn(
                        draft,
                        "assistant",
                        f"Refining plan (iteration {dialogue.refine_iteration})",
                        MessageType.REFINE,
                        iteration=dialogue.refine_iteration,
                        version=stored.version,
                    )

            draft.status = target
            await self._commit(draft, "set_plan_with_confidence")
            self._audit.record(
                self.tab_id,
                "plan",
                {
                    "version": stored.version,
                    "zone": zone.value,
                    "steps": len(stored.steps),
                    "forced": limit is not None,
                },
            )
            if limit is not None:
                self._record_limit(limit)
            return RoutingResult(
                status=target,
                zone=zone,
                plan=stored,
                limit=limit,
                questions=tuple(dialogue.pending_questions)
                if target is S.AWAITING_CLARIFICATION
                else (),
            )

    def _is_redelivery(
        self, plan: Plan, confidence: Confidence, based_on_version: int | None
    ) -> bool:
        current = self._state
        if (
            current.status is S.PLANNING
            or current.current_plan is None
            or current.confidence != confidence
            or not _same_content(current.current_plan, plan)
        ):
            return False
        if based_on_version is not None:
            return based_on_version != current.current_plan.version
        if current.status is S.REFINING:
            return current.dialogue_state.refined_version == current.current_plan.version
        return True

    def _zone(self, confidence: Confidence) -> ConfidenceZone:
        return evaluate_confidence(
            confidence,
            ask_below=self._config.ask_threshold,
            proceed_at=self._config.proceed_threshold,
        )

    @staticmethod
    def _announcement(plan: Plan) -> str:
        if plan.assumptions:
            listed = "; ".join(str(a) for a in plan.assumptions)
            return f"Proceeding with assumptions: {listed}"
        return f"Proceeding with: {plan.summary}"

    async def enter_refining(self) -> SessionState:
        """planning -> refining, incrementing the refine iteration.

        At the refine bound the session goes to awaiting_approval instead and
        the IterationLimitReached marker is audited as "iteration_limit".
        """
        async with self._lock:
            if self._state.status is S.REFINING:
                return self.get_state()
            self._require("enter refining", S.PLANNING)

            limit: IterationLimitReached | None = None
            draft = self._draft()
            dialogue = draft.dialogue_state
            if dialogue.refine_iteration >= dialogue.max_refine_iterations:
                if draft.current_plan is None:
                    raise TransitionError("enter refining at the iteration limit", S.PLANNING.value)
                limit = self._limit(draft)
                draft.status = S.AWAITING_APPROVAL
            else:
                dialogue.refine_iteration += 1
                draft.status = S.REFINING
                dialogue.refined_version = None
                self._add_turn(
                    draft,
                    "assistant",
                    f"Refining plan (iteration {dialogue.refine_iteration})",
                    MessageType.REFINE,
                    iteration=dialogue.refine_iteration,
                )
            state = await self._commit(draft, "enter_refining")
            if limit is not None:
                self._record_limit(limit)
            return state

    async def answer_clarification(self, answer: str) -> SessionState:
        """awaiting_clarification -> planning."""
        if not isinstance(answer, str) or not answer.strip():
            raise ValidationError("Clarification answer must be a non-empty string")
        answer = answer.strip()

        async with self._lock:
            history = self._state.conversation_history
            if (
                self._state.status is S.PLANNING
                and history
                and history[-1].message_type is MessageType.CLARIFICATION_ANSWER
                and history[-1].content == answer
            ):
                return self.get_state()
            self._require("answer a clarification", S.AWAITING_CLARIFICATION)

            draft = self._draft()
            draft.dialogue_state.pending_questions = []
            draft.status = S.PLANNING
            self._add_turn(draft, "user", answer, MessageType.CLARIFICATION_ANSWER)
            return await self._commit(draft, "answer_clarification")

    async def approve_plan(self) -> SessionState:
        """awaiting_approval -> executing (completed for a zero-step plan)."""
        return await self._approve("approve the plan")

    async def start_execution(self) -> SessionState:
        """Same edge as approve_plan, for callers that approve and start separately."""
        return await self._approve("start execution")

    async def _approve(self, operation: str) -> SessionState:
        async with self._lock:
            state = self._state
            dialogue = state.dialogue_state
            if (
                state.status in (S.EXECUTING, S.COMPLETED)
                and dialogue.decision == "approved"
                and dialogue.decided_version == state.plan_version
            ):
                return self.get_state()
            self._require(operation, S.AWAITING_APPROVAL)
            if state.current_plan is None:
                raise TransitionError(f"{operation} without a plan", state.status.value)

            draft = self._draft()
            plan = draft.current_plan
            assert plan is not None
            tracker = ExecutionTracker()
            draft.execution_state = tracker.start(plan)
            draft.dialogue_state.decision = "approved"
            draft.dialogue_state.decided_version = plan.version
            draft.status = S.COMPLETED if tracker.is_complete() else S.EXECUTING
            self._add_turn(
                draft, "user", f"Approved plan v{plan.version}", MessageType.APPROVAL,
                version=plan.version,
            )
            return await self._commit(draft, "approve_plan")

    async def reject_plan(self) -> SessionState:
        """awaiting_approval -> idle. The rejected plan stays as current_plan."""
        async with self._lock:
            state = self._state
            dialogue = state.dialogue_state
            if (
                state.status is S.IDLE
                and dialogue.decision == "rejected"
                and dialogue.decided_version == state.plan_version
            ):
                return self.get_state()
            self._require("reject the plan", S.AWAITING_APPROVAL)

            draft = self._draft()
            version = draft.plan_version
            self._reset_to_idle(draft)
            draft.dialogue_state.decision = "rejected"
            draft.dialogue_state.decided_version = version
            self._add_turn(
                draft, "user", f"Rejected plan v{version}", MessageType.REJECTION, version=version
            )
            return await self._commit(draft, "reject_plan")

    async def complete_step(self, index: int, result: Any = None) -> SessionState:
        """Record step `index` as done; the last step completes the session.

        Not safe to retry: a repeated call raises OrderingError.
        """
        async with self._lock:
            self._require("complete a step", S.EXECUTING)

            draft = self._draft()
            tracker = ExecutionTracker(draft.execution_state)
            tracker.complete_step(index, result)
            if tracker.is_complete():
                draft.status = S.COMPLETED
            self._add_turn(
                draft, "system", f"Step {index + 1} completed", MessageType.STEP_RESULT,
                step_index=index, success=True,
            )
            state = await self._commit(draft, "complete_step")
            self._audit.record(self.tab_id, "step", {"index": index, "success": True})
            return state

    async def fail_step(self, index: int, error: str) -> SessionState:
        """executing -> failed after an unrecoverable step failure."""
        async with self._lock:
            state = self._state
            execution = state.execution_state
            if (
                state.status is S.FAILED
                and execution is not None
                and execution.failed_steps
                and execution.failed_steps[-1].step_index == index
                and state.error == error
            ):
                return self.get_state()
            self._require("fail a step", S.EXECUTING)

            draft = self._draft()
            tracker = ExecutionTracker(draft.execution_state)
            tracker.record_failure(index, error)
            draft.status = S.FAILED
            draft.error = error
            self._add_turn(
                draft, "system", f"Step {index + 1} failed: {error}", MessageType.STEP_RESULT,
                step_index=index, success=False,
            )
            state = await self._commit(draft, "fail_step")
            self._audit.record(
                self.tab_id, "step", {"index": index, "success": False, "error": error}
            )
            return state

    async def stop(self) -> SessionState:
        """Any state -> idle.

        Resets the refine iteration and discards execution progress. The
        current plan and plan history are kept.
        """
        async with self._lock:
            state = self._state
            if (
                state.status is S.IDLE
                and state.execution_state is None
                and state.dialogue_state.refine_iteration == 0
                and state.current_task is None
            ):
                return self.get_state()

            draft = self._draft()
            was = draft.status
            self._reset_to_idle(draft)
            self._add_turn(draft, "user", "Task stopped", MessageType.STOP, stopped_from=was.value)
            return await self._commit(draft, "stop")
