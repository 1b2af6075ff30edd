"""Orchestration loop: plan, refine, clarify, confirm, execute.

The AgentLoop composes one SessionStateMachine with the planner, the action
executor and the safety guards. Each entry point is an async generator of
SessionUpdate so a UI can render progress as it happens:

    async for update in loop.run_task("Click the Login button", page):
        render(update)

Each planner or executor call runs as a single in-flight asyncio.Task.
cancel() interrupts only that call and stops the session. The loop never
retries a failed call; failures are reported as ERROR updates and the
session stays at its last-known-good state.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from tabpilot.errors import ExternalFailure, TabPilotError, TransitionError, ValidationError
from tabpilot.executor import ActionExecutor, StepOutcome
from tabpilot.guards.injection import InjectionDetector
from tabpilot.guards.risk import (
    ConfirmationDecision,
    KeywordRiskClassifier,
    RiskClassifier,
    describe_reason,
    format_action,
)
from tabpilot.logging import get_tab_logger
from tabpilot.planner import PageContext, Planner
from tabpilot.session.models import Confidence, Plan, PlanStep, SessionState, SessionStatus
from tabpilot.session.state_machine import RoutingResult, SessionStateMachine
from tabpilot.storage.permissions import PermissionStore, increment_use_count

T = TypeVar("T")

ConfirmCallback = Callable[[PlanStep, ConfirmationDecision], Awaitable[bool]]


class UpdateKind(Enum):
    """Types of updates emitted by the agent loop."""

    TASK_ACCEPTED = "task_accepted"
    INJECTION_SUSPECTED = "injection_suspected"
    PLAN_RECEIVED = "plan_received"
    REFINING = "refining"
    CLARIFICATION_NEEDED = "clarification_needed"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTION_STARTED = "execution_started"
    CONFIRMATION_REQUIRED = "confirmation_required"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class SessionUpdate:
    """One progress event for a tab."""

    kind: UpdateKind
    tab_id: int | str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class _Cancelled(Exception):
    """The in-flight call was cancelled through AgentLoop.cancel()."""


class AgentLoop:
    """Drives one tab session through planning and execution."""

    def __init__(
        self,
        machine: SessionStateMachine,
        planner: Planner,
        executor: ActionExecutor,
        *,
        classifier: RiskClassifier | None = None,
        permissions: PermissionStore | None = None,
        detector: InjectionDetector | None = None,
    ) -> None:
        self._machine = machine
        self._planner = planner
        self._executor = executor
        self._classifier = classifier or KeywordRiskClassifier()
        self._permissions = permissions
        self._detector = detector
        self._inflight: asyncio.Task[Any] | None = None
        self._cancelled = False
        self._injection_pending = False
        self._log = get_tab_logger("agent", machine.tab_id)

    @property
    def machine(self) -> SessionStateMachine:
        return self._machine

    def _update(self, kind: UpdateKind, **payload: Any) -> SessionUpdate:
        payload.setdefault("status", self._machine.status.value)
        return SessionUpdate(kind=kind, tab_id=self._machine.tab_id, payload=payload)

    def _error(self, error: TabPilotError) -> SessionUpdate:
        state = self._machine.get_state()
        self._log.warning("%s", error)
        return self._update(
            UpdateKind.ERROR,
            message=str(error),
            error_type=type(error).__name__,
            plan_version=state.plan_version,
        )

    async def _call(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run one collaborator call as the cancellable in-flight task."""
        task = asyncio.ensure_future(coro)
        self._inflight = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._cancelled and task.cancelled():
                raise _Cancelled() from None
            raise
        finally:
            self._inflight = None

    async def cancel(self) -> SessionState:
        """Cancel the in-flight call, if any, and stop the session."""
        self._cancelled = True
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
        self._log.info("cancelled by user")
        return await self._machine.stop()

    # -------------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------------

    async def run_task(self, task: str, page_context: PageContext) -> AsyncIterator[SessionUpdate]:
        """Submit a task and plan until the session needs the user."""
        self._cancelled = False
        self._injection_pending = False
        await self._machine.submit_task(task)
        yield self._update(UpdateKind.TASK_ACCEPTED, task=task)
        async for update in self._plan(page_context, scan=True):
            yield update

    async def answer(self, answer: str, page_context: PageContext) -> AsyncIterator[SessionUpdate]:
        """Answer the pending clarification and resume planning."""
        self._cancelled = False
        acknowledged = self._injection_pending
        self._injection_pending = False
        await self._machine.answer_clarification(answer)
        async for update in self._plan(page_context, scan=not acknowledged):
            yield update

    async def replan(self, page_context: PageContext) -> AsyncIterator[SessionUpdate]:
        """Re-issue the planner call after an ERROR left the session planning."""
        status = self._machine.status
        if status not in (SessionStatus.PLANNING, SessionStatus.REFINING):
            raise TransitionError("replan", status.value)
        self._cancelled = False
        async for update in self._plan(page_context, scan=False):
            yield update

    async def _plan(self, page_context: PageContext, *, scan: bool) -> AsyncIterator[SessionUpdate]:
        if scan and self._detector is not None:
            report = self._detector.scan(page_context.elements)
            if report.detected:
                async for update in self._flag_injection(report.message, report.severity):
                    yield update
                return

        while True:
            if self._cancelled:
                yield self._update(UpdateKind.STOPPED)
                return
            state = self._machine.get_state()
            try:
                response = await self._call(
                    self._planner.plan(
                        state.current_task or "", page_context, state.conversation_history
                    )
                )
            except _Cancelled:
                yield self._update(UpdateKind.STOPPED)
                return
            except ExternalFailure as e:
                yield self._error(
                    ExternalFailure(
                        e.args[0] if e.args else "Planner call failed",
                        status=state.status.value,
                        plan_version=state.plan_version,
                    )
                )
                return
            except ValidationError as e:
                yield self._error(e)
                return

            if self._cancelled:
                yield self._update(UpdateKind.STOPPED)
                return
            try:
                result = await self._machine.set_plan_with_confidence(
                    response.to_plan(),
                    response.confidence,
                    based_on_version=state.plan_version or 0,
                )
            except (ExternalFailure, ValidationError) as e:
                yield self._error(e)
                return

            yield self._plan_update(result)
            if self._cancelled:
                yield self._update(UpdateKind.STOPPED)
                return

            if result.status is SessionStatus.REFINING:
                yield self._update(
                    UpdateKind.REFINING,
                    iteration=self._machine.get_state().dialogue_state.refine_iteration,
                    assumptions=list(result.plan.assumptions),
                )
                continue
            if result.status is SessionStatus.AWAITING_CLARIFICATION:
                yield self._update(
                    UpdateKind.CLARIFICATION_NEEDED, questions=list(result.questions)
                )
                return
            yield self._update(
                UpdateKind.AWAITING_APPROVAL,
                plan=result.plan.to_dict(),
                forced=result.forced,
                iteration=result.limit.iteration if result.limit else None,
            )
            return

    def _plan_update(self, result: RoutingResult) -> SessionUpdate:
        return self._update(
            UpdateKind.PLAN_RECEIVED,
            version=result.plan.version,
            zone=result.zone.value,
            steps=len(result.plan.steps),
            summary=result.plan.summary,
        )

    async def _flag_injection(self, message: str, severity: str | None) -> AsyncIterator[SessionUpdate]:
        question = f"{message}. Do you want me to continue planning on this page?"
        yield self._update(UpdateKind.INJECTION_SUSPECTED, message=message, severity=severity)
        guard = Plan(version=0, summary=None, understood=False, clarifying_questions=(question,))
        result = await self._machine.set_plan_with_confidence(guard, Confidence(overall=0.0))
        if result.status is SessionStatus.AWAITING_CLARIFICATION:
            self._injection_pending = True
            yield self._update(UpdateKind.CLARIFICATION_NEEDED, questions=list(result.questions))
        else:
            yield self._update(
                UpdateKind.AWAITING_APPROVAL, plan=result.plan.to_dict(), forced=True, iteration=None
            )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute(
        self, page_context: PageContext, confirm: ConfirmCallback
    ) -> AsyncIterator[SessionUpdate]:
        """Approve (if needed) and run the current plan step by step.

        Steps that require confirmation await `confirm`; a False answer
        stops the task.
        """
        self._cancelled = False
        state = self._machine.get_state()
        if state.status is SessionStatus.AWAITING_APPROVAL:
            state = await self._machine.approve_plan()
            yield self._update(UpdateKind.EXECUTION_STARTED, version=state.plan_version)
        elif state.status is not SessionStatus.EXECUTING:
            raise TransitionError("execute the plan", state.status.value)

        plan = state.current_plan
        assert plan is not None
        domain = page_context.domain
        permission = (
            await self._permissions.get_permission(domain) if self._permissions else None
        )

        while state.status is SessionStatus.EXECUTING:
            if self._cancelled or self._machine.status is not SessionStatus.EXECUTING:
                yield self._update(UpdateKind.STOPPED)
                return
            assert state.execution_state is not None
            index = state.execution_state.current_step_index
            step = plan.steps[index]

            decision = self._classifier.requires_confirmation(step, permission)
            if decision.required:
                yield self._update(
                    UpdateKind.CONFIRMATION_REQUIRED,
                    index=index,
                    action=format_action(step),
                    reason=decision.reason.value,
                    risk_level=decision.risk_level.value,
                    explanation=describe_reason(decision),
                )
                approved = await confirm(step, decision)
                if self._cancelled:
                    yield self._update(UpdateKind.STOPPED)
                    return
                if not approved:
                    await self._machine.stop()
                    yield self._update(UpdateKind.STOPPED, reason="confirmation declined")
                    return

            yield self._update(UpdateKind.STEP_STARTED, index=index, action=format_action(step))
            try:
                outcome = await self._call(self._executor.execute(step))
            except _Cancelled:
                yield self._update(UpdateKind.STOPPED)
                return
            except Exception as e:
                self._log.warning("executor raised on step %d: %s", index + 1, e)
                outcome = StepOutcome.failed(f"{type(e).__name__}: {e}")

            if self._cancelled:
                yield self._update(UpdateKind.STOPPED)
                return

            if not outcome.success:
                error = outcome.error or "Step failed"
                state = await self._machine.fail_step(index, error)
                yield self._update(UpdateKind.STEP_FAILED, index=index, error=error)
                yield self._update(UpdateKind.FAILED, error=error)
                return

            state = await self._machine.complete_step(index, outcome.result)
            yield self._update(UpdateKind.STEP_COMPLETED, index=index, result=outcome.result)

        if self._permissions is not None and permission is not None:
            await increment_use_count(self._permissions, domain)
        yield self._update(UpdateKind.COMPLETED, steps=len(plan.steps))
