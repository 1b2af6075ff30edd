"""Shared test utilities for tabpilot tests."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

from tabpilot.executor import StepOutcome
from tabpilot.planner import PageContext, PlanResponse
from tabpilot.session.models import ActionType, Confidence, Plan, PlanStep, Turn


def make_plan(steps: int = 1, *, summary: str | None = "Click the Login button", **kwargs: Any) -> Plan:
    """Build a draft plan with `steps` click steps."""
    return Plan(
        version=0,
        summary=summary,
        steps=tuple(
            PlanStep(step=i + 1, action=ActionType.CLICK, target_id=f"el-{i + 1}")
            for i in range(steps)
        ),
        **kwargs,
    )


def make_confidence(overall: float) -> Confidence:
    """Confidence record with every field set to `overall`."""
    return Confidence(
        overall=overall, intent_clarity=overall, target_match=overall, value_confidence=overall
    )


def plan_response(
    overall: float,
    *,
    steps: Sequence[dict[str, Any]] | None = None,
    questions: Sequence[str] = (),
    understood: bool = True,
    summary: str = "Click the Login button",
    assumptions: Sequence[str] = (),
) -> dict[str, Any]:
    """Backend-shaped (camelCase, nested) planner response."""
    if steps is None:
        steps = [{"step": 1, "action": "click", "targetId": "el-1", "targetDescription": "Login"}]
    return {
        "plan": {"summary": summary, "steps": list(steps), "risks": []},
        "confidence": {
            "overall": overall,
            "intentClarity": overall,
            "targetMatch": overall,
            "valueConfidence": overall,
        },
        "assumptions": list(assumptions),
        "clarifyingQuestions": list(questions),
        "understood": understood,
    }


def page(url: str = "https://www.example.com/login", elements: list[dict[str, Any]] | None = None) -> PageContext:
    if elements is None:
        elements = [{"id": "el-1", "tag": "button", "text": "Login"}]
    return PageContext(url=url, elements=elements)


class ScriptedPlanner:
    """Planner that returns queued responses in order and records its calls."""

    def __init__(self, *responses: dict[str, Any]) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[str, PageContext, list[Turn]]] = []

    async def plan(self, task: str, page_context: PageContext, history: Sequence[Turn]) -> PlanResponse:
        self.calls.append((task, page_context, list(history)))
        if not self._responses:
            raise AssertionError("ScriptedPlanner ran out of responses")
        return PlanResponse.from_dict(self._responses.pop(0))


class BlockingPlanner:
    """Planner whose call never returns until cancelled."""

    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def plan(self, task: str, page_context: PageContext, history: Sequence[Turn]) -> PlanResponse:
        self.started.set()
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


class RecordingExecutor:
    """Executor that succeeds on every step unless told to fail one."""

    def __init__(self, fail_on: int | None = None, error: str = "Element not found") -> None:
        self.fail_on = fail_on
        self.error = error
        self.executed: list[PlanStep] = []

    async def execute(self, step: PlanStep) -> StepOutcome:
        self.executed.append(step)
        if self.fail_on is not None and step.step == self.fail_on:
            return StepOutcome.failed(self.error)
        return StepOutcome.ok({"step": step.step})


async def collect(updates) -> list[Any]:
    """Drain an async generator of updates into a list."""
    return [u async for u in updates]
