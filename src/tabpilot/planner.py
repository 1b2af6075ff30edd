"""Planner interface and the HTTP adapter for the reasoning backend.

The backend answers POST /api/plan-with-confidence with camelCase JSON:

    {
      "plan": {"summary": ..., "steps": [...], "risks": [...]},
      "confidence": {"overall": 0.92, "intentClarity": ..., ...},
      "assumptions": [...],
      "clarifyingQuestions": [...],
      "understood": true
    }

PlanResponse.from_dict accepts that envelope as well as a flat response and
translates keys to the snake_case used everywhere else.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from tabpilot.config.schema import PlannerConfig
from tabpilot.errors import ExternalFailure, ValidationError
from tabpilot.logging import get_logger
from tabpilot.session.models import Confidence, Plan, PlanStep, Turn
from tabpilot.storage.permissions import get_domain_from_url, normalize_domain

log = get_logger("planner")

PLAN_ENDPOINT = "/api/plan-with-confidence"
MAX_PLAN_STEPS = 5

_STEP_KEYS = {
    "targetId": "target_id",
    "targetDescription": "target_description",
}
_CONFIDENCE_KEYS = {
    "intentClarity": "intent_clarity",
    "targetMatch": "target_match",
    "valueConfidence": "value_confidence",
}


@dataclass
class PageContext:
    """Captured page the planner reasons over."""

    url: str
    elements: list[dict[str, Any]] = field(default_factory=list)
    screenshot: str | None = None  # base64 data URL

    @property
    def domain(self) -> str:
        return normalize_domain(get_domain_from_url(self.url))


def _translate(data: Mapping[str, Any], keys: Mapping[str, str]) -> dict[str, Any]:
    return {keys.get(k, k): v for k, v in data.items()}


@dataclass(frozen=True)
class PlanResponse:
    """Validated planner output."""

    understood: bool
    confidence: Confidence
    summary: str | None = None
    steps: tuple[PlanStep, ...] = ()
    assumptions: tuple[Any, ...] = ()
    clarifying_questions: tuple[str, ...] = ()
    risks: tuple[Any, ...] = ()

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], max_steps: int = MAX_PLAN_STEPS
    ) -> PlanResponse:
        """Parse and validate a planner response.

        Raises:
            ValidationError: The response breaks the planner contract.
        """
        if not isinstance(data, Mapping):
            raise ValidationError(f"Planner response must be a mapping, got {type(data).__name__}")

        body: dict[str, Any] = dict(data)
        nested = body.pop("plan", None)
        if isinstance(nested, Mapping):
            for key, value in nested.items():
                body.setdefault(key, value)

        raw_confidence = body.get("confidence")
        if not isinstance(raw_confidence, Mapping):
            raise ValidationError("Planner response is missing a confidence record")
        confidence = Confidence.from_dict(_translate(raw_confidence, _CONFIDENCE_KEYS))

        raw_steps = body.get("steps") or []
        if not isinstance(raw_steps, Sequence) or isinstance(raw_steps, str):
            raise ValidationError("Planner steps must be a list")
        steps = tuple(
            PlanStep.from_dict(_translate(s, _STEP_KEYS) if isinstance(s, Mapping) else s, i + 1)
            for i, s in enumerate(raw_steps)
        )

        questions = body.get("clarifying_questions", body.get("clarifyingQuestions")) or []
        understood = body.get("understood", True)
        if not isinstance(understood, bool):
            raise ValidationError(f"'understood' must be a boolean, got {understood!r}")

        if understood:
            if not steps:
                raise ValidationError("An understood response needs at least one step")
            if len(steps) > max_steps:
                raise ValidationError(f"Response has {len(steps)} steps, limit is {max_steps}")
        elif not questions:
            raise ValidationError("A response that is not understood needs a clarifying question")

        return cls(
            understood=understood,
            confidence=confidence,
            summary=body.get("summary"),
            steps=steps,
            assumptions=tuple(body.get("assumptions") or ()),
            clarifying_questions=tuple(str(q) for q in questions),
            risks=tuple(body.get("risks") or ()),
        )

    def to_plan(self) -> Plan:
        """Unversioned draft; the PlanStore assigns the version."""
        return Plan(
            version=0,
            summary=self.summary,
            steps=self.steps,
            assumptions=self.assumptions,
            risks=self.risks,
            understood=self.understood,
            clarifying_questions=self.clarifying_questions,
        )


@runtime_checkable
class Planner(Protocol):
    async def plan(
        self, task: str, page_context: PageContext, history: Sequence[Turn]
    ) -> PlanResponse: ...


def history_to_wire(history: Sequence[Turn]) -> list[dict[str, str]]:
    return [
        {"role": t.role, "content": t.content, "messageType": t.message_type.value}
        for t in history
    ]


class HttpPlanner:
    """Planner backed by the HTTP reasoning service."""

    def __init__(
        self,
        config: PlannerConfig | None = None,
        *,
        max_steps: int = MAX_PLAN_STEPS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or PlannerConfig()
        self._max_steps = max_steps
        self._transport = transport

    @property
    def url(self) -> str:
        return self._config.backend_url.rstrip("/") + PLAN_ENDPOINT

    def _payload(
        self, task: str, page_context: PageContext, history: Sequence[Turn]
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "task": task,
            "currentUrl": page_context.url,
            "elements": page_context.elements,
            "conversationHistory": history_to_wire(history),
            "provider": self._config.provider,
        }
        if self._config.include_screenshots and page_context.screenshot:
            payload["screenshot"] = page_context.screenshot
        return payload

    async def plan(
        self, task: str, page_context: PageContext, history: Sequence[Turn]
    ) -> PlanResponse:
        """POST the task and page to the backend.

        Raises:
            ExternalFailure: Transport error, non-2xx status or a refusal.
            ValidationError: The backend answered with a malformed plan.
        """
        log.debug("Requesting plan from %s (%d elements)", self.url, len(page_context.elements))
        try:
            async with httpx.AsyncClient(
                timeout=self._config.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.url, json=self._payload(task, page_context, history)
                )
        except httpx.HTTPError as e:
            raise ExternalFailure(f"Planner request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            message = body.get("error") if isinstance(body, dict) else None
            if isinstance(body, dict) and body.get("requiresConfirmation"):
                raise ExternalFailure(
                    f"Planner refused the page: {message or 'suspicious content'}"
                )
            raise ExternalFailure(
                f"Planner returned HTTP {response.status_code}: {message or response.text[:200]}"
            )
        if not isinstance(body, dict):
            raise ExternalFailure("Planner returned a non-JSON response")

        return PlanResponse.from_dict(body, max_steps=self._max_steps)
