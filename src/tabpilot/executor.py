"""Action executor interface.

Executors perform one plan step against the page. They report ordinary
failures through StepOutcome rather than raising; an exception from
execute() is recorded by the agent loop as a failed step.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from tabpilot.session.models import PlanStep


@dataclass(frozen=True, slots=True)
class StepOutcome:
    success: bool
    result: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, result: Any = None) -> StepOutcome:
        return cls(success=True, result=result)

    @classmethod
    def failed(cls, error: str) -> StepOutcome:
        return cls(success=False, error=error)


@runtime_checkable
class ActionExecutor(Protocol):
    async def execute(self, step: PlanStep) -> StepOutcome: ...
