"""Data schemas for per-tab dialogue sessions.

Every persisted type round-trips through plain dicts so a SessionState can be
checkpointed to any SessionStore and rehydrated after the host restarts.
Dict keys are snake_case; the planner's camelCase wire format is translated
in tabpilot.planner.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tabpilot.errors import ValidationError

SNAPSHOT_FORMAT = 1


class SessionStatus(Enum):
    """Lifecycle state of a tab session."""

    IDLE = "idle"
    PLANNING = "planning"
    REFINING = "refining"
    AWAITING_CLARIFICATION = "awaiting_clarification"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class ActionType(Enum):
    """Atomic page actions a plan step may request."""

    CLICK = "click"
    TYPE = "type"
    SCROLL = "scroll"
    SELECT = "select"
    HOVER = "hover"
    NAVIGATE = "navigate"
    WAIT = "wait"

    @property
    def requires_target(self) -> bool:
        return self in TARGETED_ACTIONS


TARGETED_ACTIONS = frozenset(
    {ActionType.CLICK, ActionType.TYPE, ActionType.SELECT, ActionType.HOVER}
)


class ConfidenceZone(Enum):
    """Routing bucket derived from overall confidence."""

    ASK = "ask"
    ASSUME_ANNOUNCE = "assume_announce"
    PROCEED = "proceed"


class MessageType(Enum):
    """Kind of a conversation turn."""

    TASK = "task"
    PLAN = "plan"
    CLARIFICATION = "clarification"
    CLARIFICATION_ANSWER = "clarification_answer"
    ASSUME_ANNOUNCE = "assume_announce"
    REFINE = "refine"
    APPROVAL = "approval"
    REJECTION = "rejection"
    STEP_RESULT = "step_result"
    STOP = "stop"


def _parse_enum(enum_cls: type[Enum], value: Any, what: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {what}: {value!r}") from None


def _unit_interval(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Confidence field '{name}' must be a number, got {value!r}")
    value = float(value)
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise ValidationError(f"Confidence field '{name}' out of range [0, 1]: {value}")
    return value


@dataclass(frozen=True, slots=True)
class Confidence:
    """Planner confidence breakdown, each value in [0, 1].

    Out-of-range values raise ValidationError at construction; they are never
    clamped.
    """

    overall: float = 0.0
    intent_clarity: float = 0.0
    target_match: float = 0.0
    value_confidence: float = 0.0

    def __post_init__(self) -> None:
        for name in ("overall", "intent_clarity", "target_match", "value_confidence"):
            object.__setattr__(self, name, _unit_interval(name, getattr(self, name)))

    def to_dict(self) -> dict[str, float]:
        return {
            "overall": self.overall,
            "intent_clarity": self.intent_clarity,
            "target_match": self.target_match,
            "value_confidence": self.value_confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Confidence:
        if not isinstance(data, dict):
            raise ValidationError(f"Confidence must be a mapping, got {type(data).__name__}")
        if "overall" not in data:
            raise ValidationError("Confidence is missing 'overall'")
        return cls(
            overall=data["overall"],
            intent_clarity=data.get("intent_clarity", 0.0),
            target_match=data.get("target_match", 0.0),
            value_confidence=data.get("value_confidence", 0.0),
        )


@dataclass(frozen=True, slots=True)
class PlanStep:
    """One atomic action in a plan. `step` is the 1-based position."""

    step: int
    action: ActionType
    target_id: str | None = None
    value: str | None = None
    target_description: str | None = None
    amount: int | None = None  # Scroll distance in pixels

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"step": self.step, "action": self.action.value}
        for key in ("target_id", "value", "target_description", "amount"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], position: int | None = None) -> PlanStep:
        if not isinstance(data, dict):
            raise ValidationError(f"Plan step must be a mapping, got {type(data).__name__}")
        step = data.get("step", position)
        if isinstance(step, bool) or not isinstance(step, int):
            raise ValidationError(f"Plan step index must be an integer, got {step!r}")
        value = data.get("value")
        return cls(
            step=step,
            action=_parse_enum(ActionType, data.get("action"), "action"),
            target_id=data.get("target_id"),
            value=None if value is None else str(value),
            target_description=data.get("target_description"),
            amount=data.get("amount"),
        )


@dataclass(frozen=True, slots=True)
class Plan:
    """A versioned, immutable sequence of proposed actions.

    Drafts carry version 0; the PlanStore assigns the real version when the
    plan is accepted.
    """

    version: int
    summary: str | None
    steps: tuple[PlanStep, ...] = ()
    assumptions: tuple[Any, ...] = ()
    risks: tuple[Any, ...] = ()
    understood: bool = True
    clarifying_questions: tuple[str, ...] = ()
    created_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "summary": self.summary,
            "understood": self.understood,
            "steps": [s.to_dict() for s in self.steps],
            "assumptions": list(self.assumptions),
            "risks": list(self.risks),
            "clarifying_questions": list(self.clarifying_questions),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Plan:
        if not isinstance(data, dict):
            raise ValidationError(f"Plan must be a mapping, got {type(data).__name__}")
        steps_data = data.get("steps") or []
        if not isinstance(steps_data, list):
            raise ValidationError("Plan steps must be a list")
        questions = data.get("clarifying_questions") or []
        return cls(
            version=int(data.get("version", 0)),
            summary=data.get("summary"),
            steps=tuple(PlanStep.from_dict(s, i + 1) for i, s in enumerate(steps_data)),
            assumptions=tuple(data.get("assumptions") or ()),
            risks=tuple(data.get("risks") or ()),
            understood=bool(data.get("understood", True)),
            clarifying_questions=tuple(str(q) for q in questions),
            created_at=float(data.get("created_at", 0.0)),
        )


@dataclass(slots=True)
class Turn:
    """One entry in the append-only conversation history."""

    role: str  # "user", "assistant" or "system"
    content: str
    message_type: MessageType
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "message_type": self.message_type.value,
            "timestamp": self.timestamp,
        }
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Turn:
        return cls(
            role=data["role"],
            content=data["content"],
            message_type=_parse_enum(MessageType, data["message_type"], "message type"),
            timestamp=float(data.get("timestamp", 0.0)),
            metadata=data.get("metadata") or {},
        )


@dataclass(slots=True)
class DialogueState:
    """Refine/clarification counters and the pending approval decision."""

    refine_iteration: int = 0
    max_refine_iterations: int = 3
    clarification_round: int = 0
    max_clarification_rounds: int = 3
    pending_questions: list[str] = field(default_factory=list)
    decision: str | None = None  # "approved" or "rejected"
    decided_version: int | None = None
    refined_version: int | None = None  # plan version behind the current refine entry

    def to_dict(self) -> dict[str, Any]:
        return {
            "refine_iteration": self.refine_iteration,
            "max_refine_iterations": self.max_refine_iterations,
            "clarification_round": self.clarification_round,
            "max_clarification_rounds": self.max_clarification_rounds,
            "pending_questions": list(self.pending_questions),
            "decision": self.decision,
            "decided_version": self.decided_version,
            "refined_version": self.refined_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DialogueState:
        return cls(
            refine_iteration=int(data.get("refine_iteration", 0)),
            max_refine_iterations=int(data.get("max_refine_iterations", 3)),
            clarification_round=int(data.get("clarification_round", 0)),
            max_clarification_rounds=int(data.get("max_clarification_rounds", 3)),
            pending_questions=list(data.get("pending_questions") or []),
            decision=data.get("decision"),
            decided_version=data.get("decided_version"),
            refined_version=data.get("refined_version"),
        )


@dataclass(slots=True)
class CompletedStep:
    step_index: int
    result: Any
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"step_index": self.step_index, "result": self.result, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompletedStep:
        return cls(
            step_index=int(data["step_index"]),
            result=data.get("result"),
            timestamp=float(data.get("timestamp", 0.0)),
        )


@dataclass(slots=True)
class FailedStep:
    step_index: int
    error: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"step_index": self.step_index, "error": self.error, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FailedStep:
        return cls(
            step_index=int(data["step_index"]),
            error=str(data.get("error", "")),
            timestamp=float(data.get("timestamp", 0.0)),
        )


@dataclass(slots=True)
class ExecutionState:
    """Per-step progress for an approved plan.

    total_steps is fixed when execution starts and never changes afterwards.
    """

    current_step_index: int = 0
    total_steps: int = 0
    plan_version: int = 0
    completed_steps: list[CompletedStep] = field(default_factory=list)
    failed_steps: list[FailedStep] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_step_index": self.current_step_index,
            "total_steps": self.total_steps,
            "plan_version": self.plan_version,
            "completed_steps": [s.to_dict() for s in self.completed_steps],
            "failed_steps": [s.to_dict() for s in self.failed_steps],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionState:
        return cls(
            current_step_index=int(data.get("current_step_index", 0)),
            total_steps=int(data.get("total_steps", 0)),
            plan_version=int(data.get("plan_version", 0)),
            completed_steps=[CompletedStep.from_dict(s) for s in data.get("completed_steps") or []],
            failed_steps=[FailedStep.from_dict(s) for s in data.get("failed_steps") or []],
        )


@dataclass(slots=True)
class SessionState:
    """Full checkpointable state of one tab session."""

    tab_id: int | str
    status: SessionStatus = SessionStatus.IDLE
    current_task: str | None = None
    conversation_history: list[Turn] = field(default_factory=list)
    current_plan: Plan | None = None
    plan_history: list[Plan] = field(default_factory=list)
    confidence: Confidence = field(default_factory=Confidence)
    dialogue_state: DialogueState = field(default_factory=DialogueState)
    execution_state: ExecutionState | None = None
    error: str | None = None
    updated_at: float = field(default_factory=time.time)

    @property
    def plan_version(self) -> int | None:
        return self.current_plan.version if self.current_plan else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": SNAPSHOT_FORMAT,
            "tab_id": self.tab_id,
            "status": self.status.value,
            "current_task": self.current_task,
            "conversation_history": [t.to_dict() for t in self.conversation_history],
            "current_plan": self.current_plan.to_dict() if self.current_plan else None,
            "plan_history": [p.to_dict() for p in self.plan_history],
            "confidence": self.confidence.to_dict(),
            "dialogue_state": self.dialogue_state.to_dict(),
            "execution_state": (
                self.execution_state.to_dict() if self.execution_state else None
            ),
            "error": self.error,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionState:
        """Rehydrate from a snapshot.

        Raises:
            ValidationError: If the snapshot is malformed or from an unknown format.
        """
        if not isinstance(data, dict) or "tab_id" not in data:
            raise ValidationError("Session snapshot must be a mapping with a tab_id")
        fmt = data.get("format", SNAPSHOT_FORMAT)
        if fmt != SNAPSHOT_FORMAT:
            raise ValidationError(f"Unsupported session snapshot format: {fmt!r}")

        try:
            plan_data = data.get("current_plan")
            exec_data = data.get("execution_state")
            return cls(
                tab_id=data["tab_id"],
                status=_parse_enum(SessionStatus, data.get("status", "idle"), "status"),
                current_task=data.get("current_task"),
                conversation_history=[
                    Turn.from_dict(t) for t in data.get("conversation_history") or []
                ],
                current_plan=Plan.from_dict(plan_data) if plan_data else None,
                plan_history=[Plan.from_dict(p) for p in data.get("plan_history") or []],
                confidence=Confidence.from_dict(data.get("confidence") or {"overall": 0.0}),
                dialogue_state=DialogueState.from_dict(data.get("dialogue_state") or {}),
                execution_state=ExecutionState.from_dict(exec_data) if exec_data else None,
                error=data.get("error"),
                updated_at=float(data.get("updated_at", 0.0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed session snapshot: {e}") from e
