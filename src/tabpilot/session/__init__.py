"""Session layer: models, plan store, execution tracker, state machine, agent loop."""

from tabpilot.session.confidence import (
    evaluate_confidence,
    should_ask,
    should_assume_announce,
    should_proceed,
)
from tabpilot.session.execution import ExecutionPhase, ExecutionTracker
from tabpilot.session.models import (
    ActionType,
    CompletedStep,
    Confidence,
    ConfidenceZone,
    DialogueState,
    ExecutionState,
    FailedStep,
    MessageType,
    Plan,
    PlanStep,
    SessionState,
    SessionStatus,
    Turn,
)
from tabpilot.session.plan_store import PlanStore
from tabpilot.session.state_machine import (
    ALLOWED_TRANSITIONS,
    RoutingResult,
    SessionStateMachine,
    can_transition,
)
from tabpilot.session.agent_loop import AgentLoop, SessionUpdate, UpdateKind
from tabpilot.session.manager import SessionManager

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ActionType",
    "AgentLoop",
    "CompletedStep",
    "Confidence",
    "ConfidenceZone",
    "DialogueState",
    "ExecutionPhase",
    "ExecutionState",
    "ExecutionTracker",
    "FailedStep",
    "MessageType",
    "Plan",
    "PlanStep",
    "PlanStore",
    "RoutingResult",
    "SessionManager",
    "SessionState",
    "SessionStateMachine",
    "SessionStatus",
    "SessionUpdate",
    "Turn",
    "UpdateKind",
    "can_transition",
    "evaluate_confidence",
    "should_ask",
    "should_assume_announce",
    "should_proceed",
]
