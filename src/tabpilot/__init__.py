"""tabpilot: per-tab plan, confirm, execute sessions for a supervised web agent."""

__version__ = "0.1.0"

# Public API
from tabpilot.audit import AuditEvent, AuditLog
from tabpilot.config import Config, get_config, load_config
from tabpilot.errors import (
    ExternalFailure,
    IterationLimitReached,
    OrderingError,
    StoreError,
    TabPilotError,
    TransitionError,
    ValidationError,
)
from tabpilot.session import (
    AgentLoop,
    Confidence,
    ConfidenceZone,
    Plan,
    PlanStep,
    SessionManager,
    SessionState,
    SessionStateMachine,
    SessionStatus,
    SessionUpdate,
    UpdateKind,
    evaluate_confidence,
)
from tabpilot.executor import ActionExecutor, StepOutcome
from tabpilot.guards import InjectionDetector, KeywordRiskClassifier, RiskClassifier
from tabpilot.planner import HttpPlanner, PageContext, Planner, PlanResponse
from tabpilot.storage import (
    InMemoryPermissionStore,
    InMemorySessionStore,
    YamlPermissionStore,
    YamlSessionStore,
)

__all__ = [
    # Sessions
    "AgentLoop",
    "SessionManager",
    "SessionStateMachine",
    "SessionState",
    "SessionStatus",
    "SessionUpdate",
    "UpdateKind",
    # Plans
    "Confidence",
    "ConfidenceZone",
    "Plan",
    "PlanStep",
    "evaluate_confidence",
    # Collaborators
    "ActionExecutor",
    "HttpPlanner",
    "PageContext",
    "PlanResponse",
    "Planner",
    "StepOutcome",
    # Guards
    "InjectionDetector",
    "KeywordRiskClassifier",
    "RiskClassifier",
    # Storage
    "InMemoryPermissionStore",
    "InMemorySessionStore",
    "YamlPermissionStore",
    "YamlSessionStore",
    # Audit
    "AuditEvent",
    "AuditLog",
    # Config
    "Config",
    "get_config",
    "load_config",
    # Errors
    "ExternalFailure",
    "IterationLimitReached",
    "OrderingError",
    "StoreError",
    "TabPilotError",
    "TransitionError",
    "ValidationError",
]
