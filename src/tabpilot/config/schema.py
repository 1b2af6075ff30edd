"""Configuration schema dataclasses for tabpilot.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class DialogueConfig:
    """Bounds and thresholds for the plan/confirm dialogue.

    Example config.yaml:
        dialogue:
          max_refine_iterations: 3
          max_plan_steps: 5
          ask_threshold: 0.5
          proceed_threshold: 0.9
    """

    max_refine_iterations: int = 3  # Refine cycles before forced approval
    max_clarification_rounds: int = 3  # Questions asked before best-effort approval
    max_plan_steps: int = 5  # Upper bound on steps in a single plan
    ask_threshold: float = 0.5  # overall < this -> ask
    proceed_threshold: float = 0.9  # overall >= this -> proceed


@dataclass
class StorageConfig:
    """Session checkpoint storage."""

    backend: str = "memory"  # "memory" or "yaml"
    directory: str | None = None  # Directory for YAML session files


@dataclass
class PermissionsConfig:
    """Per-site permission storage and defaults."""

    file: str | None = None  # YAML permission file (None = in-memory)
    default_allowed_actions: list[str] = field(
        default_factory=lambda: ["click", "scroll", "type", "select"]
    )


@dataclass
class PlannerConfig:
    """Reasoning backend connection."""

    backend_url: str = "http://localhost:3000"
    provider: str = "groq"
    timeout: float = 60.0
    include_screenshots: bool = False


@dataclass
class AuditConfig:
    """Audit ring buffer."""

    capacity: int = 1000  # Oldest events are dropped beyond this


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, takes precedence over level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    dialogue: DialogueConfig = field(default_factory=DialogueConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    permissions: PermissionsConfig = field(default_factory=PermissionsConfig)
    planner: PlannerConfig = field(default_factory=PlannerConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    extra: dict[str, Any] = field(default_factory=dict)  # Unknown top-level keys
    sources: dict[str, str] = field(default_factory=dict)  # Dotted key -> layer that set it
