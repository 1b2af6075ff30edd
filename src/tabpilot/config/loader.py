"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reload support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import yaml

from tabpilot.config.paths import get_config_paths
from tabpilot.config.schema import (
    AuditConfig,
    Config,
    DialogueConfig,
    LoggingConfig,
    PermissionsConfig,
    PlannerConfig,
    StorageConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("tabpilot.config")

_cached_config: Config | None = None

_reload_callbacks: list[Callable[[Config], None]] = []

_KNOWN_KEYS = {"dialogue", "storage", "permissions", "planner", "audit", "logging"}

# A plan must be allowed at least one step; zero refines or clarifications is valid
_DIALOGUE_MINIMUMS = {
    "max_refine_iterations": 0,
    "max_clarification_rounds": 0,
    "max_plan_steps": 1,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


ConfigLayer = tuple[str, dict[str, Any]]


def merge_layers(layers: Sequence[ConfigLayer]) -> tuple[dict[str, Any], dict[str, str]]:
    """Merge config layers in order (later overrides earlier).

    Nested dicts merge key by key, lists are replaced whole and a None value
    never overrides (so partial files stay partial).

    Returns:
        The merged dict, and for every leaf key in dotted form
        ("dialogue.ask_threshold") the name of the layer that set it.
    """
    merged: dict[str, Any] = {}
    sources: dict[str, str] = {}
    for name, data in layers:
        if data:
            _merge_into(merged, data, name, sources, "")
    return merged, sources


def _merge_into(
    target: dict[str, Any],
    override: dict[str, Any],
    source: str,
    sources: dict[str, str],
    prefix: str,
) -> None:
    for key, value in override.items():
        if value is None:
            continue
        dotted = f"{prefix}{key}"
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            current = dict(current)
            _merge_into(current, value, source, sources, dotted + ".")
            target[key] = current
            continue

        for stale in [k for k in sources if k == dotted or k.startswith(dotted + ".")]:
            del sources[stale]
        if isinstance(value, dict):
            target[key] = {}
            _merge_into(target[key], value, source, sources, dotted + ".")
        else:
            target[key] = value
            sources[dotted] = source


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables (highest priority)."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("TABPILOT_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    state_dir = os.environ.get("TABPILOT_STATE_DIR")
    if state_dir:
        overrides.setdefault("storage", {}).update(backend="yaml", directory=state_dir)

    backend_url = os.environ.get("TABPILOT_BACKEND_URL")
    if backend_url:
        overrides.setdefault("planner", {})["backend_url"] = backend_url

    return overrides


def _dialogue_from_dict(data: dict[str, Any]) -> DialogueConfig:
    defaults = DialogueConfig()
    dialogue = DialogueConfig(
        max_refine_iterations=int(data.get("max_refine_iterations", defaults.max_refine_iterations)),
        max_clarification_rounds=int(
            data.get("max_clarification_rounds", defaults.max_clarification_rounds)
        ),
        max_plan_steps=int(data.get("max_plan_steps", defaults.max_plan_steps)),
        ask_threshold=float(data.get("ask_threshold", defaults.ask_threshold)),
        proceed_threshold=float(data.get("proceed_threshold", defaults.proceed_threshold)),
    )

    if not 0.0 <= dialogue.ask_threshold <= dialogue.proceed_threshold <= 1.0:
        _log.warning(
            "Ignoring confidence thresholds ask=%s proceed=%s (need 0 <= ask <= proceed <= 1)",
            dialogue.ask_threshold,
            dialogue.proceed_threshold,
        )
        dialogue.ask_threshold = defaults.ask_threshold
        dialogue.proceed_threshold = defaults.proceed_threshold

    for name, minimum in _DIALOGUE_MINIMUMS.items():
        if getattr(dialogue, name) < minimum:
            _log.warning(
                "Ignoring dialogue.%s=%s (must be at least %d)",
                name,
                getattr(dialogue, name),
                minimum,
            )
            setattr(dialogue, name, getattr(defaults, name))

    return dialogue


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass."""
    dialogue = _dialogue_from_dict(data.get("dialogue", {}) or {})

    storage_data = data.get("storage", {}) or {}
    storage = StorageConfig(
        backend=storage_data.get("backend", "memory"),
        directory=storage_data.get("directory"),
    )

    perms_data = data.get("permissions", {}) or {}
    permissions = PermissionsConfig(file=perms_data.get("file"))
    allowed = perms_data.get("default_allowed_actions")
    if isinstance(allowed, list):
        permissions.default_allowed_actions = [str(a) for a in allowed]

    planner_data = data.get("planner", {}) or {}
    planner_defaults = PlannerConfig()
    planner = PlannerConfig(
        backend_url=planner_data.get("backend_url", planner_defaults.backend_url),
        provider=planner_data.get("provider", planner_defaults.provider),
        timeout=float(planner_data.get("timeout", planner_defaults.timeout)),
        include_screenshots=bool(planner_data.get("include_screenshots", False)),
    )

    audit_data = data.get("audit", {}) or {}
    audit = AuditConfig(capacity=int(audit_data.get("capacity", AuditConfig().capacity)))

    log_data = data.get("logging", {}) or {}
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}

    return Config(
        dialogue=dialogue,
        storage=storage,
        permissions=permissions,
        planner=planner,
        audit=audit,
        logging=logging_config,
        extra=extra,
    )


def load_config(project_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config ($project_root/.tabpilot/config.yaml)
    3. User config
    4. System config

    Args:
        project_root: Project directory for project-level config.
        reload: Force reload even if cached.
    """
    global _cached_config

    if _cached_config is not None and not reload and project_root is None:
        return _cached_config

    layers: list[ConfigLayer] = []

    for path in get_config_paths(project_root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            layers.append((str(path), config_data))

    env_config = env_overrides()
    if env_config:
        layers.append(("environment", env_config))

    merged, sources = merge_layers(layers)
    config = dict_to_config(merged)
    config.sources = sources
    for key in sorted(sources):
        if key.startswith("dialogue."):
            _log.debug("%s from %s", key, sources[key])

    # Cache only global config (no project_root)
    if project_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config (useful for testing)."""
    global _cached_config
    _cached_config = None


def reload_config(project_root: str | None = None) -> Config:
    """Reload config from files and notify callbacks."""
    config = load_config(project_root=project_root, reload=True)

    for callback in _reload_callbacks:
        try:
            callback(config)
        except Exception as e:
            _log.warning("Config reload callback error: %s", e)

    return config


def on_config_reload(callback: Callable[[Config], None]) -> Callable[[], None]:
    """Register a callback to be called when config is reloaded.

    Returns:
        A function to unregister the callback.
    """
    _reload_callbacks.append(callback)

    def unregister() -> None:
        if callback in _reload_callbacks:
            _reload_callbacks.remove(callback)

    return unregister
