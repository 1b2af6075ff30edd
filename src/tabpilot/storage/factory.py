"""Build the configured stores."""

from __future__ import annotations

from pathlib import Path

from tabpilot.config.paths import SHORT_NAME, get_default_state_dir
from tabpilot.config.schema import Config
from tabpilot.storage.permissions import (
    InMemoryPermissionStore,
    PermissionStore,
    YamlPermissionStore,
)
from tabpilot.storage.sessions import InMemorySessionStore, SessionStore, YamlSessionStore


def create_session_store(config: Config, project_root: str | None = None) -> SessionStore:
    backend = config.storage.backend
    if backend == "memory":
        return InMemorySessionStore()
    if backend == "yaml":
        directory = config.storage.directory or get_default_state_dir(project_root)
        return YamlSessionStore(directory)
    raise ValueError(f"Unknown storage backend: {backend!r}")


def create_permission_store(config: Config, project_root: str | None = None) -> PermissionStore:
    if config.permissions.file:
        return YamlPermissionStore(config.permissions.file)
    if config.storage.backend == "yaml":
        base = Path(project_root) if project_root else Path.home()
        return YamlPermissionStore(base / SHORT_NAME / "permissions.yaml")
    return InMemoryPermissionStore()
