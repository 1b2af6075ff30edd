"""Session checkpoint storage.

A SessionStore holds one snapshot (a plain dict, see SessionState.to_dict)
per tab. The state machine writes a snapshot after every mutation and reads
it back when a host restarts, so the store, not process memory, is the
durability boundary.

Files written by YamlSessionStore live at:
  <directory>/tab-<tab_id>.yaml
"""

from __future__ import annotations

import asyncio
import copy
import os
import re
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml
from filelock import FileLock, Timeout

from tabpilot.errors import StoreError
from tabpilot.logging import get_logger

log = get_logger("storage")

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")


@runtime_checkable
class SessionStore(Protocol):
    """Durable (possibly volatile) per-tab snapshot storage."""

    async def save(self, tab_id: int | str, snapshot: dict[str, Any]) -> None: ...

    async def load(self, tab_id: int | str) -> dict[str, Any] | None:
        """Return the stored snapshot, or None so the caller uses a default."""
        ...

    async def delete(self, tab_id: int | str) -> None: ...

    async def list_tabs(self) -> list[str]: ...


class InMemorySessionStore:
    """Volatile store, the equivalent of browser session storage.

    Snapshots are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, dict[str, Any]] = {}

    async def save(self, tab_id: int | str, snapshot: dict[str, Any]) -> None:
        self._snapshots[str(tab_id)] = copy.deepcopy(snapshot)

    async def load(self, tab_id: int | str) -> dict[str, Any] | None:
        snapshot = self._snapshots.get(str(tab_id))
        return copy.deepcopy(snapshot) if snapshot is not None else None

    async def delete(self, tab_id: int | str) -> None:
        self._snapshots.pop(str(tab_id), None)

    async def list_tabs(self) -> list[str]:
        return sorted(self._snapshots)


class YamlSessionStore:
    """One YAML file per tab, written atomically under a file lock.

    Blocking file I/O runs in a worker thread so the event loop keeps
    serving other tabs.
    """

    def __init__(self, directory: str | Path, lock_timeout: float = 10.0) -> None:
        self._directory = Path(directory).expanduser()
        self._lock_timeout = lock_timeout

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, tab_id: int | str) -> Path:
        key = str(tab_id)
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Tab id {key!r} cannot be used as a file name")
        return self._directory / f"tab-{key}.yaml"

    def _write(self, tab_id: int | str, snapshot: dict[str, Any]) -> None:
        path = self.path_for(tab_id)
        temp_path = path.with_suffix(".yaml.tmp")
        self._directory.mkdir(parents=True, exist_ok=True)

        with FileLock(path.with_suffix(".lock"), timeout=self._lock_timeout):
            try:
                with open(temp_path, "w", encoding="utf-8") as f:
                    yaml.safe_dump(
                        snapshot, f, default_flow_style=False, allow_unicode=True, sort_keys=False
                    )
                os.replace(temp_path, path)
            except Exception:
                if temp_path.exists():
                    temp_path.unlink()
                raise

    def _read(self, tab_id: int | str) -> dict[str, Any] | None:
        path = self.path_for(tab_id)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            log.warning("Ignoring corrupt session file %s: %s", path, e)
            return None
        if not isinstance(data, dict):
            log.warning("Ignoring session file %s: not a mapping", path)
            return None
        return data

    async def save(self, tab_id: int | str, snapshot: dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._write, tab_id, snapshot)
        except (OSError, yaml.YAMLError, Timeout) as e:
            raise StoreError(f"Failed to save session for tab {tab_id}: {e}") from e
        log.debug("checkpointed to %s", self._directory, extra={"tab_id": tab_id})

    async def load(self, tab_id: int | str) -> dict[str, Any] | None:
        try:
            return await asyncio.to_thread(self._read, tab_id)
        except OSError as e:
            raise StoreError(f"Failed to load session for tab {tab_id}: {e}") from e

    async def delete(self, tab_id: int | str) -> None:
        path = self.path_for(tab_id)
        try:
            path.unlink(missing_ok=True)
            path.with_suffix(".lock").unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to delete session for tab {tab_id}: {e}") from e

    async def list_tabs(self) -> list[str]:
        if not self._directory.exists():
            return []
        return sorted(p.stem.removeprefix("tab-") for p in self._directory.glob("tab-*.yaml"))
