"""Per-site permission records.

Permission modes:
- 'ask': confirm every action on the site (default)
- 'autonomous': run allowed actions without confirmation

Records are keyed by normalised domain (hostname, lower-case, no "www.").
"""

from __future__ import annotations

import asyncio
import copy
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlparse

import yaml
from filelock import FileLock, Timeout

from tabpilot.errors import StoreError, ValidationError
from tabpilot.logging import get_logger

log = get_logger("permissions")

DEFAULT_ALLOWED_ACTIONS = ("click", "scroll", "type", "select")


class PermissionMode(Enum):
    ASK = "ask"
    AUTONOMOUS = "autonomous"


@dataclass
class SitePermission:
    """Stored automation permission for one domain."""

    mode: PermissionMode = PermissionMode.ASK
    allowed_actions: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ACTIONS))
    denied_actions: list[str] = field(default_factory=list)
    created_at: float | None = None
    updated_at: float | None = None
    use_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "allowed_actions": list(self.allowed_actions),
            "denied_actions": list(self.denied_actions),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "use_count": self.use_count,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SitePermission:
        try:
            mode = PermissionMode(data.get("mode", "ask"))
        except ValueError:
            raise ValidationError(f"Invalid permission mode: {data.get('mode')!r}") from None
        allowed = data.get("allowed_actions")
        return cls(
            mode=mode,
            allowed_actions=list(DEFAULT_ALLOWED_ACTIONS if allowed is None else allowed),
            denied_actions=list(data.get("denied_actions") or []),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            use_count=int(data.get("use_count", 0)),
        )


def normalize_domain(domain: str) -> str:
    """Normalise a URL or domain string for storage."""
    domain = domain.strip()
    if "://" in domain:
        domain = urlparse(domain).hostname or domain
    domain = domain.lower()
    return domain.removeprefix("www.")


def get_domain_from_url(url: str) -> str:
    return urlparse(url).hostname or url


@runtime_checkable
class PermissionStore(Protocol):
    async def get_permission(self, domain: str) -> SitePermission | None: ...

    async def set_permission(
        self, domain: str, record: SitePermission | Mapping[str, Any]
    ) -> SitePermission: ...

    async def remove_permission(self, domain: str) -> None: ...

    async def list_permissions(self) -> dict[str, SitePermission]: ...


def _stamp(existing: SitePermission | None, record: SitePermission) -> SitePermission:
    now = time.time()
    record = copy.deepcopy(record)
    record.created_at = existing.created_at if existing and existing.created_at else now
    record.updated_at = now
    return record


def _coerce(record: SitePermission | Mapping[str, Any]) -> SitePermission:
    if isinstance(record, SitePermission):
        return record
    return SitePermission.from_dict(record)


class InMemoryPermissionStore:
    def __init__(self, records: Mapping[str, SitePermission] | None = None) -> None:
        self._records: dict[str, SitePermission] = {
            normalize_domain(d): copy.deepcopy(r) for d, r in (records or {}).items()
        }

    async def get_permission(self, domain: str) -> SitePermission | None:
        record = self._records.get(normalize_domain(domain))
        return copy.deepcopy(record) if record else None

    async def set_permission(
        self, domain: str, record: SitePermission | Mapping[str, Any]
    ) -> SitePermission:
        key = normalize_domain(domain)
        stored = _stamp(self._records.get(key), _coerce(record))
        self._records[key] = stored
        log.info("Set permission for %s: %s", key, stored.mode.value)
        return copy.deepcopy(stored)

    async def remove_permission(self, domain: str) -> None:
        self._records.pop(normalize_domain(domain), None)

    async def list_permissions(self) -> dict[str, SitePermission]:
        return copy.deepcopy(self._records)


class YamlPermissionStore:
    """All domains in one YAML file, updated read-modify-write under a lock."""

    def __init__(self, path: str | Path, lock_timeout: float = 10.0) -> None:
        self._path = Path(path).expanduser()
        self._lock_path = self._path.with_suffix(".lock")
        self._lock_timeout = lock_timeout

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, SitePermission]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            log.warning("Ignoring corrupt permission file %s: %s", self._path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {
            domain: SitePermission.from_dict(record)
            for domain, record in data.items()
            if isinstance(record, dict)
        }

    def _save(self, records: dict[str, SitePermission]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w", encoding="utf-8") as f:
            yaml.safe_dump(
                {d: r.to_dict() for d, r in records.items()},
                f,
                default_flow_style=False,
                sort_keys=True,
            )

    def _atomic_update(
        self, modifier: Callable[[dict[str, SitePermission]], SitePermission | None]
    ) -> Any:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(self._lock_path, timeout=self._lock_timeout):
            records = self._load()
            result = modifier(records)
            self._save(records)
            return result

    async def get_permission(self, domain: str) -> SitePermission | None:
        records = await asyncio.to_thread(self._load)
        return records.get(normalize_domain(domain))

    async def set_permission(
        self, domain: str, record: SitePermission | Mapping[str, Any]
    ) -> SitePermission:
        key = normalize_domain(domain)
        incoming = _coerce(record)

        def modifier(records: dict[str, SitePermission]) -> SitePermission:
            records[key] = _stamp(records.get(key), incoming)
            return records[key]

        try:
            stored = await asyncio.to_thread(self._atomic_update, modifier)
        except (OSError, Timeout) as e:
            raise StoreError(f"Failed to save permission for {key}: {e}") from e
        log.info("Set permission for %s: %s", key, incoming.mode.value)
        return stored

    async def remove_permission(self, domain: str) -> None:
        key = normalize_domain(domain)

        def modifier(records: dict[str, SitePermission]) -> None:
            records.pop(key, None)

        try:
            await asyncio.to_thread(self._atomic_update, modifier)
        except (OSError, Timeout) as e:
            raise StoreError(f"Failed to remove permission for {key}: {e}") from e

    async def list_permissions(self) -> dict[str, SitePermission]:
        return await asyncio.to_thread(self._load)


# -----------------------------------------------------------------------------
# Record helpers
# -----------------------------------------------------------------------------


async def enable_autonomous_mode(
    store: PermissionStore, domain: str, allowed_actions: Iterable[str] | None = None
) -> SitePermission:
    existing = await store.get_permission(domain) or SitePermission()
    existing.mode = PermissionMode.AUTONOMOUS
    if allowed_actions is not None:
        existing.allowed_actions = list(allowed_actions)
    return await store.set_permission(domain, existing)


async def enable_ask_mode(store: PermissionStore, domain: str) -> SitePermission:
    existing = await store.get_permission(domain) or SitePermission()
    existing.mode = PermissionMode.ASK
    return await store.set_permission(domain, existing)


async def allow_action(store: PermissionStore, domain: str, action: str) -> SitePermission:
    existing = await store.get_permission(domain) or SitePermission()
    if action not in existing.allowed_actions:
        existing.allowed_actions.append(action)
    existing.denied_actions = [a for a in existing.denied_actions if a != action]
    return await store.set_permission(domain, existing)


async def deny_action(store: PermissionStore, domain: str, action: str) -> SitePermission:
    existing = await store.get_permission(domain) or SitePermission()
    existing.allowed_actions = [a for a in existing.allowed_actions if a != action]
    if action not in existing.denied_actions:
        existing.denied_actions.append(action)
    return await store.set_permission(domain, existing)


async def increment_use_count(store: PermissionStore, domain: str) -> None:
    existing = await store.get_permission(domain)
    if existing is not None:
        existing.use_count += 1
        await store.set_permission(domain, existing)


async def is_action_allowed(store: PermissionStore, domain: str, action: str) -> bool:
    """True only for autonomous sites that allow and do not deny `action`."""
    permission = await store.get_permission(domain)
    if permission is None or permission.mode is not PermissionMode.AUTONOMOUS:
        return False
    if action in permission.denied_actions:
        return False
    return action in permission.allowed_actions
