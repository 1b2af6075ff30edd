"""Per-tab session registry.

Sessions are rehydrated from the SessionStore the first time a tab is
touched in this process and cached afterwards. Each tab gets its own
SessionStateMachine; nothing mutable is shared between tabs.
"""

from __future__ import annotations

import asyncio

from tabpilot.audit import AuditLog
from tabpilot.config.schema import Config
from tabpilot.logging import get_logger
from tabpilot.session.plan_store import PlanStore
from tabpilot.session.state_machine import SessionStateMachine
from tabpilot.storage.sessions import SessionStore

log = get_logger("sessions")


class SessionManager:
    """Creates, caches and closes per-tab state machines."""

    def __init__(
        self,
        store: SessionStore,
        config: Config | None = None,
        audit: AuditLog | None = None,
    ) -> None:
        """Initialize the session manager.

        Args:
            store: Checkpoint target shared by all sessions (keyed by tab)
            config: Loaded configuration; defaults apply when omitted
            audit: Audit log injected into every session
        """
        self._store = store
        self._config = config or Config()
        self._audit = audit if audit is not None else AuditLog(self._config.audit.capacity)
        self._sessions: dict[str, SessionStateMachine] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def audit(self) -> AuditLog:
        return self._audit

    def _lock_for(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def get_session(self, tab_id: int | str) -> SessionStateMachine:
        """Return the tab's session, rehydrating it from the store once."""
        key = str(tab_id)
        async with self._lock_for(key):
            machine = self._sessions.get(key)
            if machine is None:
                machine = await SessionStateMachine.restore(
                    tab_id,
                    self._store,
                    config=self._config.dialogue,
                    plan_store=PlanStore(max_steps=self._config.dialogue.max_plan_steps),
                    audit=self._audit,
                )
                self._sessions[key] = machine
                log.debug("session loaded (%s)", machine.status.value, extra={"tab_id": tab_id})
            return machine

    def cached(self, tab_id: int | str) -> bool:
        return str(tab_id) in self._sessions

    async def list_sessions(self) -> list[str]:
        """Tabs with a stored snapshot or a live session in this process."""
        stored = await self._store.list_tabs()
        return sorted(set(stored) | set(self._sessions))

    def evict(self, tab_id: int | str) -> None:
        """Drop the in-process copy only; the stored snapshot survives."""
        self._sessions.pop(str(tab_id), None)
        self._locks.pop(str(tab_id), None)

    async def close_session(self, tab_id: int | str) -> None:
        """Forget the tab entirely (the browser tab was closed)."""
        self.evict(tab_id)
        await self._store.delete(tab_id)
        self._audit.record(tab_id, "closed")
        log.info("session closed", extra={"tab_id": tab_id})
