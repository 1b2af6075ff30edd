"""Tests for the per-tab session registry."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from tabpilot.audit import AuditLog
from tabpilot.config.schema import Config, DialogueConfig
from tabpilot.session.manager import SessionManager
from tabpilot.session.models import SessionStatus
from tabpilot.storage.sessions import InMemorySessionStore, YamlSessionStore
from tests.utils import make_confidence, make_plan


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def manager(store: InMemorySessionStore) -> SessionManager:
    return SessionManager(store)


# =============================================================================
# Session Lifecycle Tests
# =============================================================================


class TestSessionLifecycle:
    """Tests for session creation, caching and closing."""

    async def test_get_session_creates_idle_session(self, manager: SessionManager) -> None:
        machine = await manager.get_session(1)
        assert machine.tab_id == 1
        assert machine.status is SessionStatus.IDLE
        assert manager.cached(1)

    async def test_get_session_is_cached(self, manager: SessionManager) -> None:
        first = await manager.get_session(1)
        assert await manager.get_session(1) is first
        assert await manager.get_session(2) is not first

    async def test_concurrent_first_access_creates_one_machine(
        self, manager: SessionManager
    ) -> None:
        machines = await asyncio.gather(*(manager.get_session(4) for _ in range(5)))
        assert all(m is machines[0] for m in machines)

    async def test_evict_then_rehydrate(self, manager: SessionManager) -> None:
        """Test that an evicted session comes back from its checkpoint."""
        machine = await manager.get_session(3)
        await machine.submit_task("Search for shoes")
        manager.evict(3)
        assert not manager.cached(3)

        restored = await manager.get_session(3)
        assert restored is not machine
        assert restored.status is SessionStatus.PLANNING
        assert restored.get_state().current_task == "Search for shoes"

    async def test_close_session_deletes_snapshot(
        self, store: InMemorySessionStore
    ) -> None:
        audit = AuditLog()
        manager = SessionManager(store, audit=audit)
        machine = await manager.get_session(5)
        await machine.submit_task("Task")

        await manager.close_session(5)

        assert await store.load(5) is None
        assert not manager.cached(5)
        assert audit.events(5, "closed")
        assert (await manager.get_session(5)).status is SessionStatus.IDLE

    async def test_list_sessions(self, manager: SessionManager) -> None:
        await (await manager.get_session(2)).submit_task("B")
        await manager.get_session(1)
        assert await manager.list_sessions() == ["1", "2"]


class TestSessionIsolation:
    async def test_tabs_do_not_share_state(self, manager: SessionManager) -> None:
        first = await manager.get_session(1)
        second = await manager.get_session(2)
        await first.submit_task("First task")
        await first.set_plan_with_confidence(make_plan(), make_confidence(0.95))

        assert second.status is SessionStatus.IDLE
        await second.submit_task("Second task")
        result = await second.set_plan_with_confidence(make_plan(), make_confidence(0.6))
        assert result.status is SessionStatus.REFINING
        assert first.status is SessionStatus.AWAITING_APPROVAL

    async def test_concurrent_sessions(self, manager: SessionManager) -> None:
        async def run(tab: int) -> SessionStatus:
            machine = await manager.get_session(tab)
            await machine.submit_task(f"Task {tab}")
            await machine.set_plan_with_confidence(make_plan(), make_confidence(0.95))
            await machine.approve_plan()
            await machine.complete_step(0, "ok")
            return machine.status

        statuses = await asyncio.gather(*(run(tab) for tab in range(1, 6)))
        assert statuses == [SessionStatus.COMPLETED] * 5


class TestConfigWiring:
    async def test_dialogue_config_applied(self, store: InMemorySessionStore) -> None:
        config = Config(dialogue=DialogueConfig(max_refine_iterations=1, max_plan_steps=2))
        manager = SessionManager(store, config)
        machine = await manager.get_session(1)
        assert machine.get_state().dialogue_state.max_refine_iterations == 1

        await machine.submit_task("Task")
        first = await machine.set_plan_with_confidence(make_plan(), make_confidence(0.6))
        result = await machine.set_plan_with_confidence(
            make_plan(), make_confidence(0.6), based_on_version=first.plan.version
        )
        assert result.forced

    async def test_audit_capacity_from_config(self, store: InMemorySessionStore) -> None:
        config = Config()
        config.audit.capacity = 2
        manager = SessionManager(store, config)
        assert manager.audit.capacity == 2

    async def test_yaml_backed_manager_survives_restart(self, tmp_path: Path) -> None:
        machine = await SessionManager(YamlSessionStore(tmp_path)).get_session(8)
        await machine.submit_task("Persisted task")

        fresh = SessionManager(YamlSessionStore(tmp_path))
        assert await fresh.list_sessions() == ["8"]
        restored = await fresh.get_session(8)
        assert restored.get_state().current_task == "Persisted task"
