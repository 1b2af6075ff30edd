"""Tests for the bounded audit log."""

from __future__ import annotations

import pytest

from tabpilot.audit import AuditLog
from tabpilot.session.state_machine import SessionStateMachine
from tabpilot.storage.sessions import InMemorySessionStore
from tests.utils import make_confidence, make_plan


class TestAuditLog:
    def test_record_and_filter(self) -> None:
        log = AuditLog(capacity=10)
        log.record(1, "transition", {"from": "idle", "to": "planning"})
        log.record(2, "transition")
        log.record(1, "rejected", {"operation": "approve the plan"})

        assert len(log) == 3
        assert [e.kind for e in log.events(tab_id=1)] == ["transition", "rejected"]
        assert [e.tab_id for e in log.events(kind="transition")] == [1, 2]
        assert log.events(tab_id=2, kind="rejected") == []

    def test_drops_oldest_at_capacity(self) -> None:
        """Test that a full log evicts the oldest event first."""
        log = AuditLog(capacity=3)
        for i in range(5):
            log.record(1, "step", {"index": i})

        assert len(log) == 3
        assert log.dropped == 2
        assert [e.detail["index"] for e in log] == [2, 3, 4]

    def test_clear_resets_dropped(self) -> None:
        log = AuditLog(capacity=1)
        log.record(1, "a")
        log.record(1, "b")
        log.clear()
        assert len(log) == 0
        assert log.dropped == 0

    def test_detail_is_copied(self) -> None:
        detail = {"version": 1}
        event = AuditLog().record(1, "plan", detail)
        detail["version"] = 2
        assert event.to_dict()["detail"] == {"version": 1}

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            AuditLog(capacity=0)


class TestMachineAuditTrail:
    """Events recorded by the state machine."""

    async def test_transitions_are_recorded(self) -> None:
        audit = AuditLog()
        machine = SessionStateMachine(5, InMemorySessionStore(), audit=audit)
        await machine.submit_task("Click the Login button")
        await machine.set_plan_with_confidence(make_plan(), make_confidence(0.95))
        await machine.approve_plan()

        transitions = [(e.detail["from"], e.detail["to"]) for e in audit.events(5, "transition")]
        assert transitions == [
            ("idle", "planning"),
            ("planning", "awaiting_approval"),
            ("awaiting_approval", "executing"),
        ]
        plan_event = audit.events(5, "plan")[0]
        assert plan_event.detail["version"] == 1
        assert plan_event.detail["zone"] == "proceed"

    async def test_sessions_share_one_log(self) -> None:
        audit = AuditLog()
        store = InMemorySessionStore()
        first = SessionStateMachine(1, store, audit=audit)
        second = SessionStateMachine(2, store, audit=audit)
        await first.submit_task("A")
        await second.submit_task("B")
        assert {e.tab_id for e in audit.events(kind="transition")} == {1, 2}
