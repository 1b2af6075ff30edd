"""Bounded audit trail of session transitions.

An AuditLog is owned by whoever wires the sessions together and injected
into each state machine. Once `capacity` events are held, recording a new
one drops the oldest.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

DEFAULT_CAPACITY = 1000


@dataclass(frozen=True, slots=True)
class AuditEvent:
    """One recorded event.

    Attributes:
        tab_id: Session the event belongs to
        kind: Event kind ("transition", "rejected", "plan", "step", ...)
        detail: Free-form event payload
        timestamp: Unix time the event was recorded
    """

    tab_id: int | str
    kind: str
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tab_id": self.tab_id,
            "kind": self.kind,
            "detail": dict(self.detail),
            "timestamp": self.timestamp,
        }


class AuditLog:
    """Ring buffer of AuditEvents with drop-oldest eviction."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("Audit capacity must be at least 1")
        self._events: deque[AuditEvent] = deque(maxlen=capacity)
        self._dropped = 0

    @property
    def capacity(self) -> int:
        return self._events.maxlen or 0

    @property
    def dropped(self) -> int:
        """Number of events evicted since creation or the last clear()."""
        return self._dropped

    def record(self, tab_id: int | str, kind: str, detail: dict[str, Any] | None = None) -> AuditEvent:
        event = AuditEvent(tab_id=tab_id, kind=kind, detail=dict(detail or {}))
        if len(self._events) == self._events.maxlen:
            self._dropped += 1
        self._events.append(event)
        return event

    def events(self, tab_id: int | str | None = None, kind: str | None = None) -> list[AuditEvent]:
        """Return matching events, oldest first."""
        return [
            e
            for e in self._events
            if (tab_id is None or e.tab_id == tab_id) and (kind is None or e.kind == kind)
        ]

    def clear(self) -> None:
        self._events.clear()
        self._dropped = 0

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[AuditEvent]:
        return iter(list(self._events))
