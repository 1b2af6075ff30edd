"""Error kinds raised by the dialogue core.

Structural and input errors (ValidationError, OrderingError, TransitionError)
are raised before any state is touched. ExternalFailure wraps a failed
planner, executor or store call and carries the last-known-good status and
plan version so the caller can decide whether to retry.
"""

from __future__ import annotations

from dataclasses import dataclass


class TabPilotError(Exception):
    """Base class for all tabpilot errors."""


class ValidationError(TabPilotError):
    """Malformed plan, confidence record, snapshot or planner response."""


class OrderingError(TabPilotError):
    """Out-of-sequence step completion."""

    def __init__(self, expected: int, received: int) -> None:
        self.expected = expected
        self.received = received
        super().__init__(
            f"Step {received} completed out of order (expected step index {expected})"
        )


class TransitionError(TabPilotError):
    """Illegal state transition requested."""

    def __init__(self, operation: str, status: str) -> None:
        self.operation = operation
        self.status = status
        super().__init__(f"Cannot {operation} while session is '{status}'")


class ExternalFailure(TabPilotError):
    """A collaborator call (planner, executor, store) failed.

    Attributes:
        status: Session status at the time of failure (last-known-good).
        plan_version: Version of the last valid plan, or None.
    """

    def __init__(
        self,
        message: str,
        *,
        status: str | None = None,
        plan_version: int | None = None,
    ) -> None:
        self.status = status
        self.plan_version = plan_version
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is None:
            return base
        return f"{base} (status={self.status}, plan_version={self.plan_version})"


class StoreError(ExternalFailure):
    """Session or permission store read/write failed."""


@dataclass(frozen=True, slots=True)
class IterationLimitReached:
    """Marker for a forced transition to awaiting_approval.

    Not raised. Attached to the routing result when the refine bound is hit,
    so callers can tell the plan was approved for review on the bound rather
    than on confidence.
    """

    iteration: int
    max_iterations: int
    plan_version: int
