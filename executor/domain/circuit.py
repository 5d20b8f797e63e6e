"""Circuit breaker state held per operation key."""
from __future__ import annotations

import enum
from dataclasses import dataclass


class CircuitPhase(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(slots=True)
class CircuitState:
    """Failure bookkeeping for one key. Never persisted."""

    failure_count: int = 0
    last_failure_at: float = 0.0
    phase: CircuitPhase = CircuitPhase.CLOSED

    def to_dict(self) -> dict[str, object]:
        return {
            "failure_count": self.failure_count,
            "last_failure_at": self.last_failure_at,
            "phase": self.phase.value,
        }
