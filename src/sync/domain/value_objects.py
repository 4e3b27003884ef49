"""
Sync Value Objects
==================

Immutable value objects and small state machines for the sync module.

- RemoteRef: tagged union for remote fields that arrive either as a scalar
  or as a ``{"value": ..., "link": ...}`` reference object
- CircuitBreaker: single-threshold closed/open state machine gating polls
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from src.config import CircuitState

# Keys a reference object may carry its identifier under, in preference order
_REFERENCE_ID_KEYS = ("value", "sys_id", "id")


@dataclass(frozen=True)
class ScalarRef:
    """Remote field delivered as a plain value."""
    value: Optional[str]


@dataclass(frozen=True)
class LinkRef:
    """Remote field delivered as a reference object with an identifier."""
    id: Optional[str]
    display_value: Optional[str] = None


RemoteRef = Union[ScalarRef, LinkRef]


def parse_ref(raw: Any) -> RemoteRef:
    """Classify a raw remote field as a scalar or a reference."""
    if isinstance(raw, dict):
        ref_id = None
        for key in _REFERENCE_ID_KEYS:
            if raw.get(key) not in (None, ""):
                ref_id = str(raw[key])
                break
        display = raw.get("display_value")
        return LinkRef(id=ref_id, display_value=str(display) if display is not None else None)
    if raw is None or raw == "":
        return ScalarRef(value=None)
    return ScalarRef(value=str(raw))


def normalize_ref(raw: Any) -> Optional[str]:
    """
    Resolve a remote field to a single identifier.

    Prefers the reference's identifier, falling back to the display value of
    the reference, then to the raw scalar.
    """
    ref = parse_ref(raw)
    if isinstance(ref, LinkRef):
        return ref.id or ref.display_value
    return ref.value


@dataclass
class CircuitBreaker:
    """
    Single-threshold circuit breaker.

    CLOSED: polls run. Each failure increments the consecutive count; reaching
            the threshold opens the circuit.
    OPEN:   polls are skipped. Only a passing health check closes it again.

    There is no timed half-open state: re-closing always requires an
    explicit health check.
    """

    threshold: int = 1
    state: str = CircuitState.CLOSED
    consecutive_failures: int = 0

    def __post_init__(self):
        if self.threshold < 1:
            raise ValueError("threshold must be at least 1")

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def record_success(self) -> None:
        """A poll completed; failures no longer consecutive."""
        self.consecutive_failures = 0

    def record_failure(self) -> bool:
        """
        Count a failure.

        Returns:
            True if this failure tripped the circuit open
        """
        self.consecutive_failures += 1
        if self.state == CircuitState.CLOSED and self.consecutive_failures >= self.threshold:
            self.state = CircuitState.OPEN
            return True
        return False

    def health_check_passed(self) -> bool:
        """
        Close the circuit after a passing health check.

        Returns:
            True if the circuit was open and is now closed
        """
        was_open = self.is_open
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        return was_open
