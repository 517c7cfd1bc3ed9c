"""
Data models for the query load engine.

This module defines the value types that flow through the engine: the
query request built per iteration, the per-scenario configuration, the
outcome recorded for every request and the append-only outcome log.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterator, Optional

NANOSECONDS_PER_SECOND = 1_000_000_000


class TimestampUnit(Enum):
    """Unit used to encode ``start``/``end`` on the wire."""

    SECONDS = "seconds"
    MILLISECONDS = "milliseconds"
    NANOSECONDS = "nanoseconds"

    def from_ns(self, value_ns: int) -> int:
        """Convert a nanosecond instant to this unit (truncating)."""
        if self is TimestampUnit.SECONDS:
            return value_ns // NANOSECONDS_PER_SECOND
        if self is TimestampUnit.MILLISECONDS:
            return value_ns // 1_000_000
        return value_ns

    @property
    def resolution_ns(self) -> int:
        """Length of one wire unit in nanoseconds."""
        if self is TimestampUnit.SECONDS:
            return NANOSECONDS_PER_SECOND
        if self is TimestampUnit.MILLISECONDS:
            return 1_000_000
        return 1


class ErrorKind(Enum):
    """Per-request failure classes. Both are recorded, never fatal."""

    TRANSPORT = "transport_error"
    TIMEOUT = "timeout_error"


@dataclass(frozen=True)
class QueryRequest:
    """
    A single range query, built fresh for every iteration.

    Attributes:
        query: PromQL/MetricsQL expression
        start_ns: Range start as Unix nanoseconds
        end_ns: Range end as Unix nanoseconds
        step_seconds: Resolution step
    """

    query: str
    start_ns: int
    end_ns: int
    step_seconds: int = 60

    @property
    def step(self) -> str:
        """Step in the duration format the query API expects (e.g. ``60s``)."""
        return f"{self.step_seconds}s"

    @property
    def range_seconds(self) -> float:
        """Covered time range in seconds."""
        return (self.end_ns - self.start_ns) / NANOSECONDS_PER_SECOND


@dataclass(frozen=True)
class ScenarioConfig:
    """
    One named scenario: a query spec driven by N workers for a duration.

    Attributes:
        name: Scenario name, unique within a run
        query_spec_name: Name of the QuerySpec to resolve from the registry
        concurrency: Number of independent workers
        duration_seconds: Wall-clock duration of the scenario
    """

    name: str
    query_spec_name: str
    concurrency: int = 1
    duration_seconds: float = 0.0

    def __post_init__(self):
        if not self.name:
            raise ValueError("scenario name must be non-empty")
        if self.concurrency < 0:
            raise ValueError(f"scenario {self.name!r}: concurrency must be >= 0")
        if self.duration_seconds < 0:
            raise ValueError(f"scenario {self.name!r}: duration must be >= 0")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "query_spec_name": self.query_spec_name,
            "concurrency": self.concurrency,
            "duration_seconds": self.duration_seconds,
        }


@dataclass(frozen=True)
class RequestOutcome:
    """
    Recorded result of one query attempt.

    Attributes:
        scenario_name: Scenario that issued the request
        timestamp: When the request was sent (UTC)
        status_code: HTTP status, 0 when no response was received
        latency_ms: Time from send to fully read response (or error)
        error: Transport/timeout classification, None when a response arrived
        error_message: Short description of the failure, if any
    """

    scenario_name: str
    timestamp: datetime
    status_code: int
    latency_ms: float
    error: Optional[ErrorKind] = None
    error_message: Optional[str] = None

    @property
    def is_success(self) -> bool:
        """Check if the request got a 2xx response."""
        return self.error is None and 200 <= self.status_code <= 299

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "scenario_name": self.scenario_name,
            "timestamp": self.timestamp.isoformat(),
            "status_code": self.status_code,
            "latency_ms": round(self.latency_ms, 3),
            "error": self.error.value if self.error else None,
            "error_message": self.error_message,
        }


class OutcomeLog:
    """
    Run-scoped, append-only log of request outcomes.

    Appends are serialized with a lock so workers may record from any
    task or thread. Outcomes are never modified once appended.
    """

    def __init__(self):
        self._outcomes: list[RequestOutcome] = []
        self._lock = threading.Lock()

    def append(self, outcome: RequestOutcome) -> None:
        """Record one outcome."""
        with self._lock:
            self._outcomes.append(outcome)

    def __len__(self) -> int:
        with self._lock:
            return len(self._outcomes)

    def __iter__(self) -> Iterator[RequestOutcome]:
        return iter(self.ordered())

    def ordered(self) -> list[RequestOutcome]:
        """Return a snapshot of all outcomes sorted by timestamp."""
        with self._lock:
            snapshot = list(self._outcomes)
        return sorted(snapshot, key=lambda o: o.timestamp)

    def for_scenario(self, scenario_name: str) -> list[RequestOutcome]:
        """Return the timestamp-ordered outcomes of a single scenario."""
        return [o for o in self.ordered() if o.scenario_name == scenario_name]
