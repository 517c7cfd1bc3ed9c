"""
Run report aggregation.

Reports are derived from the outcome log after (or during) a run: request
counts, success rate, error breakdown and latency percentiles, per
scenario and overall. Nothing here is persisted while the run is going.
"""

import statistics
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from .models import ErrorKind, OutcomeLog, RequestOutcome, ScenarioConfig


class ScenarioStatus(Enum):
    """How a scenario ended."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"
    INCOMPLETE = "incomplete"


@dataclass
class LatencyMetrics:
    """Latency metrics with percentiles.

    Attributes:
        samples: Raw latency samples in milliseconds
        p50: 50th percentile (median)
        p90: 90th percentile
        p95: 95th percentile
        p99: 99th percentile
        min_latency: Minimum latency
        max_latency: Maximum latency
        avg_latency: Average latency
    """

    samples: list[float] = field(default_factory=list)
    p50: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    min_latency: float = 0.0
    max_latency: float = 0.0
    avg_latency: float = 0.0

    def calculate_percentiles(self) -> None:
        """Calculate percentiles from samples."""
        if not self.samples:
            return

        sorted_samples = sorted(self.samples)
        n = len(sorted_samples)

        self.p50 = sorted_samples[int(n * 0.50)]
        self.p90 = sorted_samples[int(n * 0.90)]
        self.p95 = sorted_samples[min(int(n * 0.95), n - 1)]
        self.p99 = sorted_samples[min(int(n * 0.99), n - 1)]
        self.min_latency = sorted_samples[0]
        self.max_latency = sorted_samples[-1]
        self.avg_latency = statistics.mean(sorted_samples)

    def add_sample(self, latency_ms: float) -> None:
        """Add a latency sample."""
        self.samples.append(latency_ms)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        self.calculate_percentiles()
        return {
            "p50_ms": round(self.p50, 2),
            "p90_ms": round(self.p90, 2),
            "p95_ms": round(self.p95, 2),
            "p99_ms": round(self.p99, 2),
            "min_ms": round(self.min_latency, 2),
            "max_ms": round(self.max_latency, 2),
            "avg_ms": round(self.avg_latency, 2),
            "sample_count": len(self.samples),
        }


@dataclass
class ScenarioReport:
    """Aggregate over one scenario's outcomes.

    Latency is computed over requests that received a response; transport
    failures and timeouts are counted separately and do not skew it.

    Attributes:
        name: Scenario name
        query_spec_name: Query spec the scenario used
        concurrency: Configured workers
        duration_seconds: Configured duration
        status: How the scenario ended, see ScenarioStatus
        setup_error: Why the scenario could not run, if incomplete
        abort_error: Why a worker stopped mid-run, if aborted
        total_requests: Requests issued
        successful_requests: Requests answered with 2xx
        http_errors: Requests answered with a non-2xx status
        transport_errors: Requests that failed below HTTP
        timeouts: Requests that exceeded the client timeout
        status_codes: Count per HTTP status code
        latency: Latency percentiles over answered requests
        elapsed_seconds: Time the scenario was issuing requests
    """

    name: str
    query_spec_name: str
    concurrency: int = 0
    duration_seconds: float = 0.0
    status: ScenarioStatus = ScenarioStatus.COMPLETED
    setup_error: Optional[str] = None
    abort_error: Optional[str] = None
    total_requests: int = 0
    successful_requests: int = 0
    http_errors: int = 0
    transport_errors: int = 0
    timeouts: int = 0
    status_codes: dict[int, int] = field(default_factory=dict)
    latency: LatencyMetrics = field(default_factory=LatencyMetrics)
    elapsed_seconds: float = 0.0

    @property
    def is_incomplete(self) -> bool:
        """Check if the scenario never ran because setup failed."""
        return self.status is ScenarioStatus.INCOMPLETE

    @property
    def is_aborted(self) -> bool:
        """Check if a worker failed after the scenario started recording."""
        return self.status is ScenarioStatus.ABORTED

    @property
    def success_rate_percent(self) -> Optional[float]:
        """Percentage of 2xx responses; None when there is nothing to rate.

        None for an incomplete scenario keeps a setup failure distinct from
        a run where every request failed.
        """
        if self.is_incomplete or self.total_requests == 0:
            return None
        return (self.successful_requests / self.total_requests) * 100

    @property
    def failed_requests(self) -> int:
        """Requests that did not get a 2xx response."""
        return self.total_requests - self.successful_requests

    @property
    def requests_per_second(self) -> float:
        """Average throughput over the elapsed time."""
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.total_requests / self.elapsed_seconds

    @classmethod
    def from_outcomes(
        cls,
        config: ScenarioConfig,
        outcomes: Iterable[RequestOutcome],
        setup_error: Optional[str] = None,
        cancelled: bool = False,
        elapsed_seconds: float = 0.0,
        abort_error: Optional[str] = None,
    ) -> "ScenarioReport":
        """Aggregate outcomes of one scenario."""
        if setup_error is not None:
            status = ScenarioStatus.INCOMPLETE
        elif abort_error is not None:
            status = ScenarioStatus.ABORTED
        elif cancelled:
            status = ScenarioStatus.CANCELLED
        else:
            status = ScenarioStatus.COMPLETED

        report = cls(
            name=config.name,
            query_spec_name=config.query_spec_name,
            concurrency=config.concurrency,
            duration_seconds=config.duration_seconds,
            status=status,
            setup_error=setup_error,
            abort_error=abort_error,
            elapsed_seconds=elapsed_seconds,
        )

        codes: Counter = Counter()
        for outcome in outcomes:
            report.total_requests += 1
            if outcome.error is ErrorKind.TIMEOUT:
                report.timeouts += 1
                continue
            if outcome.error is ErrorKind.TRANSPORT:
                report.transport_errors += 1
                continue

            codes[outcome.status_code] += 1
            report.latency.add_sample(outcome.latency_ms)
            if outcome.is_success:
                report.successful_requests += 1
            else:
                report.http_errors += 1

        report.status_codes = dict(sorted(codes.items()))
        report.latency.calculate_percentiles()
        return report

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        success_rate = self.success_rate_percent
        return {
            "name": self.name,
            "query_spec_name": self.query_spec_name,
            "concurrency": self.concurrency,
            "duration_seconds": self.duration_seconds,
            "status": self.status.value,
            "setup_error": self.setup_error,
            "abort_error": self.abort_error,
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "http_errors": self.http_errors,
            "transport_errors": self.transport_errors,
            "timeouts": self.timeouts,
            "success_rate_percent": (
                round(success_rate, 2) if success_rate is not None else None
            ),
            "requests_per_second": round(self.requests_per_second, 2),
            "status_codes": {str(k): v for k, v in self.status_codes.items()},
            "latency": self.latency.to_dict(),
        }


@dataclass
class RunReport:
    """Aggregate over every outcome of a run.

    Attributes:
        scenarios: Per-scenario reports, in configuration order
        start_time: When the run started
        end_time: When the run ended
        cancelled: Whether the run was stopped early
    """

    scenarios: list[ScenarioReport] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    cancelled: bool = False

    @property
    def duration_seconds(self) -> float:
        """Calculate run duration in seconds."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0

    @property
    def total_requests(self) -> int:
        return sum(s.total_requests for s in self.scenarios)

    @property
    def successful_requests(self) -> int:
        return sum(s.successful_requests for s in self.scenarios)

    @property
    def incomplete_scenarios(self) -> list[ScenarioReport]:
        """Scenarios that never ran because their setup failed."""
        return [s for s in self.scenarios if s.is_incomplete]

    @property
    def aborted_scenarios(self) -> list[ScenarioReport]:
        """Scenarios that lost a worker mid-run."""
        return [s for s in self.scenarios if s.is_aborted]

    @property
    def is_complete(self) -> bool:
        """Check if every scenario got past setup."""
        return not self.incomplete_scenarios

    @property
    def success_rate_percent(self) -> Optional[float]:
        """Overall 2xx percentage across scenarios that ran."""
        total = self.total_requests
        if total == 0:
            return None
        return (self.successful_requests / total) * 100

    def get_scenario(self, name: str) -> ScenarioReport:
        """Look up a scenario report by name.

        Raises:
            KeyError: If the run had no such scenario
        """
        for scenario in self.scenarios:
            if scenario.name == name:
                return scenario
        raise KeyError(name)

    def overall_latency(self) -> LatencyMetrics:
        """Latency percentiles across every scenario."""
        latency = LatencyMetrics()
        for scenario in self.scenarios:
            latency.samples.extend(scenario.latency.samples)
        latency.calculate_percentiles()
        return latency

    @classmethod
    def from_log(
        cls,
        configs: list[ScenarioConfig],
        log: OutcomeLog,
        failures: Optional[dict[str, str]] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        cancelled: bool = False,
        aborted: Optional[dict[str, str]] = None,
    ) -> "RunReport":
        """Build a report from a run's outcome log.

        Args:
            configs: Scenarios of the run, in order
            log: Outcome log of the run
            failures: Setup error message per failed scenario name
            start_time: When the run started
            end_time: When the run ended
            cancelled: Whether the run was stopped early
            aborted: Worker failure message per scenario that stopped mid-run

        Returns:
            RunReport with one section per configured scenario
        """
        failures = failures or {}
        aborted = aborted or {}
        run_span = (
            (end_time - start_time).total_seconds()
            if start_time and end_time
            else 0.0
        )

        by_scenario: dict[str, list[RequestOutcome]] = {c.name: [] for c in configs}
        for outcome in log.ordered():
            by_scenario.setdefault(outcome.scenario_name, []).append(outcome)

        scenarios = [
            ScenarioReport.from_outcomes(
                config,
                by_scenario[config.name],
                setup_error=failures.get(config.name),
                cancelled=cancelled,
                # a scenario stops issuing at its own deadline, or earlier if the run ends first
                elapsed_seconds=min(config.duration_seconds, run_span),
                abort_error=aborted.get(config.name),
            )
            for config in configs
        ]
        return cls(
            scenarios=scenarios,
            start_time=start_time,
            end_time=end_time,
            cancelled=cancelled,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert report to dictionary."""
        success_rate = self.success_rate_percent
        return {
            "metadata": {
                "start_time": self.start_time.isoformat() if self.start_time else None,
                "end_time": self.end_time.isoformat() if self.end_time else None,
                "duration_seconds": round(self.duration_seconds, 3),
                "cancelled": self.cancelled,
                "complete": self.is_complete,
            },
            "summary": {
                "total_requests": self.total_requests,
                "successful_requests": self.successful_requests,
                "success_rate_percent": (
                    round(success_rate, 2) if success_rate is not None else None
                ),
                "incomplete_scenarios": [s.name for s in self.incomplete_scenarios],
                "aborted_scenarios": [s.name for s in self.aborted_scenarios],
                "latency": self.overall_latency().to_dict(),
            },
            "scenarios": [s.to_dict() for s in self.scenarios],
        }
