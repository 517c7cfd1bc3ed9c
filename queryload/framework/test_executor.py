"""
Tests for the scenario executor.

The HTTP layer is replaced by small in-process stubs; timing-sensitive
assertions use tolerant bounds.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import httpx
import pytest

from queryload.framework.executor import (
    ScenarioAbortedError,
    ScenarioExecutor,
    ScenarioSetupError,
    SystemClock,
)
from queryload.framework.models import ErrorKind, QueryRequest, RequestOutcome, ScenarioConfig
from queryload.workloads.registry import NotFoundError

NOW_NS = 1_700_000_000 * 1_000_000_000
NS = 1_000_000_000


class StubClient:
    """Query sender that sleeps, then answers with a fixed status or raises."""

    def __init__(self, delay: float = 0.0, status_code: int = 200, error: Optional[Exception] = None):
        self.delay = delay
        self.status_code = status_code
        self.error = error
        self.requests: list[QueryRequest] = []

    async def send(self, request, endpoint=None, *, scenario_name="", timeout=None) -> RequestOutcome:
        await asyncio.sleep(self.delay)
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return RequestOutcome(
            scenario_name=scenario_name,
            timestamp=datetime.now(timezone.utc),
            status_code=self.status_code,
            latency_ms=self.delay * 1000,
        )


class FailingOnCallClient(StubClient):
    """Stub that answers normally until its ``fail_on``-th call, which raises ValueError."""

    def __init__(self, fail_on: int, delay: float = 0.0):
        super().__init__(delay=delay)
        self.fail_on = fail_on
        self.calls = 0

    async def send(self, request, endpoint=None, *, scenario_name="", timeout=None) -> RequestOutcome:
        self.calls += 1
        if self.calls == self.fail_on:
            await asyncio.sleep(self.delay)
            raise ValueError("unparseable response body")
        return await super().send(request, endpoint, scenario_name=scenario_name, timeout=timeout)


class StepClock:
    """Clock frozen at NOW_NS whose monotonic time advances one second per read."""

    def __init__(self):
        self.ticks = 0.0

    def now_ns(self) -> int:
        return NOW_NS

    def monotonic(self) -> float:
        value = self.ticks
        self.ticks += 1.0
        return value


def collect(executor: ScenarioExecutor, config: ScenarioConfig, client, **kwargs) -> list[RequestOutcome]:
    async def go():
        return [outcome async for outcome in executor.run(config, client, **kwargs)]

    return asyncio.run(go())


class TestScenarioExecutor:
    """Tests for ScenarioExecutor.run."""

    def test_yields_outcomes_for_scenario(self, registry):
        client = StubClient(delay=0.005)
        config = ScenarioConfig("test_metric", "metric", concurrency=3, duration_seconds=0.2)

        outcomes = collect(ScenarioExecutor(registry), config, client)

        assert outcomes
        assert all(o.scenario_name == "test_metric" for o in outcomes)
        assert all(o.is_success for o in outcomes)
        assert len(outcomes) == len(client.requests)
        assert all(r.query == "up" for r in client.requests)

    def test_throughput_bounded_by_latency(self, registry):
        client = StubClient(delay=0.01)
        config = ScenarioConfig("test_sum", "sum", concurrency=5, duration_seconds=1.0)

        outcomes = collect(ScenarioExecutor(registry), config, client)

        # 5 workers, 10ms per request, 1s: ~100 requests each, ~500 in total.
        # A single effective worker would stay near 100.
        assert 300 <= len(outcomes) <= 5 * (100 + 2)

    def test_deadline_checked_before_each_request(self, registry, rng):
        client = StubClient()
        config = ScenarioConfig("test_rate", "rate", concurrency=1, duration_seconds=5)

        outcomes = collect(ScenarioExecutor(registry), config, client, clock=StepClock(), rng=rng)

        # monotonic reads: start=0, then 1, 2, 3, 4 issue a request, 5 stops
        assert len(outcomes) == 4
        for request in client.requests:
            assert NOW_NS - 90 * NS <= request.end_ns <= NOW_NS + 90 * NS
            assert request.start_ns < request.end_ns

    @pytest.mark.parametrize("concurrency, duration", [(0, 10.0), (4, 0.0)])
    def test_nothing_to_do(self, registry, concurrency, duration):
        client = StubClient()
        config = ScenarioConfig("idle", "metric", concurrency=concurrency, duration_seconds=duration)

        outcomes = collect(ScenarioExecutor(registry), config, client)

        assert outcomes == []
        assert client.requests == []

    def test_unknown_query_spec(self, registry):
        config = ScenarioConfig("broken", "does-not-exist", concurrency=1, duration_seconds=1)

        with pytest.raises(NotFoundError):
            collect(ScenarioExecutor(registry), config, StubClient())

    def test_executor_is_single_use(self, registry):
        executor = ScenarioExecutor(registry)
        config = ScenarioConfig("idle", "metric", concurrency=0, duration_seconds=1)
        collect(executor, config, StubClient())

        with pytest.raises(RuntimeError, match="single-use"):
            collect(executor, config, StubClient())

    def test_stop_event_ends_scenario_early(self, registry):
        client = StubClient(delay=0.01)
        config = ScenarioConfig("test_metric", "metric", concurrency=4, duration_seconds=30)

        async def go():
            stop = asyncio.Event()
            outcomes = []
            async for outcome in ScenarioExecutor(registry).run(config, client, stop_event=stop):
                outcomes.append(outcome)
                if len(outcomes) == 10:
                    stop.set()
            return outcomes

        outcomes = asyncio.run(asyncio.wait_for(go(), timeout=10))

        # in-flight requests complete, nothing new starts
        assert 10 <= len(outcomes) <= 10 + 2 * config.concurrency


class TestFailuresBecomeOutcomes:
    """Failures escaping the client are recorded, never raised."""

    def test_transport_error(self, registry):
        client = StubClient(delay=0.005, error=httpx.ConnectError("connection refused"))
        config = ScenarioConfig("test_metric", "metric", concurrency=2, duration_seconds=0.1)

        outcomes = collect(ScenarioExecutor(registry), config, client)

        assert outcomes
        assert all(o.error is ErrorKind.TRANSPORT for o in outcomes)
        assert all(o.status_code == 0 for o in outcomes)
        assert "connection refused" in outcomes[0].error_message

    def test_timeout(self, registry):
        client = StubClient(delay=0.005, error=asyncio.TimeoutError())
        config = ScenarioConfig("test_metric", "metric", concurrency=1, duration_seconds=0.05)

        outcomes = collect(ScenarioExecutor(registry), config, client)

        assert outcomes
        assert all(o.error is ErrorKind.TIMEOUT for o in outcomes)

    def test_http_error_status(self, registry):
        client = StubClient(delay=0.005, status_code=503)
        config = ScenarioConfig("test_metric", "metric", concurrency=1, duration_seconds=0.05)

        outcomes = collect(ScenarioExecutor(registry), config, client)

        assert outcomes
        assert all(o.status_code == 503 and o.error is None for o in outcomes)


class TestWorkerFailures:
    """Unexpected client failures end the worker that hit them."""

    def test_failure_before_any_outcome_is_setup_error(self, registry):
        client = StubClient(error=RuntimeError("boom"))
        config = ScenarioConfig("test_metric", "metric", concurrency=2, duration_seconds=5)

        with pytest.raises(ScenarioSetupError) as exc_info:
            collect(ScenarioExecutor(registry), config, client)

        assert exc_info.value.scenario_name == "test_metric"
        assert "boom" in str(exc_info.value)

    def test_failure_after_outcomes_aborts_scenario(self, registry):
        client = FailingOnCallClient(fail_on=5, delay=0.005)
        config = ScenarioConfig("test_metric", "metric", concurrency=2, duration_seconds=0.3)
        outcomes = []

        async def go():
            async for outcome in ScenarioExecutor(registry).run(config, client):
                outcomes.append(outcome)

        with pytest.raises(ScenarioAbortedError) as exc_info:
            asyncio.run(go())

        error = exc_info.value
        assert error.scenario_name == "test_metric"
        assert error.recorded == len(outcomes) >= 4
        assert "unparseable response body" in str(error)
        assert all(o.is_success for o in outcomes)


class TestSystemClock:
    """Tests for SystemClock."""

    def test_reads_wall_and_monotonic_time(self):
        clock = SystemClock()

        first = clock.monotonic()
        assert clock.monotonic() >= first
        assert clock.now_ns() > NOW_NS
