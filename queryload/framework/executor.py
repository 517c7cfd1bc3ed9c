"""
Scenario executor.

Drives one scenario: ``concurrency`` independent workers each build a
query, send it, emit the outcome and immediately start over, until the
scenario's duration has elapsed or the run is cancelled. A request that
is in flight when the deadline passes is allowed to complete.
"""

import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from typing import AsyncIterator, Optional, Protocol

import httpx

from ..workloads.registry import QuerySpec, QuerySpecRegistry
from .models import ErrorKind, QueryRequest, RequestOutcome, ScenarioConfig

logger = logging.getLogger(__name__)

_WORKER_DONE = object()


class ScenarioSetupError(Exception):
    """Raised when a scenario cannot start (bad config, unusable spec)."""

    def __init__(self, message: str, scenario_name: Optional[str] = None):
        super().__init__(message)
        self.scenario_name = scenario_name


class ScenarioAbortedError(Exception):
    """Raised when a worker fails after the scenario has recorded outcomes.

    Attributes:
        scenario_name: Scenario whose worker failed
        recorded: Outcomes yielded before the scenario ended
    """

    def __init__(self, message: str, scenario_name: Optional[str] = None, recorded: int = 0):
        super().__init__(message)
        self.scenario_name = scenario_name
        self.recorded = recorded


class Clock(Protocol):
    """Time source for the executor."""

    def now_ns(self) -> int:
        """Wall-clock time as Unix nanoseconds (used to build queries)."""
        ...

    def monotonic(self) -> float:
        """Monotonic seconds (used to measure the scenario duration)."""
        ...


class SystemClock:
    """Clock backed by the ``time`` module."""

    def now_ns(self) -> int:
        return time.time_ns()

    def monotonic(self) -> float:
        return time.monotonic()


class QuerySender(Protocol):
    """What the executor needs from a query client."""

    async def send(
        self,
        request: QueryRequest,
        endpoint: Optional[str] = None,
        *,
        scenario_name: str = "",
        timeout: Optional[float] = None,
    ) -> RequestOutcome:
        ...


class ScenarioExecutor:
    """
    Runs one scenario and yields its outcomes as they are produced.

    An executor instance runs exactly once; construct a new one per run.

    Example:
        >>> executor = ScenarioExecutor(default_registry())
        >>> async for outcome in executor.run(config, client):
        ...     log.append(outcome)
    """

    def __init__(self, registry: QuerySpecRegistry):
        """Initialize the executor.

        Args:
            registry: Registry used to resolve the scenario's query spec
        """
        self.registry = registry
        self._started = False

    async def run(
        self,
        config: ScenarioConfig,
        client: QuerySender,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[RequestOutcome]:
        """Run the scenario, yielding one outcome per request.

        Args:
            config: Scenario to run
            client: Client used to send queries
            clock: Time source, SystemClock when omitted
            rng: Random source for query windows
            stop_event: Run-wide cancellation signal

        Yields:
            RequestOutcome for every request issued

        Raises:
            RuntimeError: If this executor has already been run
            NotFoundError: If the query spec is not registered
            ScenarioSetupError: If a worker failed before any outcome was recorded
            ScenarioAbortedError: If a worker failed after outcomes were recorded
        """
        if self._started:
            raise RuntimeError("ScenarioExecutor instances are single-use; create a new one per run")
        self._started = True

        spec = self.registry.get(config.query_spec_name)
        clock = clock or SystemClock()
        rng = rng or random.Random()
        stop_event = stop_event or asyncio.Event()

        if config.concurrency == 0 or config.duration_seconds <= 0:
            logger.info(
                "Scenario %s: nothing to do (concurrency=%d, duration=%.1fs)",
                config.name, config.concurrency, config.duration_seconds,
            )
            return

        logger.info(
            "Scenario %s: starting %d workers for %.1fs using query spec %s",
            config.name, config.concurrency, config.duration_seconds, spec.name,
        )

        queue: asyncio.Queue = asyncio.Queue()
        started = clock.monotonic()
        workers = [
            asyncio.create_task(
                self._worker(worker_id, config, spec, client, clock, rng, started, queue, stop_event),
                name=f"{config.name}-worker-{worker_id}",
            )
            for worker_id in range(config.concurrency)
        ]

        running = len(workers)
        recorded = 0
        try:
            while running:
                item = await queue.get()
                if item is _WORKER_DONE:
                    running -= 1
                    continue
                recorded += 1
                yield item
        finally:
            for task in workers:
                if not task.done():
                    task.cancel()
            results = await asyncio.gather(*workers, return_exceptions=True)

        errors = [
            r for r in results
            if isinstance(r, BaseException) and not isinstance(r, asyncio.CancelledError)
        ]
        if errors:
            message = f"Scenario '{config.name}': {len(errors)} worker(s) failed: {errors[0]!r}"
            if not recorded:
                raise ScenarioSetupError(message, scenario_name=config.name) from errors[0]
            raise ScenarioAbortedError(
                f"{message} after {recorded} outcome(s)",
                scenario_name=config.name,
                recorded=recorded,
            ) from errors[0]

        logger.info(
            "Scenario %s: finished after %.1fs",
            config.name, clock.monotonic() - started,
        )

    async def _worker(
        self,
        worker_id: int,
        config: ScenarioConfig,
        spec: QuerySpec,
        client: QuerySender,
        clock: Clock,
        rng: random.Random,
        started: float,
        queue: asyncio.Queue,
        stop_event: asyncio.Event,
    ) -> None:
        try:
            while not stop_event.is_set():
                if clock.monotonic() - started >= config.duration_seconds:
                    break
                request = spec.build(clock.now_ns(), rng)
                outcome = await self._issue(request, config, client)
                await queue.put(outcome)
                # A client that fails without suspending must not starve other tasks.
                await asyncio.sleep(0)
            logger.debug("Scenario %s: worker %d stopped", config.name, worker_id)
        finally:
            queue.put_nowait(_WORKER_DONE)

    async def _issue(
        self,
        request: QueryRequest,
        config: ScenarioConfig,
        client: QuerySender,
    ) -> RequestOutcome:
        """Send one request; failures escaping the client become outcomes."""
        timestamp = datetime.now(timezone.utc)
        start = time.perf_counter()
        try:
            return await client.send(request, scenario_name=config.name)
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            kind = ErrorKind.TIMEOUT
            error: Exception = e
        except (httpx.TransportError, OSError) as e:
            kind = ErrorKind.TRANSPORT
            error = e

        return RequestOutcome(
            scenario_name=config.name,
            timestamp=timestamp,
            status_code=0,
            latency_ms=(time.perf_counter() - start) * 1000,
            error=kind,
            error_message=f"{type(error).__name__}: {error}",
        )
