"""
Run coordinator.

Launches every scenario of a run concurrently, funnels their outcomes
into a single append-only log and builds the run report once all of
them have finished. A scenario that fails during setup does not stop
the others; the run then ends with a PartialRunError carrying the report.
A scenario that loses a worker mid-run keeps its outcomes and is
reported as aborted.
"""

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Optional, Sequence

from ..workloads.builtin import default_registry
from ..workloads.registry import NotFoundError, QuerySpecRegistry
from .executor import (
    Clock,
    QuerySender,
    ScenarioAbortedError,
    ScenarioExecutor,
    ScenarioSetupError,
)
from .metrics import RunReport
from .models import OutcomeLog, ScenarioConfig

logger = logging.getLogger(__name__)


class PartialRunError(Exception):
    """Raised when one or more scenarios could not be set up.

    Attributes:
        report: Full run report; failed scenarios are marked incomplete
        failures: Setup error message per failed scenario name
    """

    def __init__(self, report: RunReport, failures: dict[str, str]):
        names = ", ".join(sorted(failures))
        super().__init__(f"{len(failures)} scenario(s) failed during setup: {names}")
        self.report = report
        self.failures = failures


class RunCoordinator:
    """
    Executes a set of scenarios concurrently and reports on them.

    A cancellation applies to the current run, or to the next one when
    requested before ``execute``; once that run ends the coordinator can
    be reused.

    Example:
        >>> coordinator = RunCoordinator(client)
        >>> report = await coordinator.execute([
        ...     ScenarioConfig("test_metric", "metric", concurrency=50, duration_seconds=1800),
        ...     ScenarioConfig("test_sum", "sum", concurrency=50, duration_seconds=1800),
        ... ])
    """

    def __init__(
        self,
        client: QuerySender,
        registry: Optional[QuerySpecRegistry] = None,
        *,
        clock: Optional[Clock] = None,
        seed: Optional[int] = None,
    ):
        """Initialize the coordinator.

        Args:
            client: Query client shared by all scenarios
            registry: Query spec registry, the built-ins when omitted
            clock: Time source passed to every executor
            seed: Base seed; scenario ``i`` uses ``seed + i``
        """
        self.client = client
        self.registry = registry if registry is not None else default_registry()
        self.clock = clock
        self.seed = seed
        self._stop_event: Optional[asyncio.Event] = None
        self._cancel_requested = False

    def cancel(self) -> None:
        """Ask all workers to finish their in-flight request and stop."""
        self._cancel_requested = True
        if self._stop_event is not None:
            self._stop_event.set()
        logger.warning("Run cancellation requested")

    @property
    def cancelled(self) -> bool:
        """Whether a cancellation is pending for the current or next run."""
        return self._cancel_requested

    async def execute(self, configs: Sequence[ScenarioConfig]) -> RunReport:
        """Run all scenarios concurrently.

        Args:
            configs: Scenarios to run, names must be unique

        Returns:
            RunReport over every outcome of the run

        Raises:
            ValueError: If scenario names are not unique
            PartialRunError: If any scenario failed during setup
        """
        configs = list(configs)
        names = [c.name for c in configs]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Scenario names must be unique, duplicated: {', '.join(duplicates)}")

        self._stop_event = asyncio.Event()
        if self._cancel_requested:
            self._stop_event.set()

        log = OutcomeLog()
        failures: dict[str, str] = {}
        aborted: dict[str, str] = {}
        start_time = datetime.now(timezone.utc)

        logger.info("Starting run with %d scenario(s): %s", len(configs), ", ".join(names))

        await asyncio.gather(*(
            self._run_scenario(index, config, log, failures, aborted)
            for index, config in enumerate(configs)
        ))

        end_time = datetime.now(timezone.utc)
        report = RunReport.from_log(
            configs,
            log,
            failures=failures,
            start_time=start_time,
            end_time=end_time,
            cancelled=self._cancel_requested,
            aborted=aborted,
        )
        self._cancel_requested = False
        self._stop_event = None

        logger.info(
            "Run finished in %.1fs: %d requests, %d successful",
            report.duration_seconds, report.total_requests, report.successful_requests,
        )

        if failures:
            raise PartialRunError(report, failures)
        return report

    async def _run_scenario(
        self,
        index: int,
        config: ScenarioConfig,
        log: OutcomeLog,
        failures: dict[str, str],
        aborted: dict[str, str],
    ) -> None:
        rng = random.Random(self.seed + index) if self.seed is not None else random.Random()
        executor = ScenarioExecutor(self.registry)
        count = 0
        try:
            async for outcome in executor.run(
                config,
                self.client,
                clock=self.clock,
                rng=rng,
                stop_event=self._stop_event,
            ):
                log.append(outcome)
                count += 1
        except (NotFoundError, ScenarioSetupError) as e:
            failures[config.name] = str(e)
            logger.error("Scenario %s failed during setup: %s", config.name, e)
            return
        except ScenarioAbortedError as e:
            aborted[config.name] = str(e)
            logger.error("Scenario %s aborted after %d outcomes: %s", config.name, count, e)
            return

        logger.info("Scenario %s recorded %d outcomes", config.name, count)


def run_scenarios_sync(
    configs: Sequence[ScenarioConfig],
    client: QuerySender,
    registry: Optional[QuerySpecRegistry] = None,
    seed: Optional[int] = None,
) -> RunReport:
    """Synchronous wrapper for running a set of scenarios.

    Args:
        configs: Scenarios to run
        client: Query client
        registry: Query spec registry, the built-ins when omitted
        seed: Base seed for query windows

    Returns:
        Run report

    Raises:
        PartialRunError: If any scenario failed during setup
    """
    coordinator = RunCoordinator(client, registry, seed=seed)
    return asyncio.run(coordinator.execute(configs))
