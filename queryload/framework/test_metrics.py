"""
Tests for run report aggregation.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from queryload.framework.metrics import (
    LatencyMetrics,
    RunReport,
    ScenarioReport,
    ScenarioStatus,
)
from queryload.framework.models import ErrorKind, OutcomeLog, RequestOutcome, ScenarioConfig

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)

METRIC = ScenarioConfig("test_metric", "metric", concurrency=2, duration_seconds=60)
SUM = ScenarioConfig("test_sum", "sum", concurrency=2, duration_seconds=60)


def outcome(scenario="test_metric", status=200, latency=10.0, error=None, offset=0):
    return RequestOutcome(
        scenario_name=scenario,
        timestamp=T0 + timedelta(milliseconds=offset),
        status_code=0 if error else status,
        latency_ms=latency,
        error=error,
        error_message="failed" if error else None,
    )


class TestLatencyMetrics:
    """Tests for LatencyMetrics."""

    def test_percentiles(self):
        latency = LatencyMetrics()
        for value in range(1, 101):
            latency.add_sample(float(value))

        latency.calculate_percentiles()

        assert latency.p50 == 51.0
        assert latency.p90 == 91.0
        assert latency.p95 == 96.0
        assert latency.p99 == 100.0
        assert latency.min_latency == 1.0
        assert latency.max_latency == 100.0
        assert latency.avg_latency == 50.5

    def test_single_sample(self):
        latency = LatencyMetrics(samples=[7.0])

        latency.calculate_percentiles()

        assert latency.p50 == latency.p99 == 7.0

    def test_empty(self):
        data = LatencyMetrics().to_dict()

        assert data["p99_ms"] == 0.0
        assert data["sample_count"] == 0


class TestScenarioReport:
    """Tests for ScenarioReport.from_outcomes."""

    def test_counts_by_kind(self):
        outcomes = [
            outcome(status=200, latency=10.0),
            outcome(status=200, latency=20.0),
            outcome(status=500, latency=30.0),
            outcome(error=ErrorKind.TRANSPORT, latency=1.0),
            outcome(error=ErrorKind.TIMEOUT, latency=30000.0),
        ]

        report = ScenarioReport.from_outcomes(METRIC, outcomes, elapsed_seconds=2.0)

        assert report.total_requests == 5
        assert report.successful_requests == 2
        assert report.failed_requests == 3
        assert report.http_errors == 1
        assert report.transport_errors == 1
        assert report.timeouts == 1
        assert report.status_codes == {200: 2, 500: 1}
        assert report.success_rate_percent == 40.0
        assert report.requests_per_second == 2.5
        assert report.status is ScenarioStatus.COMPLETED

    def test_latency_only_over_answered_requests(self):
        outcomes = [
            outcome(latency=10.0),
            outcome(status=404, latency=20.0),
            outcome(error=ErrorKind.TIMEOUT, latency=30000.0),
        ]

        report = ScenarioReport.from_outcomes(METRIC, outcomes)

        assert sorted(report.latency.samples) == [10.0, 20.0]
        assert report.latency.max_latency == 20.0

    def test_no_requests_has_no_success_rate(self):
        report = ScenarioReport.from_outcomes(METRIC, [])

        assert report.success_rate_percent is None
        assert report.requests_per_second == 0.0

    def test_all_failed_is_zero_percent(self):
        report = ScenarioReport.from_outcomes(METRIC, [outcome(error=ErrorKind.TRANSPORT)])

        assert report.success_rate_percent == 0.0
        assert not report.is_incomplete

    def test_setup_error_marks_incomplete(self):
        report = ScenarioReport.from_outcomes(METRIC, [], setup_error="unknown query spec")

        assert report.is_incomplete
        assert report.status is ScenarioStatus.INCOMPLETE
        assert report.success_rate_percent is None
        assert report.to_dict()["setup_error"] == "unknown query spec"

    def test_cancelled(self):
        report = ScenarioReport.from_outcomes(METRIC, [outcome()], cancelled=True)

        assert report.status is ScenarioStatus.CANCELLED

    def test_abort_keeps_counts_and_rate(self):
        report = ScenarioReport.from_outcomes(
            METRIC,
            [outcome(), outcome(), outcome(status=500)],
            cancelled=True,
            abort_error="worker failed: ValueError",
        )

        assert report.status is ScenarioStatus.ABORTED
        assert report.is_aborted
        assert not report.is_incomplete
        assert report.total_requests == 3
        assert report.success_rate_percent == pytest.approx(200 / 3)
        assert report.to_dict()["abort_error"] == "worker failed: ValueError"

    def test_to_dict(self):
        report = ScenarioReport.from_outcomes(METRIC, [outcome(), outcome(status=503)])

        data = report.to_dict()

        assert data["name"] == "test_metric"
        assert data["query_spec_name"] == "metric"
        assert data["status"] == "completed"
        assert data["success_rate_percent"] == 50.0
        assert data["status_codes"] == {"200": 1, "503": 1}
        assert data["latency"]["sample_count"] == 2


class TestRunReport:
    """Tests for RunReport."""

    def _log(self, outcomes):
        log = OutcomeLog()
        for o in outcomes:
            log.append(o)
        return log

    def test_from_log_splits_by_scenario(self):
        log = self._log([
            outcome("test_sum", offset=3),
            outcome("test_metric", offset=1),
            outcome("test_metric", status=500, offset=2),
        ])

        report = RunReport.from_log(
            [METRIC, SUM], log, start_time=T0, end_time=T0 + timedelta(seconds=10)
        )

        assert [s.name for s in report.scenarios] == ["test_metric", "test_sum"]
        assert report.get_scenario("test_metric").total_requests == 2
        assert report.get_scenario("test_sum").total_requests == 1
        assert report.total_requests == 3
        assert report.successful_requests == 2
        assert report.duration_seconds == 10.0
        assert report.get_scenario("test_sum").requests_per_second == 0.1

    def test_elapsed_is_capped_by_each_scenario_duration(self):
        short = ScenarioConfig("short", "metric", concurrency=1, duration_seconds=2)
        log = self._log(
            [outcome("short", offset=i) for i in range(200)] + [outcome("test_metric")] * 10
        )

        report = RunReport.from_log(
            [short, METRIC], log, start_time=T0, end_time=T0 + timedelta(seconds=10)
        )

        assert report.get_scenario("short").elapsed_seconds == 2
        assert report.get_scenario("short").requests_per_second == 100.0
        assert report.get_scenario("test_metric").elapsed_seconds == 10.0
        assert report.get_scenario("test_metric").requests_per_second == 1.0

    def test_totals_are_sum_of_scenarios(self):
        log = self._log([outcome("test_metric")] * 4 + [outcome("test_sum")] * 6)

        report = RunReport.from_log([METRIC, SUM], log)

        assert report.total_requests == sum(s.total_requests for s in report.scenarios) == 10

    def test_scenario_without_outcomes_still_reported(self):
        report = RunReport.from_log([METRIC, SUM], self._log([outcome("test_metric")]))

        assert report.get_scenario("test_sum").total_requests == 0

    def test_failures_mark_incomplete(self):
        report = RunReport.from_log(
            [METRIC, SUM],
            self._log([outcome("test_metric")]),
            failures={"test_sum": "unknown query spec 'sum'"},
        )

        assert not report.is_complete
        assert [s.name for s in report.incomplete_scenarios] == ["test_sum"]
        assert report.to_dict()["summary"]["incomplete_scenarios"] == ["test_sum"]

    def test_aborted_scenarios_listed(self):
        report = RunReport.from_log(
            [METRIC, SUM],
            self._log([outcome("test_metric"), outcome("test_sum")]),
            aborted={"test_sum": "worker failed"},
        )

        assert report.is_complete
        assert [s.name for s in report.aborted_scenarios] == ["test_sum"]
        assert report.to_dict()["summary"]["aborted_scenarios"] == ["test_sum"]
        assert report.get_scenario("test_sum").success_rate_percent == 100.0

    def test_get_unknown_scenario(self):
        with pytest.raises(KeyError):
            RunReport().get_scenario("missing")

    def test_overall_latency(self):
        log = self._log([outcome("test_metric", latency=5.0), outcome("test_sum", latency=15.0)])

        report = RunReport.from_log([METRIC, SUM], log)

        assert report.overall_latency().max_latency == 15.0
        assert report.overall_latency().min_latency == 5.0

    def test_empty_run_has_no_success_rate(self):
        assert RunReport().success_rate_percent is None

    def test_to_dict_sections(self):
        report = RunReport.from_log(
            [METRIC], self._log([outcome()]), start_time=T0, end_time=T0 + timedelta(seconds=1)
        )

        data = report.to_dict()

        assert data["metadata"]["complete"] is True
        assert data["metadata"]["start_time"] == T0.isoformat()
        assert data["summary"]["total_requests"] == 1
        assert data["summary"]["success_rate_percent"] == 100.0
        assert len(data["scenarios"]) == 1


class TestOutcomeLog:
    """Tests for OutcomeLog."""

    def test_ordered_by_timestamp(self):
        log = OutcomeLog()
        log.append(outcome(offset=5))
        log.append(outcome(offset=1))
        log.append(outcome("test_sum", offset=3))

        assert [o.timestamp for o in log.ordered()] == sorted(o.timestamp for o in log)
        assert len(log) == 3
        assert len(log.for_scenario("test_sum")) == 1

    def test_concurrent_appends_are_all_kept(self):
        log = OutcomeLog()
        workers, per_worker = 8, 500
        barrier = threading.Barrier(workers)

        def record(worker: int):
            barrier.wait()
            for i in range(per_worker):
                log.append(outcome(f"worker-{worker}", offset=i))

        threads = [threading.Thread(target=record, args=(w,)) for w in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(log) == workers * per_worker
        expected = [T0 + timedelta(milliseconds=i) for i in range(per_worker)]
        for w in range(workers):
            assert [o.timestamp for o in log.for_scenario(f"worker-{w}")] == expected
