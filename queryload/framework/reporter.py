"""
Report generation for query load runs.

Evaluates a RunReport against pass/fail thresholds and renders it as
JSON, Markdown or CSV.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .config import ThresholdConfig
from .metrics import RunReport, ScenarioReport

REPORT_FORMATS = ("json", "markdown", "csv")


def _format_rate(rate: Optional[float]) -> str:
    return f"{rate:.2f}%" if rate is not None else "n/a"


class RunReporter:
    """
    Generates reports from run results.

    Example:
        >>> reporter = RunReporter(ThresholdConfig(min_total_requests=10000))
        >>> passed, failures = reporter.evaluate(report)
        >>> reporter.save_report(report, Path("results"), ["json", "markdown"])
    """

    def __init__(
        self,
        thresholds: Optional[ThresholdConfig] = None,
        test_name: str = "vmselect-load",
    ):
        """Initialize the reporter.

        Args:
            thresholds: Pass/fail thresholds, none enforced when omitted
            test_name: Name used in report titles and file names
        """
        self.thresholds = thresholds or ThresholdConfig()
        self.test_name = test_name

    def evaluate(self, report: RunReport) -> tuple[bool, list[str]]:
        """Evaluate a run against the thresholds.

        A run with incomplete or aborted scenarios never passes.

        Args:
            report: Run report to evaluate

        Returns:
            Tuple of (passed, list of failure messages)
        """
        failures = []

        for scenario in report.incomplete_scenarios:
            failures.append(
                f"Scenario {scenario.name} did not run: {scenario.setup_error}"
            )

        for scenario in report.aborted_scenarios:
            failures.append(
                f"Scenario {scenario.name} aborted: {scenario.abort_error}"
            )

        minimum = self.thresholds.min_total_requests
        if minimum is not None and report.total_requests < minimum:
            failures.append(
                f"Total requests ({report.total_requests}) "
                f"below threshold ({minimum})"
            )

        for scenario in report.scenarios:
            if scenario.is_incomplete:
                continue
            failures.extend(self._evaluate_scenario(scenario))

        return len(failures) == 0, failures

    def _evaluate_scenario(self, scenario: ScenarioReport) -> list[str]:
        failures = []

        min_rate = self.thresholds.min_success_rate_percent
        rate = scenario.success_rate_percent
        if min_rate is not None and rate is not None and rate < min_rate:
            failures.append(
                f"Scenario {scenario.name} success rate ({rate:.2f}%) "
                f"below threshold ({min_rate}%)"
            )

        max_p99 = self.thresholds.max_p99_latency_ms
        if (
            max_p99 is not None
            and scenario.latency.samples
            and scenario.latency.p99 > max_p99
        ):
            failures.append(
                f"Scenario {scenario.name} latency p99 ({scenario.latency.p99:.2f}ms) "
                f"exceeds threshold ({max_p99}ms)"
            )

        return failures

    def to_dict(self, report: RunReport) -> dict[str, Any]:
        """Report dictionary with thresholds and verdict."""
        passed, failures = self.evaluate(report)
        data = report.to_dict()
        data["metadata"]["test_name"] = self.test_name
        data["thresholds"] = self.thresholds.to_dict()
        data["summary"]["passed"] = passed
        data["summary"]["failures"] = failures
        return data

    def to_json(self, report: RunReport, indent: int = 2) -> str:
        """Convert report to JSON string.

        Args:
            report: Run report
            indent: JSON indentation

        Returns:
            JSON string representation
        """
        return json.dumps(self.to_dict(report), indent=indent, default=str)

    def to_markdown(self, report: RunReport) -> str:
        """Convert report to Markdown format.

        Args:
            report: Run report

        Returns:
            Markdown string representation
        """
        passed, failures = self.evaluate(report)
        latency = report.overall_latency()

        lines = [
            f"# Query Load Report: {self.test_name}",
            "",
            "## Summary",
            "",
            f"- **Status**: {'✅ PASSED' if passed else '❌ FAILED'}",
            f"- **Duration**: {report.duration_seconds:.2f} seconds",
            f"- **Start Time**: {report.start_time}",
            f"- **End Time**: {report.end_time}",
            f"- **Total Requests**: {report.total_requests}",
            f"- **Success Rate**: {_format_rate(report.success_rate_percent)}",
        ]
        if report.cancelled:
            lines.append("- **Cancelled**: yes")
        lines.append("")

        if failures:
            lines.extend([
                "### Failures",
                "",
            ])
            for failure in failures:
                lines.append(f"- {failure}")
            lines.append("")

        lines.extend([
            "## Scenarios",
            "",
            "| Scenario | Query | Status | Requests | Success | HTTP Errors "
            "| Transport Errors | Timeouts | Req/s | p50 (ms) | p99 (ms) |",
            "|----------|-------|--------|----------|---------|-------------"
            "|------------------|----------|-------|----------|----------|",
        ])
        for s in report.scenarios:
            lines.append(
                f"| {s.name} | {s.query_spec_name} | {s.status.value} "
                f"| {s.total_requests} | {_format_rate(s.success_rate_percent)} "
                f"| {s.http_errors} | {s.transport_errors} | {s.timeouts} "
                f"| {s.requests_per_second:.2f} "
                f"| {s.latency.p50:.2f} | {s.latency.p99:.2f} |"
            )
        lines.append("")

        lines.extend([
            "## Query Latency",
            "",
            "| Percentile | Latency (ms) |",
            "|------------|--------------|",
            f"| p50 | {latency.p50:.2f} |",
            f"| p90 | {latency.p90:.2f} |",
            f"| p95 | {latency.p95:.2f} |",
            f"| p99 | {latency.p99:.2f} |",
            "",
        ])

        return "\n".join(lines)

    def to_csv(self, report: RunReport) -> str:
        """Convert report to CSV format, one row per scenario.

        Args:
            report: Run report

        Returns:
            CSV string representation
        """
        lines = [
            "scenario,query,status,total_requests,successful_requests,"
            "http_errors,transport_errors,timeouts,success_rate_percent,"
            "requests_per_second,latency_p50_ms,latency_p90_ms,latency_p99_ms"
        ]
        for s in report.scenarios:
            rate = s.success_rate_percent
            lines.append(
                f"{s.name},{s.query_spec_name},{s.status.value},"
                f"{s.total_requests},{s.successful_requests},"
                f"{s.http_errors},{s.transport_errors},{s.timeouts},"
                f"{'' if rate is None else f'{rate:.2f}'},"
                f"{s.requests_per_second:.2f},"
                f"{s.latency.p50:.2f},{s.latency.p90:.2f},{s.latency.p99:.2f}"
            )
        return "\n".join(lines)

    def save_report(
        self,
        report: RunReport,
        output_dir: Path,
        formats: Optional[list[str]] = None,
    ) -> list[Path]:
        """Save report to files in specified formats.

        Args:
            report: Run report
            output_dir: Directory to save reports
            formats: List of formats (json, markdown, csv)

        Returns:
            List of saved file paths
        """
        formats = formats or ["json", "markdown"]
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        saved_files = []
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        base_name = f"{self.test_name}_{timestamp}"

        if "json" in formats:
            json_path = output_dir / f"{base_name}.json"
            json_path.write_text(self.to_json(report))
            saved_files.append(json_path)

        if "markdown" in formats:
            md_path = output_dir / f"{base_name}.md"
            md_path.write_text(self.to_markdown(report))
            saved_files.append(md_path)

        if "csv" in formats:
            csv_path = output_dir / f"{base_name}.csv"
            csv_path.write_text(self.to_csv(report))
            saved_files.append(csv_path)

        return saved_files
