#!/usr/bin/env python3
"""
Command-Line Interface for queryload.

Runs query load scenarios against a vmselect (or single-node) endpoint,
lists the available query specs and validates configuration files.

Usage:
    # Run the default scenarios against a cluster
    python3 -m queryload run --url http://vmselect:8481

    # Short smoke run of a single scenario
    python3 -m queryload run --url http://vmselect:8481 --scenario test_metric \\
        --concurrency 5 --duration 1m

    # List query specs, including ones defined in a config file
    python3 -m queryload queries --config load.yaml

    # Validate a configuration file
    python3 -m queryload validate load.yaml
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .framework.config import ConfigValidationError, LoadTestConfig, load_config
from .framework.coordinator import PartialRunError, RunCoordinator
from .framework.metrics import RunReport
from .framework.models import TimestampUnit
from .framework.query_client import QueryClient
from .framework.reporter import REPORT_FORMATS, RunReporter
from .workloads.registry import RegistryError

# Set up logging with rich handler
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True, show_time=False)],
)
logger = logging.getLogger(__name__)
console = Console()

VALID_TIMESTAMP_UNITS = [u.value for u in TimestampUnit]

# Exit codes
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2


class CLIContext:
    """Context object for CLI commands."""

    def __init__(self):
        self.verbose = False


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def _print_config_error(error: ConfigValidationError) -> None:
    console.print(f"[bold red]Configuration error:[/bold red] {escape(str(error))}")
    for message in error.errors:
        console.print(f"  • {escape(message)}")


@click.group()
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output"
)
@click.version_option(version=__version__, prog_name="queryload")
@pass_context
def cli(ctx: CLIContext, verbose: bool):
    """
    Query load generator for Prometheus-compatible backends.

    Issues randomized, jittered range queries at fixed concurrency for a
    fixed duration and reports throughput, errors and latency.
    """
    ctx.verbose = verbose

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose mode enabled")


@cli.command()
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file"
)
@click.option(
    "--url",
    type=str,
    help="Target base URL (overrides config and VMSELECT_URL)"
)
@click.option(
    "--tenant",
    type=str,
    default=None,
    help="Tenant ID; an empty string selects the single-node path"
)
@click.option(
    "--concurrency", "-n",
    type=click.IntRange(min=0),
    default=None,
    help="Workers per scenario"
)
@click.option(
    "--duration", "-d",
    type=str,
    default=None,
    help="Duration per scenario (e.g., 30s, 5m, 1h)"
)
@click.option(
    "--scenario", "-s", "scenarios",
    multiple=True,
    help="Scenario(s) to run (can be specified multiple times)"
)
@click.option(
    "--timestamp-unit",
    type=click.Choice(VALID_TIMESTAMP_UNITS, case_sensitive=False),
    default=None,
    help="Unit for start/end on the wire"
)
@click.option(
    "--insecure/--verify-tls",
    default=None,
    help="Skip TLS certificate verification"
)
@click.option(
    "--timeout",
    type=str,
    default=None,
    help="Per-request timeout (e.g., 30s)"
)
@click.option(
    "--seed",
    type=int,
    default=None,
    help="Random seed for query windows"
)
@click.option(
    "--output", "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("./results"),
    help="Output directory for reports"
)
@click.option(
    "--format", "-f", "formats",
    multiple=True,
    type=click.Choice(REPORT_FORMATS, case_sensitive=False),
    default=["json", "markdown"],
    help="Report format(s) to generate"
)
@pass_context
def run(
    ctx: CLIContext,
    config_path: Optional[Path],
    url: Optional[str],
    tenant: Optional[str],
    concurrency: Optional[int],
    duration: Optional[str],
    scenarios: tuple,
    timestamp_unit: Optional[str],
    insecure: Optional[bool],
    timeout: Optional[str],
    seed: Optional[int],
    output: Path,
    formats: tuple,
):
    """
    Run query load scenarios.

    Every selected scenario runs concurrently for its duration. The command
    exits 0 only when every scenario ran and all thresholds passed.

    Examples:

        # Run the default scenarios (50 workers, 30 minutes each)
        python3 -m queryload run --url http://vmselect:8481

        # Against a single-node instance
        python3 -m queryload run --url http://victoria:8428 --tenant ""
    """
    try:
        config = load_config(
            config_path=config_path,
            url=url,
            tenant=tenant,
            concurrency=concurrency,
            duration=duration,
            timeout=timeout,
            insecure=insecure,
            timestamp_unit=timestamp_unit.lower() if timestamp_unit else None,
            seed=seed,
            scenario_names=list(scenarios) or None,
        )
        config.require_target()
        registry = config.build_registry()
    except ConfigValidationError as e:
        _print_config_error(e)
        sys.exit(EXIT_CONFIG_ERROR)
    except (ValueError, RegistryError) as e:
        console.print(f"[bold red]Configuration error:[/bold red] {escape(str(e))}")
        sys.exit(EXIT_CONFIG_ERROR)

    console.print(f"\n[bold blue]queryload[/bold blue] {config.name}")
    console.print(f"Target: [cyan]{config.target.endpoint}[/cyan]")
    console.print(
        "Scenarios: [cyan]"
        + ", ".join(
            f"{s.name} ({s.query_spec_name}, {s.concurrency} workers, {s.duration_seconds:g}s)"
            for s in config.scenarios
        )
        + "[/cyan]"
    )

    client = QueryClient(
        config.target.endpoint,
        timeout=config.target.timeout_seconds,
        verify_tls=not config.target.insecure_skip_tls_verify,
        auth_token=config.target.resolved_auth_token,
        timestamp_unit=config.target.unit,
    )
    coordinator = RunCoordinator(client, registry, seed=config.seed)

    try:
        report, partial_failures = asyncio.run(_execute(coordinator, client, config))
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}", style="red")
        if ctx.verbose:
            console.print_exception()
        sys.exit(EXIT_FAILED)

    reporter = RunReporter(config.thresholds, test_name=config.name)
    passed, failures = reporter.evaluate(report)
    saved_files = reporter.save_report(report, output, list(formats))

    _display_results_summary(report, passed, failures, saved_files)

    if partial_failures:
        logger.error("Scenarios failed during setup: %s", ", ".join(sorted(partial_failures)))

    sys.exit(EXIT_OK if passed and report.is_complete else EXIT_FAILED)


async def _execute(
    coordinator: RunCoordinator,
    client: QueryClient,
    config: LoadTestConfig,
) -> tuple[RunReport, dict[str, str]]:
    """Run the coordinator with SIGINT/SIGTERM mapped to cancellation."""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, coordinator.cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.debug("Cannot install handler for %s on this platform", sig.name)

    try:
        report = await coordinator.execute(config.scenarios)
        failures: dict[str, str] = {}
    except PartialRunError as e:
        report = e.report
        failures = e.failures
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await client.aclose()

    return report, failures


def _display_results_summary(
    report: RunReport,
    passed: bool,
    failures: list[str],
    saved_files: list[Path],
) -> None:
    """Display run results in formatted tables."""
    console.print("\n")

    table = Table(title="Scenario Results", show_header=True, header_style="bold magenta")
    table.add_column("Scenario", style="cyan")
    table.add_column("Status")
    table.add_column("Requests", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("HTTP Err", justify="right")
    table.add_column("Transport Err", justify="right")
    table.add_column("Timeouts", justify="right")
    table.add_column("Req/s", justify="right")
    table.add_column("p50 (ms)", justify="right")
    table.add_column("p99 (ms)", justify="right")

    for s in report.scenarios:
        rate = s.success_rate_percent
        status_style = "red" if s.is_incomplete or s.is_aborted else "green"
        table.add_row(
            s.name,
            f"[{status_style}]{s.status.value}[/{status_style}]",
            str(s.total_requests),
            f"{rate:.1f}%" if rate is not None else "n/a",
            str(s.http_errors),
            str(s.transport_errors),
            str(s.timeouts),
            f"{s.requests_per_second:.1f}",
            f"{s.latency.p50:.1f}",
            f"{s.latency.p99:.1f}",
        )

    console.print(table)

    status_style = "green" if passed else "red"
    verdict = "PASSED" if passed else "FAILED"
    console.print(
        f"\nRun [{status_style}]{verdict}[/{status_style}]: "
        f"{report.total_requests} requests in {report.duration_seconds:.2f}s"
        + (" (cancelled)" if report.cancelled else "")
    )
    for failure in failures:
        console.print(f"  [red]✗[/red] {escape(failure)}")

    # Show saved files
    if saved_files:
        console.print("\n[bold]Reports saved to:[/bold]")
        for f in saved_files:
            console.print(f"  • {f}")


@cli.command()
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Configuration file with additional query definitions"
)
def queries(config_path: Optional[Path]):
    """
    List registered query specs.
    """
    try:
        config = load_config(config_path=config_path)
        registry = config.build_registry()
    except ConfigValidationError as e:
        _print_config_error(e)
        sys.exit(EXIT_CONFIG_ERROR)
    except RegistryError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {escape(str(e))}")
        sys.exit(EXIT_CONFIG_ERROR)

    table = Table(title="Query Specs", show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Description")

    for spec in registry:
        table.add_row(escape(spec.name), escape(spec.description))

    console.print(table)


@cli.command()
@click.argument(
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
def validate(config_path: Path):
    """
    Validate a configuration file.

    Checks the schema, cross-field constraints, query definitions and that
    every scenario refers to a known query spec.
    """
    try:
        config = LoadTestConfig.from_yaml(config_path)
        registry = config.build_registry()
    except ConfigValidationError as e:
        _print_config_error(e)
        sys.exit(EXIT_CONFIG_ERROR)
    except RegistryError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {escape(str(e))}")
        sys.exit(EXIT_CONFIG_ERROR)

    unknown = [s for s in config.scenarios if s.query_spec_name not in registry]
    if unknown:
        console.print("[bold red]Configuration error:[/bold red] unknown query specs")
        for s in unknown:
            console.print(f"  • scenario {s.name}: no query spec named '{s.query_spec_name}'")
        sys.exit(EXIT_CONFIG_ERROR)

    console.print(
        f"[bold green]✓[/bold green] {config_path} is valid "
        f"({len(config.scenarios)} scenarios, {len(registry)} query specs)"
    )


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
