"""
Configuration management for queryload.

This module handles loading, parsing, and validating run configurations
from YAML files and command-line arguments.
"""

import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

import yaml
from jsonschema import Draft7Validator

from ..workloads.builtin import default_registry
from ..workloads.registry import (
    DEFAULT_JITTER_FRACTION,
    DEFAULT_LOOKBACK_SECONDS,
    DEFAULT_STEP_SECONDS,
    QuerySpecRegistry,
    range_query_spec,
)
from .models import ScenarioConfig, TimestampUnit
from .query_client import build_query_range_url

DURATION_PATTERN = "^[0-9]+(ms|s|m|h|d)$"

# JSON Schema for configuration validation
CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "seed": {"type": ["integer", "null"]},
        "target": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "url": {"type": "string"},
                "tenant": {"type": ["string", "integer", "null"]},
                "timeout": {"type": "string", "pattern": DURATION_PATTERN},
                "insecure_skip_tls_verify": {"type": "boolean"},
                "auth_token": {"type": ["string", "null"]},
                "timestamp_unit": {
                    "type": "string",
                    "enum": [u.value for u in TimestampUnit],
                },
            },
        },
        "scenarios": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "query"],
                "additionalProperties": False,
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "query": {"type": "string", "minLength": 1},
                    "concurrency": {"type": "integer", "minimum": 0},
                    "duration": {"type": "string", "pattern": DURATION_PATTERN},
                },
            },
        },
        "queries": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "required": ["query"],
                "additionalProperties": False,
                "properties": {
                    "query": {"type": "string", "minLength": 1},
                    "lookback": {"type": "string", "pattern": DURATION_PATTERN},
                    "jitter_fraction": {
                        "type": "number",
                        "minimum": 0,
                        "exclusiveMaximum": 1,
                    },
                    "step": {"type": "string", "pattern": DURATION_PATTERN},
                },
            },
        },
        "thresholds": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "min_total_requests": {"type": "integer", "minimum": 0},
                "min_success_rate_percent": {
                    "type": "number",
                    "minimum": 0,
                    "maximum": 100,
                },
                "max_p99_latency_ms": {"type": "number", "exclusiveMinimum": 0},
            },
        },
    },
}


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


def validate_config(data: dict[str, Any]) -> list[str]:
    """
    Validate configuration data against the schema.

    Args:
        data: Configuration dictionary to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = Draft7Validator(CONFIG_SCHEMA)
    errors = []
    for error in validator.iter_errors(data):
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        errors.append(f"{path}: {error.message}")
    return errors


def expand_env_vars(value: str) -> str:
    """
    Expand environment variables in a string.

    Supports ${VAR_NAME} syntax; unset variables expand to "".

    Args:
        value: String potentially containing environment variable references

    Returns:
        String with environment variables expanded
    """
    if not isinstance(value, str):
        return value

    pattern = r'\$\{([^}]+)\}'

    def replace_env(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")

    return re.sub(pattern, replace_env, value)


def parse_duration(duration_str: str) -> float:
    """Parse a duration string to seconds.

    Args:
        duration_str: Duration string (e.g., "500ms", "30s", "30m", "1h", "1d")

    Returns:
        Duration in seconds

    Raises:
        ValueError: If the string is not ``<integer><unit>``
    """
    match = re.fullmatch(r"\s*([0-9]+)(ms|s|m|h|d)\s*", duration_str or "")
    if not match:
        raise ValueError(
            f"Invalid duration '{duration_str}': expected <integer><ms|s|m|h|d>"
        )

    value = int(match.group(1))
    multipliers = {
        "ms": 0.001,
        "s": 1,
        "m": 60,
        "h": 3600,
        "d": 86400,
    }
    return value * multipliers[match.group(2)]


def format_duration(seconds: float) -> str:
    """Format seconds as the shortest exact duration string."""
    if seconds != int(seconds):
        return f"{int(round(seconds * 1000))}ms"
    seconds = int(seconds)
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60)):
        if seconds and seconds % size == 0:
            return f"{seconds // size}{unit}"
    return f"{seconds}s"


@dataclass
class TargetConfig:
    """Configuration for the query endpoint under load.

    Attributes:
        url: Base URL of vmselect (or a single-node instance); ${VAR} expanded
        tenant: Cluster tenant ID, None for a single-node target
        timeout: Per-request timeout
        insecure_skip_tls_verify: Skip certificate verification
        auth_token: Optional bearer token; ${VAR} expanded
        timestamp_unit: Unit for ``start``/``end`` on the wire
    """

    url: str = "${VMSELECT_URL}"
    tenant: Optional[str] = "0"
    timeout: str = "30s"
    insecure_skip_tls_verify: bool = False
    auth_token: Optional[str] = "${QUERYLOAD_AUTH_TOKEN}"
    timestamp_unit: str = TimestampUnit.SECONDS.value

    @property
    def resolved_url(self) -> str:
        return expand_env_vars(self.url).strip()

    @property
    def resolved_auth_token(self) -> Optional[str]:
        if not self.auth_token:
            return None
        return expand_env_vars(self.auth_token).strip() or None

    @property
    def endpoint(self) -> str:
        """Full ``query_range`` URL."""
        return build_query_range_url(self.resolved_url, self.tenant)

    @property
    def timeout_seconds(self) -> float:
        return parse_duration(self.timeout)

    @property
    def unit(self) -> TimestampUnit:
        return TimestampUnit(self.timestamp_unit)


@dataclass
class QueryDefinition:
    """A user-defined range query spec."""

    name: str
    query: str
    lookback: str = format_duration(DEFAULT_LOOKBACK_SECONDS)
    jitter_fraction: float = DEFAULT_JITTER_FRACTION
    step: str = format_duration(DEFAULT_STEP_SECONDS)

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "lookback": self.lookback,
            "jitter_fraction": self.jitter_fraction,
            "step": self.step,
        }


@dataclass
class ThresholdConfig:
    """Pass/fail thresholds evaluated against the run report.

    Attributes:
        min_total_requests: Minimum requests issued across all scenarios
        min_success_rate_percent: Minimum 2xx rate per completed scenario
        max_p99_latency_ms: Maximum p99 latency per completed scenario
    """

    min_total_requests: Optional[int] = None
    min_success_rate_percent: Optional[float] = None
    max_p99_latency_ms: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            key: value
            for key, value in (
                ("min_total_requests", self.min_total_requests),
                ("min_success_rate_percent", self.min_success_rate_percent),
                ("max_p99_latency_ms", self.max_p99_latency_ms),
            )
            if value is not None
        }


def default_scenarios() -> list[ScenarioConfig]:
    """The vmselect load scenario: three query shapes, 50 workers, 30 minutes."""
    return [
        ScenarioConfig(name=f"test_{query}", query_spec_name=query,
                       concurrency=50, duration_seconds=30 * 60)
        for query in ("metric", "sum", "rate")
    ]


@dataclass
class LoadTestConfig:
    """
    Main configuration class for queryload.

    Holds the target endpoint, the ordered scenario set, user-defined
    query specs, and pass/fail thresholds for one run.
    """

    name: str = "vmselect-load"
    seed: Optional[int] = None
    target: TargetConfig = field(default_factory=TargetConfig)
    scenarios: list[ScenarioConfig] = field(default_factory=default_scenarios)
    queries: list[QueryDefinition] = field(default_factory=list)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)

    def __post_init__(self):
        """Validate cross-field constraints."""
        errors = []

        names = [s.name for s in self.scenarios]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            errors.append(f"scenarios: duplicate scenario names: {', '.join(duplicates)}")

        try:
            TimestampUnit(self.target.timestamp_unit)
        except ValueError:
            errors.append(f"target.timestamp_unit: unknown unit '{self.target.timestamp_unit}'")

        try:
            parse_duration(self.target.timeout)
        except ValueError as e:
            errors.append(f"target.timeout: {e}")

        if errors:
            raise ConfigValidationError("Invalid configuration", errors)

    @classmethod
    def from_yaml(cls, path: Path | str, validate: bool = True) -> "LoadTestConfig":
        """
        Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file
            validate: Whether to validate against the schema

        Returns:
            LoadTestConfig instance

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigValidationError: If validation fails
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigValidationError(f"Invalid YAML in {path}", [str(e)]) from e

        if not isinstance(data, dict):
            raise ConfigValidationError(
                f"Invalid configuration in {path}", ["root: expected a mapping"]
            )

        if validate:
            errors = validate_config(data)
            if errors:
                raise ConfigValidationError(
                    f"Configuration validation failed for {path}", errors
                )

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LoadTestConfig":
        """
        Create configuration from a dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            LoadTestConfig instance
        """
        target_data = data.get("target") or {}
        defaults = TargetConfig()
        tenant = target_data.get("tenant", defaults.tenant)
        target = TargetConfig(
            url=target_data.get("url", defaults.url),
            tenant=str(tenant) if tenant is not None else None,
            timeout=target_data.get("timeout", defaults.timeout),
            insecure_skip_tls_verify=target_data.get(
                "insecure_skip_tls_verify", defaults.insecure_skip_tls_verify
            ),
            auth_token=target_data.get("auth_token", defaults.auth_token),
            timestamp_unit=target_data.get("timestamp_unit", defaults.timestamp_unit),
        )

        if "scenarios" in data:
            try:
                scenarios = [
                    ScenarioConfig(
                        name=s["name"],
                        query_spec_name=s["query"],
                        concurrency=s.get("concurrency", 1),
                        duration_seconds=parse_duration(s.get("duration", "0s")),
                    )
                    for s in data["scenarios"] or []
                ]
            except (KeyError, ValueError) as e:
                raise ConfigValidationError("Invalid scenario definition", [str(e)]) from e
        else:
            scenarios = default_scenarios()

        queries = [
            QueryDefinition(
                name=name,
                query=q["query"],
                lookback=q.get("lookback", format_duration(DEFAULT_LOOKBACK_SECONDS)),
                jitter_fraction=q.get("jitter_fraction", DEFAULT_JITTER_FRACTION),
                step=q.get("step", format_duration(DEFAULT_STEP_SECONDS)),
            )
            for name, q in (data.get("queries") or {}).items()
        ]

        thresholds_data = data.get("thresholds") or {}
        thresholds = ThresholdConfig(
            min_total_requests=thresholds_data.get("min_total_requests"),
            min_success_rate_percent=thresholds_data.get("min_success_rate_percent"),
            max_p99_latency_ms=thresholds_data.get("max_p99_latency_ms"),
        )

        return cls(
            name=data.get("name", "vmselect-load"),
            seed=data.get("seed"),
            target=target,
            scenarios=scenarios,
            queries=queries,
            thresholds=thresholds,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary representation."""
        return {
            "name": self.name,
            "seed": self.seed,
            "target": {
                "url": self.target.url,
                "tenant": self.target.tenant,
                "timeout": self.target.timeout,
                "insecure_skip_tls_verify": self.target.insecure_skip_tls_verify,
                "auth_token": self.target.auth_token,
                "timestamp_unit": self.target.timestamp_unit,
            },
            "scenarios": [
                {
                    "name": s.name,
                    "query": s.query_spec_name,
                    "concurrency": s.concurrency,
                    "duration": format_duration(s.duration_seconds),
                }
                for s in self.scenarios
            ],
            "queries": {q.name: q.to_dict() for q in self.queries},
            "thresholds": self.thresholds.to_dict(),
        }

    def merge_cli_args(
        self,
        url: Optional[str] = None,
        tenant: Optional[str] = None,
        concurrency: Optional[int] = None,
        duration: Optional[str] = None,
        timeout: Optional[str] = None,
        insecure: Optional[bool] = None,
        timestamp_unit: Optional[str] = None,
        seed: Optional[int] = None,
        scenario_names: Optional[list[str]] = None,
    ) -> "LoadTestConfig":
        """
        Merge command-line arguments into the configuration.

        CLI arguments take precedence over file configuration. Concurrency
        and duration overrides apply to every scenario.

        Args:
            url: Target base URL override
            tenant: Tenant override ("" selects the single-node path)
            concurrency: Workers per scenario override
            duration: Duration per scenario override (e.g. "5m")
            timeout: Per-request timeout override
            insecure: Skip TLS verification
            timestamp_unit: Wire timestamp unit override
            seed: Random seed override
            scenario_names: Run only these scenarios, in this order

        Returns:
            New LoadTestConfig with merged values

        Raises:
            ConfigValidationError: If a selected scenario does not exist
        """
        new_config = LoadTestConfig.from_dict(self.to_dict())

        if url:
            new_config.target.url = url
        if tenant is not None:
            new_config.target.tenant = tenant or None
        if timeout:
            new_config.target.timeout = timeout
        if insecure is not None:
            new_config.target.insecure_skip_tls_verify = insecure
        if timestamp_unit:
            new_config.target.timestamp_unit = timestamp_unit
        if seed is not None:
            new_config.seed = seed

        scenarios = new_config.scenarios
        if scenario_names:
            by_name = {s.name: s for s in scenarios}
            unknown = [n for n in scenario_names if n not in by_name]
            if unknown:
                raise ConfigValidationError(
                    "Unknown scenario(s) selected",
                    [f"scenarios: no scenario named '{n}'" for n in unknown],
                )
            scenarios = [by_name[n] for n in scenario_names]
        if concurrency is not None:
            scenarios = [replace(s, concurrency=concurrency) for s in scenarios]
        if duration:
            seconds = parse_duration(duration)
            scenarios = [replace(s, duration_seconds=seconds) for s in scenarios]
        new_config.scenarios = scenarios

        # Re-validate after merging
        new_config.__post_init__()

        return new_config

    def require_target(self) -> None:
        """Check that the configuration can be run.

        Raises:
            ConfigValidationError: If no target URL is configured
        """
        if not self.target.resolved_url:
            raise ConfigValidationError(
                "No target URL configured",
                ["target.url: set it in the config, pass --url, or export VMSELECT_URL"],
            )

    def build_registry(self) -> QuerySpecRegistry:
        """Built-in query specs plus the ones defined under ``queries``.

        Custom windows are checked against the target's timestamp unit so
        that start and end stay distinct once truncated for the wire.

        Raises:
            DuplicateNameError: If a custom query reuses a registered name
            ConfigValidationError: If a custom query has invalid parameters
        """
        registry = default_registry()
        for definition in self.queries:
            try:
                step = parse_duration(definition.step)
                if step != int(step):
                    raise ValueError(
                        f"query spec {definition.name!r}: step must be a whole number "
                        f"of seconds, got {definition.step}"
                    )
                spec = range_query_spec(
                    definition.name,
                    definition.query,
                    lookback_seconds=parse_duration(definition.lookback),
                    jitter_fraction=definition.jitter_fraction,
                    step_seconds=int(step),
                    resolution_ns=self.target.unit.resolution_ns,
                )
            except ValueError as e:
                raise ConfigValidationError(
                    f"Invalid query definition '{definition.name}'", [str(e)]
                ) from e
            registry.register(spec)
        return registry


def load_config(
    config_path: Optional[Path | str] = None,
    url: Optional[str] = None,
    tenant: Optional[str] = None,
    concurrency: Optional[int] = None,
    duration: Optional[str] = None,
    timeout: Optional[str] = None,
    insecure: Optional[bool] = None,
    timestamp_unit: Optional[str] = None,
    seed: Optional[int] = None,
    scenario_names: Optional[list[str]] = None,
    validate: bool = True,
) -> LoadTestConfig:
    """
    Load and merge configuration from file and CLI arguments.

    This is the main entry point for loading configuration.

    Args:
        config_path: Path to YAML configuration file (optional)
        url: Target base URL override
        tenant: Tenant override
        concurrency: Workers per scenario override
        duration: Duration per scenario override
        timeout: Per-request timeout override
        insecure: Skip TLS verification
        timestamp_unit: Wire timestamp unit override
        seed: Random seed override
        scenario_names: Run only these scenarios
        validate: Whether to validate configuration

    Returns:
        LoadTestConfig with merged values
    """
    if config_path:
        config = LoadTestConfig.from_yaml(config_path, validate=validate)
    else:
        config = LoadTestConfig()

    # Merge CLI arguments
    return config.merge_cli_args(
        url=url,
        tenant=tenant,
        concurrency=concurrency,
        duration=duration,
        timeout=timeout,
        insecure=insecure,
        timestamp_unit=timestamp_unit,
        seed=seed,
        scenario_names=scenario_names,
    )
