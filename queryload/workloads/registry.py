"""
Registry of named query specs.

A QuerySpec couples a name with a function that builds a fresh
QueryRequest for a given instant. Specs are registered once at startup
and looked up by scenarios through their ``query_spec_name``.
"""

import functools
import logging
import random
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from ..framework.models import QueryRequest
from ..framework.window import seconds_to_ns, window_for

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_SECONDS = 15 * 60
DEFAULT_JITTER_FRACTION = 0.10
DEFAULT_STEP_SECONDS = 60


class RegistryError(Exception):
    """Base exception for registry misuse."""

    def __init__(self, message: str, name: Optional[str] = None):
        super().__init__(message)
        self.name = name


class DuplicateNameError(RegistryError):
    """Raised when registering a spec whose name is already taken."""
    pass


class NotFoundError(RegistryError):
    """Raised when looking up a spec that was never registered."""
    pass


@dataclass(frozen=True)
class QuerySpec:
    """
    A named query generator.

    Attributes:
        name: Unique name within a registry
        build: Callable ``(now_ns, rng=None) -> QueryRequest``
        description: Human-readable summary, shown by the CLI
    """

    name: str
    build: Callable[..., QueryRequest]
    description: str = ""


def _build_range_query(
    now_ns: int,
    rng: Optional[random.Random] = None,
    *,
    query: str,
    lookback_seconds: float,
    jitter_fraction: float,
    step_seconds: int,
    resolution_ns: int,
) -> QueryRequest:
    start_ns, end_ns = window_for(
        now_ns,
        seconds_to_ns(lookback_seconds),
        jitter_fraction,
        rng,
        resolution_ns=resolution_ns,
    )
    return QueryRequest(
        query=query,
        start_ns=start_ns,
        end_ns=end_ns,
        step_seconds=step_seconds,
    )


def range_query_spec(
    name: str,
    query: str,
    lookback_seconds: float = DEFAULT_LOOKBACK_SECONDS,
    jitter_fraction: float = DEFAULT_JITTER_FRACTION,
    step_seconds: int = DEFAULT_STEP_SECONDS,
    resolution_ns: int = 1,
) -> QuerySpec:
    """Create a spec that issues ``query`` over a jittered lookback window.

    Args:
        name: Spec name
        query: Query expression sent verbatim
        lookback_seconds: Nominal window length before "now"
        jitter_fraction: Jitter as a fraction of the lookback, in [0, 1)
        step_seconds: Resolution step
        resolution_ns: Wire unit start/end are sent in; windows never
            collapse to a single unit

    Returns:
        QuerySpec whose ``build`` draws a new window on every call

    Raises:
        ValueError: If any parameter is out of range
    """
    if not name:
        raise ValueError("query spec name must be non-empty")
    if not query:
        raise ValueError(f"query spec {name!r}: query must be non-empty")
    if lookback_seconds <= 0:
        raise ValueError(f"query spec {name!r}: lookback must be > 0")
    if not 0 <= jitter_fraction < 1:
        raise ValueError(f"query spec {name!r}: jitter_fraction must be in [0, 1)")
    if step_seconds <= 0:
        raise ValueError(f"query spec {name!r}: step must be > 0")
    if resolution_ns > 1 and seconds_to_ns(lookback_seconds) < 2 * resolution_ns:
        raise ValueError(
            f"query spec {name!r}: lookback {lookback_seconds:g}s is shorter than "
            f"two wire time units ({2 * resolution_ns / 1e9:g}s)"
        )

    build = functools.partial(
        _build_range_query,
        query=query,
        lookback_seconds=lookback_seconds,
        jitter_fraction=jitter_fraction,
        step_seconds=step_seconds,
        resolution_ns=resolution_ns,
    )
    return QuerySpec(
        name=name,
        build=build,
        description=(
            f"{query} over {lookback_seconds:g}s "
            f"(jitter {jitter_fraction:.0%}, step {step_seconds}s)"
        ),
    )


class QuerySpecRegistry:
    """
    Holds named query specs in registration order.

    Example:
        >>> registry = QuerySpecRegistry()
        >>> registry.register(range_query_spec("metric", "up"))
        >>> registry.get("metric").build(now_ns).query
        'up'
    """

    def __init__(self):
        self._specs: dict[str, QuerySpec] = {}

    def register(self, spec: QuerySpec) -> None:
        """Register a spec.

        Raises:
            DuplicateNameError: If a spec with the same name exists
        """
        if spec.name in self._specs:
            raise DuplicateNameError(
                f"Query spec '{spec.name}' is already registered",
                name=spec.name,
            )
        self._specs[spec.name] = spec
        logger.debug("Registered query spec %s", spec.name)

    def get(self, name: str) -> QuerySpec:
        """Look up a spec by name.

        Raises:
            NotFoundError: If no spec has that name
        """
        try:
            return self._specs[name]
        except KeyError:
            known = ", ".join(self._specs) or "none"
            raise NotFoundError(
                f"Unknown query spec '{name}' (registered: {known})",
                name=name,
            ) from None

    def names(self) -> list[str]:
        """Names in registration order."""
        return list(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def __iter__(self) -> Iterator[QuerySpec]:
        return iter(list(self._specs.values()))
