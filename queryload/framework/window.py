"""
Jittered time windows for range queries.

Every iteration queries "the last N minutes" with both ends of the range
perturbed by a uniform random offset, so that concurrent workers do not
hit identical (and therefore cached) ranges.
"""

import logging
import random
from typing import Optional

from .models import NANOSECONDS_PER_SECOND

logger = logging.getLogger(__name__)

_default_rng = random.Random()


def jitter_range_ns(lookback_ns: int, jitter_fraction: float) -> int:
    """Half-width of the jitter applied to each end of the window.

    Truncated so the end of the window never leaves
    ``[now - lookback * fraction, now + lookback * fraction]``.
    """
    return int(lookback_ns * jitter_fraction)


def window_for(
    now_ns: int,
    lookback_ns: int,
    jitter_fraction: float,
    rng: Optional[random.Random] = None,
    resolution_ns: int = 1,
) -> tuple[int, int]:
    """Draw a jittered ``(start, end)`` pair ending around ``now``.

    ``end`` is uniform in ``[now - j, now + j]`` and ``start`` is uniform in
    ``[now - lookback - j, now - lookback + j]``, drawn independently, where
    ``j = lookback * jitter_fraction``. When a draw yields ``start >= end``
    (possible once the fraction reaches 0.5) ``start`` is drawn again.

    With a ``resolution_ns`` above one, the ordering must also survive
    truncation to that unit: ``start`` is redrawn until it falls in an
    earlier unit than ``end``.

    Args:
        now_ns: Reference instant in Unix nanoseconds
        lookback_ns: Nominal window length in nanoseconds, must be > 0
        jitter_fraction: Jitter as a fraction of the lookback, in [0, 1)
        rng: Random source, the module-level one when omitted
        resolution_ns: Wire unit the window is sent in, in nanoseconds

    Returns:
        Tuple of (start_ns, end_ns) with start_ns < end_ns

    Raises:
        ValueError: If a parameter is out of range
    """
    if lookback_ns <= 0:
        raise ValueError(f"lookback must be > 0, got {lookback_ns}ns")
    if not 0 <= jitter_fraction < 1:
        raise ValueError(f"jitter_fraction must be in [0, 1), got {jitter_fraction}")
    if resolution_ns < 1:
        raise ValueError(f"resolution must be >= 1ns, got {resolution_ns}ns")
    if resolution_ns > 1 and lookback_ns < 2 * resolution_ns:
        raise ValueError(
            f"lookback must span at least two wire units ({2 * resolution_ns}ns), got {lookback_ns}ns"
        )

    rng = rng or _default_rng
    jitter = jitter_range_ns(lookback_ns, jitter_fraction)

    end = rng.randint(now_ns - jitter, now_ns + jitter)

    start_nominal = now_ns - lookback_ns
    start = rng.randint(start_nominal - jitter, start_nominal + jitter)
    while start // resolution_ns >= end // resolution_ns:
        logger.debug(
            "Redrawing window start: start=%d end=%d (lookback=%dns, jitter=%dns, unit=%dns)",
            start, end, lookback_ns, jitter, resolution_ns,
        )
        start = rng.randint(start_nominal - jitter, start_nominal + jitter)

    return start, end


def seconds_to_ns(seconds: float) -> int:
    """Convert seconds to integer nanoseconds."""
    return int(seconds * NANOSECONDS_PER_SECOND)
