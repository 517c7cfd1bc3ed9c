"""
queryload - load generator for time-series query backends.

Issues randomized, jittered range queries against a Prometheus-compatible
``query_range`` endpoint at fixed concurrency for a fixed duration, and
aggregates per-scenario success rates and latency percentiles.
"""

__version__ = "0.1.0"
