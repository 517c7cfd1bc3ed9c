"""
Built-in query specs.

The three query shapes of the vmselect load scenario: an instant vector
selector, a histogram aggregation and a rate over a synthetic gauge. All
cover the last 15 minutes with 10% jitter at a 60s step.
"""

from .registry import QuerySpec, QuerySpecRegistry, range_query_spec

METRIC_QUERY = "up"
SUM_QUERY = "sum by(le) (increase(vm_request_duration_seconds[1m]))"
RATE_QUERY = "rate(avalanche_gauge_metric_mmmmm_0_0[5m])"

BUILTIN_QUERIES = {
    "metric": METRIC_QUERY,
    "sum": SUM_QUERY,
    "rate": RATE_QUERY,
}


def builtin_specs() -> list[QuerySpec]:
    """Fresh instances of the built-in specs, in their canonical order."""
    return [range_query_spec(name, query) for name, query in BUILTIN_QUERIES.items()]


def default_registry() -> QuerySpecRegistry:
    """Registry pre-populated with the built-in specs."""
    registry = QuerySpecRegistry()
    for spec in builtin_specs():
        registry.register(spec)
    return registry
