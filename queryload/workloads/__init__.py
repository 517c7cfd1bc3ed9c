"""
Query workloads: the QuerySpec registry and the built-in query shapes.
"""

from .builtin import (
    BUILTIN_QUERIES,
    builtin_specs,
    default_registry,
)
from .registry import (
    DuplicateNameError,
    NotFoundError,
    QuerySpec,
    QuerySpecRegistry,
    RegistryError,
    range_query_spec,
)

__all__ = [
    # Registry
    "QuerySpec",
    "QuerySpecRegistry",
    "range_query_spec",
    "RegistryError",
    "DuplicateNameError",
    "NotFoundError",
    # Built-ins
    "BUILTIN_QUERIES",
    "builtin_specs",
    "default_registry",
]
