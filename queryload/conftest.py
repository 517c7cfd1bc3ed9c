"""
Pytest configuration and fixtures for queryload.

This module provides shared fixtures and configuration for all tests.
"""

import random

import pytest
from hypothesis import settings, Verbosity

from queryload.workloads.builtin import default_registry

# Configure Hypothesis profiles
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.verbose,
    deadline=None,
)

settings.register_profile(
    "dev",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Load the default hypothesis profile
    settings.load_profile("default")


@pytest.fixture
def registry():
    """Registry with the built-in query specs."""
    return default_registry()


@pytest.fixture
def rng():
    """Seeded random source."""
    return random.Random(1234)
