"""
Test configuration and fixtures for the Votifier relay test suite.

This module sets the test environment before any configuration is loaded and
registers the fixture plugins.
"""

import os

import pytest

os.environ.setdefault("LOGGING_ENVIRONMENT", "unit_test")

pytest_plugins = [
    "votifier_relay.tests.fixtures.unit",
]


@pytest.fixture(autouse=True)
def clean_relay_context():
    """Ensure no logging context leaks between tests."""
    from votifier_relay.structured_logging.enhanced_logging_config import clear_relay_context

    clear_relay_context()
    yield
    clear_relay_context()
