"""Global pytest configuration and fixtures."""

from __future__ import annotations


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: tests that need a Redis container started through Docker"
    )


def pytest_collection_modifyitems(items):
    """Mark everything under tests/integration as an integration test."""
    for item in items:
        if "integration" in item.nodeid.split("/"):
            item.add_marker("integration")
