"""Pytest configuration for DiscoClaude tests."""

import logging
import os

import pytest

# Keep config loading independent of any developer config.yml / .env.
os.environ.setdefault("DISCOCLAUDE_CONFIG_PATH", os.path.join(os.path.dirname(__file__), "missing-config.yml"))
os.environ.setdefault("DISCOCLAUDE_ENV_PATH", os.path.join(os.path.dirname(__file__), "missing.env"))

logging.getLogger("discoclaude").handlers.clear()


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=1s, integration=5s."""
    for item in items:
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(1))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(5))
