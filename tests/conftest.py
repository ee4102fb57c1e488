"""Pytest hooks and fixtures."""

import os

import pytest

from mspbots.infra.system_info import MachineIdentity


def pytest_configure(config):
    """Register custom markers (also in pyproject.toml)."""
    config.addinivalue_line(
        "markers",
        "requires_network: talks to a live MSPBots endpoint (skipped in CI)",
    )


def pytest_collection_modifyitems(config, items):
    """Skip requires_network tests when running in CI."""
    if os.environ.get("CI") != "true":
        return
    skip = pytest.mark.skip(reason="Requires network (skipped in CI)")
    for item in items:
        if "requires_network" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def identity() -> MachineIdentity:
    return MachineIdentity(
        ip="10.1.2.3",
        hostname="worker-1",
        os_type="linux",
        os_version="6.1.0",
        os_arch="x64",
        plugin_version="0.1.0",
        timestamp=1700000000000,
    )
