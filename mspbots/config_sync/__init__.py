"""Startup configuration sync with the distribution platform."""

from mspbots.config_sync.canonical import canonicalize, content_hash
from mspbots.config_sync.client import ConfigDistributionClient, ConfigDistributionError
from mspbots.config_sync.reconcile import (
    ConfigReconciler,
    ReconciliationRecord,
    SyncOutcome,
    run_config_sync,
)

__all__ = [
    "canonicalize",
    "content_hash",
    "ConfigDistributionClient",
    "ConfigDistributionError",
    "ConfigReconciler",
    "ReconciliationRecord",
    "SyncOutcome",
    "run_config_sync",
]
