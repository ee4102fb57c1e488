"""Adapter startup: config sync first, then one ingestion connection per account."""

from __future__ import annotations

import asyncio
from pathlib import Path

from loguru import logger

from mspbots.channels.connection import ConnectionHandle
from mspbots.channels.inbound import InboundDispatcher, LogOnlyDispatcher
from mspbots.channels.monitor import monitor_account, resolve_account
from mspbots.config.loader import get_config_path, load_config
from mspbots.config.schema import Config
from mspbots.config_sync.reconcile import ConfigReconciler, SyncOutcome
from mspbots.infra.system_info import MachineIdentity
from mspbots.utils.exceptions import ConfigWriteError


def _load_or_default(path: Path) -> Config:
    try:
        return load_config(path)
    except ValueError as e:
        logger.error(f"{e} Falling back to defaults and environment.")
        return Config()


class Gateway:
    """Owns the startup sync and the per-account connection handles."""

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        dispatcher: InboundDispatcher | None = None,
        identity: MachineIdentity | None = None,
        skip_sync: bool = False,
    ):
        self.config_path = config_path or get_config_path()
        self.dispatcher = dispatcher or LogOnlyDispatcher()
        self.identity = identity
        self.skip_sync = skip_sync
        self.handles: list[ConnectionHandle] = []

    async def sync_config(self) -> SyncOutcome | None:
        """
        Run the reconciliation bounded by the startup timeout.

        Returns None when sync is disabled, unconfigured or timed out.
        """
        config = _load_or_default(self.config_path)
        sync = config.config_sync
        if self.skip_sync or not sync.enabled:
            return None
        if not sync.api_url:
            logger.info("ConfigSync: no apiUrl configured, skipping")
            return None

        reconciler = ConfigReconciler.from_config(
            config, fallback_path=self.config_path, identity=self.identity
        )
        try:
            return await asyncio.wait_for(reconciler.run_async(), timeout=sync.startup_timeout_seconds)
        except asyncio.TimeoutError:
            reconciler.cancel()
            logger.warning(
                f"ConfigSync: no result within {sync.startup_timeout_seconds}s, "
                "starting with the existing local config"
            )
            return None
        except ConfigWriteError as e:
            logger.error(f"ConfigSync: {e}; starting with the existing local config")
            return None

    def start_monitors(self) -> list[ConnectionHandle]:
        """Start one connection per enabled account. Needs a running loop."""
        config = _load_or_default(self.config_path)
        for account_id in config.account_ids():
            account = resolve_account(config, account_id)
            if not account.enabled:
                logger.info(f"MSPBots[{account_id}] account disabled, not starting")
                continue
            handle = monitor_account(account, self.dispatcher, monitor=config.monitor)
            if handle is not None:
                self.handles.append(handle)
        return self.handles

    async def stop(self) -> None:
        handles, self.handles = self.handles, []
        await asyncio.gather(*(h.stop() for h in handles), return_exceptions=True)

    async def run(self, stop_event: asyncio.Event) -> SyncOutcome | None:
        """Sync, start monitors, and keep them running until ``stop_event`` is set."""
        outcome = await self.sync_config()
        if outcome is not None:
            logger.info(f"ConfigSync: finished with outcome {outcome.value}")
        self.start_monitors()
        if not self.handles:
            logger.warning("MSPBots: no account could be started")
        try:
            await stop_event.wait()
        finally:
            await self.stop()
        return outcome
