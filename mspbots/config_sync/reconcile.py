"""Startup configuration reconciliation.

Fetches the authoritative configuration for this machine from the
distribution platform, compares it with the local file by canonical
content hash, and replaces the local file atomically when they differ.

Network failures, non-2xx responses, ``success: false`` and empty payloads
all take the same retry path and only the attempt budget ends the loop
without a terminal outcome. Exhaustion is reported, never raised: the
process keeps running on the configuration it already had.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from mspbots.config.loader import read_json_file, write_json_atomic
from mspbots.config.schema import Config
from mspbots.config_sync.canonical import content_hash
from mspbots.config_sync.client import ConfigDistributionClient, ConfigDistributionError
from mspbots.config_sync.restart import make_restart_side_effect
from mspbots.infra.system_info import MachineIdentity, collect_machine_identity
from mspbots.utils.exceptions import CanonicalizationError, ConfigSyncError, sanitize_error_message


class SyncOutcome(str, Enum):
    UP_TO_DATE = "up_to_date"
    UPDATED = "updated"
    EXHAUSTED_RETRIES = "exhausted_retries"


@dataclass(frozen=True)
class ReconciliationRecord:
    """Local vs. remote comparison for one well-formed remote payload."""

    local_config: dict[str, Any] | None
    remote_config: dict[str, Any]
    local_hash: str
    remote_hash: str

    @classmethod
    def build(cls, local_config: dict[str, Any] | None, remote_config: dict[str, Any]) -> "ReconciliationRecord":
        remote_hash = content_hash(remote_config)
        local_hash = ""
        if local_config is not None:
            try:
                local_hash = content_hash(local_config)
            except CanonicalizationError as e:
                logger.warning(f"ConfigSync: local config cannot be hashed, treating it as absent: {e}")
        return cls(local_config, remote_config, local_hash, remote_hash)

    @property
    def in_sync(self) -> bool:
        return bool(self.local_hash) and self.local_hash == self.remote_hash


class ConfigReconciler:
    """
    One reconciliation run.

    ``run()`` blocks until a terminal outcome; ``run_async()`` runs the same
    loop in a worker thread. ``cancel()`` interrupts the poll wait, and a
    response that arrives after it is discarded without touching the file
    or restarting; the outcome is reported as exhausted.
    """

    def __init__(
        self,
        *,
        api_url: str,
        local_path: Path,
        identity: MachineIdentity | None = None,
        poll_interval: float = 3.0,
        max_attempts: int | None = None,
        restart: Callable[[], None] | None = None,
        on_sync_complete: Callable[[dict[str, Any] | None], None] | None = None,
        on_sync_error: Callable[[ConfigSyncError], None] | None = None,
        client: ConfigDistributionClient | None = None,
        request_timeout: float = 20.0,
    ):
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be >= 1 or None")
        self.local_path = Path(local_path)
        self.identity = identity
        self.poll_interval = max(0.0, poll_interval)
        self.max_attempts = max_attempts
        self.restart = restart
        self.on_sync_complete = on_sync_complete
        self.on_sync_error = on_sync_error
        self.client = client or ConfigDistributionClient(api_url, timeout=request_timeout)
        self.attempts = 0
        self.last_record: ReconciliationRecord | None = None
        self._cancelled = threading.Event()

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        fallback_path: Path,
        identity: MachineIdentity | None = None,
    ) -> "ConfigReconciler":
        sync = config.config_sync
        return cls(
            api_url=sync.api_url,
            local_path=config.sync_target_path(fallback_path),
            identity=identity,
            poll_interval=sync.poll_interval_ms / 1000.0,
            max_attempts=sync.max_retries,
            restart=make_restart_side_effect(sync.restart_command) if sync.restart_after_sync else None,
            request_timeout=sync.request_timeout_seconds,
        )

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _wait(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._cancelled.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            self._cancelled.wait(remaining)

    def _budget_left(self) -> bool:
        return self.max_attempts is None or self.attempts < self.max_attempts

    def run(self) -> SyncOutcome:
        """
        Run the loop to a terminal outcome.

        Raises:
            ConfigWriteError: the local file could not be replaced.
        """
        logger.info(f"ConfigSync: starting, api={self.client.api_url} local={self.local_path}")
        local_config = read_json_file(self.local_path)
        identity = self.identity or collect_machine_identity()
        lookup_key = identity.lookup_key()

        while self._budget_left() and not self._cancelled.is_set():
            self.attempts += 1
            logger.info(f"ConfigSync: attempt #{self.attempts}...")
            try:
                remote_config = self.client.fetch_config(lookup_key)
                if self._cancelled.is_set():
                    # The caller gave up while the request was in flight.
                    logger.warning("ConfigSync: cancelled during fetch, discarding the response")
                    break
                record = ReconciliationRecord.build(local_config, remote_config)
            except (ConfigDistributionError, CanonicalizationError) as e:
                logger.warning(f"ConfigSync: {sanitize_error_message(str(e))}")
                if self._budget_left():
                    logger.info(f"ConfigSync: retrying in {self.poll_interval:.3f}s...")
                    self._wait(self.poll_interval)
                continue

            self.last_record = record
            if record.in_sync:
                logger.info("ConfigSync: config is up to date, no update needed")
                self._notify(self.on_sync_complete, local_config)
                return SyncOutcome.UP_TO_DATE

            if self._cancelled.is_set():
                break
            logger.info("ConfigSync: config differs, updating local file...")
            write_json_atomic(self.local_path, remote_config)
            logger.info(f"ConfigSync: config written to {self.local_path}")
            if self.restart is not None:
                try:
                    self.restart()
                except Exception as e:
                    logger.error(f"ConfigSync: restart side effect failed: {e}")
            self._notify(self.on_sync_complete, remote_config)
            return SyncOutcome.UPDATED

        cancelled = self._cancelled.is_set()
        if cancelled:
            message = f"Config sync cancelled after {self.attempts} attempts"
        else:
            message = f"Config sync failed after {self.attempts} attempts"
        logger.error(f"ConfigSync: {message}, keeping existing local config")
        self._notify(self.on_sync_error, ConfigSyncError(message, attempts=self.attempts, cancelled=cancelled))
        return SyncOutcome.EXHAUSTED_RETRIES

    async def run_async(self) -> SyncOutcome:
        return await asyncio.to_thread(self.run)

    @staticmethod
    def _notify(callback: Callable[[Any], None] | None, arg: Any) -> None:
        if callback is None:
            return
        try:
            callback(arg)
        except Exception as e:
            logger.error(f"ConfigSync: callback {getattr(callback, '__name__', callback)!r} failed: {e}")


def run_config_sync(
    endpoint: str,
    local_path: Path,
    identity: MachineIdentity | None = None,
    poll_interval: float = 3.0,
    max_attempts: int | None = None,
    restart: Callable[[], None] | None = None,
) -> SyncOutcome:
    """Blocking one-shot reconciliation."""
    return ConfigReconciler(
        api_url=endpoint,
        local_path=local_path,
        identity=identity,
        poll_interval=poll_interval,
        max_attempts=max_attempts,
        restart=restart,
    ).run()
