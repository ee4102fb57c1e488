"""Per-command loguru file sinks under ~/.mspbots/logs."""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from mspbots.utils.helpers import ensure_dir, get_data_path

LOG_ROTATION = "10 MB"
LOG_RETENTION = "14 days"

_sinks: dict[str, int] = {}


def ensure_rotating_log_file(name: str, level: str = "INFO") -> Path:
    """Add ``<name>.log`` as a rotating sink once per process and return its path."""
    log_path = ensure_dir(get_data_path() / "logs") / f"{name}.log"
    if name not in _sinks:
        # enqueue: the config sync logs from a worker thread.
        _sinks[name] = logger.add(
            str(log_path),
            level=level,
            rotation=LOG_ROTATION,
            retention=LOG_RETENTION,
            enqueue=True,
            encoding="utf-8",
            backtrace=False,
            diagnose=False,
        )
    return log_path
