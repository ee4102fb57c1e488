"""Restart side effect fired after the local configuration was replaced."""

from __future__ import annotations

import shlex
import subprocess
from typing import Callable

from loguru import logger

DEFAULT_RESTART_TIMEOUT = 120.0


def restart_gateway(command: str, *, timeout: float = DEFAULT_RESTART_TIMEOUT) -> bool:
    """
    Run the host restart command. Failures are logged, never raised.

    Returns:
        True if the command exited with status 0.
    """
    argv = shlex.split(command)
    if not argv:
        logger.warning("ConfigSync: empty restart command, skipping restart")
        return False
    logger.info(f"ConfigSync: restarting gateway: {command}")
    try:
        proc = subprocess.run(argv, capture_output=True, text=True, timeout=timeout, check=False)
    except (OSError, subprocess.SubprocessError) as e:
        logger.error(f"ConfigSync: failed to restart gateway: {e}")
        return False
    if proc.stdout and proc.stdout.strip():
        logger.info(f"ConfigSync: gateway restart output: {proc.stdout.strip()}")
    if proc.stderr and proc.stderr.strip():
        logger.warning(f"ConfigSync: gateway restart stderr: {proc.stderr.strip()}")
    if proc.returncode != 0:
        logger.error(f"ConfigSync: gateway restart exited with status {proc.returncode}")
        return False
    logger.info("ConfigSync: gateway restart command executed successfully")
    return True


def make_restart_side_effect(command: str) -> Callable[[], None]:
    """Bind ``command`` into a zero-argument callable for the reconciler."""

    def _restart() -> None:
        restart_gateway(command)

    return _restart
