"""Utility functions for mspbots."""

from mspbots.utils.helpers import ensure_dir, get_data_path
from mspbots.utils.exceptions import (
    MspBotsError,
    ChannelError,
    ConfigSyncError,
    ConfigWriteError,
    CanonicalizationError,
    ErrorCategory,
    classify_exception,
    sanitize_error_message,
)

__all__ = [
    "ensure_dir",
    "get_data_path",
    "MspBotsError",
    "ChannelError",
    "ConfigSyncError",
    "ConfigWriteError",
    "CanonicalizationError",
    "ErrorCategory",
    "classify_exception",
    "sanitize_error_message",
]
