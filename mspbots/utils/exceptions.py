"""
Error types shared by the ingestion connection and the config sync.

Every mspbots error carries a stable ``code`` and an ``ErrorCategory`` so
log lines and callbacks can tell "try again later" apart from "fix the
setup". ``sanitize_error_message`` strips credentials before anything is
logged.
"""

from __future__ import annotations

import asyncio
import json
import re
from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    RECOVERABLE = "recoverable"  # degraded, keeps running on previous state
    RETRYABLE = "retryable"
    FATAL = "fatal"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    TIMEOUT = "timeout"
    RESOURCE = "resource"  # local filesystem


class MspBotsError(Exception):
    """Base class; ``str()`` renders as ``[CODE] message``."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return self.category == ErrorCategory.RETRYABLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ChannelError(MspBotsError):
    """Outbound delivery to a chat channel failed."""

    def __init__(
        self,
        channel: str,
        message: str,
        is_retryable: bool = False,
        status_code: int | None = None,
    ):
        super().__init__(
            f"Channel '{channel}' error: {message}",
            code="CHANNEL_ERROR",
            category=ErrorCategory.RETRYABLE if is_retryable else ErrorCategory.FATAL,
            details={"channel": channel, "is_retryable": is_retryable, "status_code": status_code},
        )
        self.channel = channel
        self.status_code = status_code
        self.is_retryable = is_retryable


class ConfigSyncError(MspBotsError):
    """Config sync ran out of attempts or was cancelled. Reported, not raised.

    ``code`` is ``CONFIG_SYNC_CANCELLED`` when the caller gave up (startup
    timeout) and ``CONFIG_SYNC_EXHAUSTED`` when the attempt budget ran out.
    """

    def __init__(self, message: str, attempts: int = 0, cancelled: bool = False):
        super().__init__(
            message,
            code="CONFIG_SYNC_CANCELLED" if cancelled else "CONFIG_SYNC_EXHAUSTED",
            category=ErrorCategory.RECOVERABLE,
            details={"attempts": attempts, "cancelled": cancelled},
        )
        self.attempts = attempts
        self.cancelled = cancelled


class ConfigWriteError(MspBotsError):
    """The local config file could not be replaced; the old file is intact."""

    def __init__(self, path: str, message: str):
        super().__init__(
            f"Failed to write config {path}: {message}",
            code="CONFIG_WRITE_ERROR",
            category=ErrorCategory.RESOURCE,
            details={"path": path},
        )
        self.path = path


class CanonicalizationError(MspBotsError):
    """Cyclic or too deeply nested structure."""

    def __init__(self, message: str):
        super().__init__(message, code="CANONICALIZATION_ERROR", category=ErrorCategory.VALIDATION)


# Credential values in query strings, headers and key=value text.
_CREDENTIAL_PATTERNS = (
    re.compile(r"((?:access[_-]?token|api[_-]?key|token|secret|password|auth)[=:]\s*)['\"]?[^\s'\"&]+['\"]?", re.IGNORECASE),
    re.compile(r"(bearer\s+)[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE),
)


def sanitize_error_message(message: str, replacement: str = "[REDACTED]") -> str:
    """Replace credential values in ``message`` with ``replacement``."""
    for pattern in _CREDENTIAL_PATTERNS:
        message = pattern.sub(lambda m: m.group(1) + replacement, message)
    return message


# Checked in order; subclasses before their bases (TimeoutError is an OSError).
_TYPE_RULES: tuple[tuple[type[BaseException], str, ErrorCategory], ...] = (
    (asyncio.TimeoutError, "TIMEOUT", ErrorCategory.TIMEOUT),
    (FileNotFoundError, "FILE_NOT_FOUND", ErrorCategory.NOT_FOUND),
    (PermissionError, "PERMISSION_DENIED", ErrorCategory.PERMISSION),
    (ConnectionError, "CONNECTION_ERROR", ErrorCategory.RETRYABLE),
    (OSError, "CONNECTION_ERROR", ErrorCategory.RETRYABLE),
    (json.JSONDecodeError, "JSON_PARSE_ERROR", ErrorCategory.VALIDATION),
    (ValueError, "INVALID_VALUE", ErrorCategory.VALIDATION),
)

_MESSAGE_RULES: tuple[tuple[tuple[str, ...], str, ErrorCategory], ...] = (
    (("timeout", "timed out"), "TIMEOUT", ErrorCategory.TIMEOUT),
    (("unauthorized", "401", "403"), "UNAUTHORIZED", ErrorCategory.PERMISSION),
    (("connection", "network", "closed"), "CONNECTION_ERROR", ErrorCategory.RETRYABLE),
)

_RETRY_CATEGORIES = frozenset({ErrorCategory.RETRYABLE, ErrorCategory.TIMEOUT})


def classify_exception(exc: BaseException) -> tuple[str, ErrorCategory, bool]:
    """
    Map an exception to ``(code, category, should_retry)`` for logging.

    mspbots errors report their own code; builtin errors go by type, and
    anything else (library exceptions) by keywords in the message.
    """
    if isinstance(exc, MspBotsError):
        return exc.code, exc.category, exc.retryable

    for exc_type, code, category in _TYPE_RULES:
        if isinstance(exc, exc_type):
            return code, category, category in _RETRY_CATEGORIES

    text = str(exc).lower()
    for needles, code, category in _MESSAGE_RULES:
        if any(needle in text for needle in needles):
            return code, category, category in _RETRY_CATEGORIES

    return "INTERNAL_ERROR", ErrorCategory.FATAL, False
