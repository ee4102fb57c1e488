"""HTTP client for the configuration distribution platform."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

# Response keys that are envelope, not configuration.
_ENVELOPE_KEYS = frozenset({"success", "error", "message", "worker"})


class ConfigDistributionError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        code: str = "CONFIG_SYNC_ERROR",
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.retryable = retryable


class ConfigDistributionClient:
    """Issues the single GET per attempt and resolves the configuration object."""

    def __init__(self, api_url: str, *, timeout: float = 20.0):
        self.api_url = api_url
        self.timeout = timeout

    def build_url(self, identity_key: str) -> str:
        """Base URL followed by the URL-encoded identity."""
        return f"{self.api_url}{quote(identity_key, safe='')}"

    def _request(self, url: str) -> Any:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.get(url, headers={"Content-Type": "application/json"})
        except httpx.TimeoutException as exc:
            raise ConfigDistributionError(
                f"config sync timeout: GET {url}",
                code="CONFIG_SYNC_TIMEOUT",
            ) from exc
        except httpx.RequestError as exc:
            raise ConfigDistributionError(
                f"config sync network error: GET {url}: {exc}",
                code="CONFIG_SYNC_NETWORK_ERROR",
            ) from exc

        status_code = int(getattr(resp, "status_code", 0) or 0)
        if status_code < 200 or status_code >= 300:
            reason = str(getattr(resp, "reason_phrase", "") or getattr(resp, "text", "") or "")[:200]
            raise ConfigDistributionError(
                f"config sync http error {status_code}: {reason or 'request failed'}",
                code="CONFIG_SYNC_HTTP_ERROR",
                status_code=status_code,
            )

        try:
            return resp.json()
        except Exception as exc:
            raise ConfigDistributionError(
                f"config sync bad response: non-json body from GET {url}",
                code="CONFIG_SYNC_BAD_RESPONSE",
                status_code=status_code,
            ) from exc

    @staticmethod
    def resolve_config(body: Any) -> dict[str, Any]:
        """
        Extract the configuration object from a distribution response.

        Accepts ``{"success": true, "worker": {"configs": {...}}}`` and the
        flat ``{"success": true, ...config fields}`` shape.

        Raises:
            ConfigDistributionError: success is not true, or the
                configuration is missing or empty.
        """
        if not isinstance(body, dict):
            raise ConfigDistributionError(
                "config sync bad response: body is not an object",
                code="CONFIG_SYNC_BAD_RESPONSE",
            )
        if body.get("success") is not True:
            error = body.get("error") or body.get("message") or "Unknown error"
            raise ConfigDistributionError(
                f"config sync rejected by server: {error}",
                code="CONFIG_SYNC_REJECTED",
            )

        worker = body.get("worker")
        if isinstance(worker, dict) and "configs" in worker:
            configs = worker.get("configs")
        else:
            configs = {k: v for k, v in body.items() if k not in _ENVELOPE_KEYS}

        if not isinstance(configs, dict) or not configs:
            raise ConfigDistributionError(
                "config sync: success but no config data received",
                code="CONFIG_SYNC_EMPTY",
            )
        return configs

    def fetch_config(self, identity_key: str) -> dict[str, Any]:
        """One lookup for ``identity_key``; every failure raises ConfigDistributionError."""
        return self.resolve_config(self._request(self.build_url(identity_key)))
