"""Outbound text delivery to MSPBots (single POST, no retry)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from mspbots.utils.exceptions import ChannelError

RECEIVE_PATH = "/apps/mb-platform-agent/api/chat/receive"


@dataclass(frozen=True)
class ResolvedAccount:
    """Account settings after defaults and legacy fallbacks are applied."""

    account_id: str
    rooturl: str = ""
    accesstoken: str = ""
    agentid: str = ""
    appid: str = ""
    name: str | None = None
    enabled: bool = False

    @property
    def configured(self) -> bool:
        return bool(self.accesstoken.strip())


def build_receive_url(rooturl: str) -> str:
    base = rooturl.strip()
    if not base.startswith("http"):
        base = f"http://{base}"
    return f"{base.rstrip('/')}{RECEIVE_PATH}"


async def send_text(
    account: ResolvedAccount,
    *,
    to: str,
    text: str,
    agent_id: str = "",
    app_id: str = "",
    task_id: str = "",
    message_type: str = "",
    http: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> None:
    """
    POST one text reply. Inbound ``agent_id``/``app_id`` win over the account's.

    Raises:
        ChannelError: no root URL, transport failure or non-2xx status.
    """
    if not account.rooturl:
        raise ChannelError("mspbots", f"no root URL configured for account {account.account_id}")

    url = build_receive_url(account.rooturl)
    payload: dict[str, Any] = {
        "messageType": message_type or None,
        "appId": app_id or account.appid or None,
        "agentId": agent_id or account.agentid or None,
        "userId": to,
        "taskId": task_id or None,
        "accessToken": account.accesstoken,
        "data": {"content": text},
    }
    payload = {k: v for k, v in payload.items() if v is not None}
    logger.debug(f"MSPBots[{account.account_id}] sending message to {to}: {text[:50]}")

    try:
        if http is not None:
            response = await http.post(url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url, json=payload)
    except httpx.HTTPError as e:
        raise ChannelError("mspbots", f"send failed: {e}", is_retryable=True) from e

    if response.status_code < 200 or response.status_code >= 300:
        detail = (response.text or response.reason_phrase or "")[:200]
        raise ChannelError(
            "mspbots",
            f"failed to send message: {response.status_code} {detail}",
            is_retryable=response.status_code >= 500,
            status_code=response.status_code,
        )
