"""Per-account inbound monitor: account resolution, websocket URL, frame routing."""

from __future__ import annotations

import os
from typing import Any, Callable

from loguru import logger

from mspbots.channels.connection import ConnectionHandle, IngestionConnection
from mspbots.channels.inbound import InboundDispatcher, InboundMessage, parse_inbound_payload
from mspbots.channels.send import ResolvedAccount, send_text
from mspbots.config.schema import DEFAULT_WS_URL, Config, MonitorConfig
from mspbots.utils.exceptions import sanitize_error_message


def resolve_account(config: Config, account_id: str) -> ResolvedAccount:
    """Apply defaults: https:// for scheme-less root URLs, legacy token, enabled-by-token."""
    acc = config.channels.mspbots.accounts.get(account_id)
    if acc is None:
        return ResolvedAccount(account_id=account_id)
    rooturl = acc.rooturl.strip()
    if rooturl and not rooturl.startswith("http") and not rooturl.startswith("ws"):
        rooturl = f"https://{rooturl}"
    accesstoken = (acc.accesstoken or acc.token).strip()
    enabled = acc.enabled if acc.enabled is not None else bool(acc.accesstoken.strip())
    return ResolvedAccount(
        account_id=account_id,
        rooturl=rooturl,
        accesstoken=accesstoken,
        agentid=acc.agentid,
        appid=acc.appid,
        name=acc.name,
        enabled=enabled,
    )


def build_ws_url(rooturl: str, ws_path: str = "/ws/openclaw") -> str:
    """Websocket endpoint for a root URL (http -> ws, https -> wss)."""
    if not rooturl:
        return os.environ.get("MSPBOTS_WS_URL") or DEFAULT_WS_URL
    base = rooturl.strip()
    if base.startswith("http"):
        base = "ws" + base[len("http"):]
    elif not base.startswith("ws"):
        base = f"ws://{base}"
    base = base.rstrip("/")
    return f"{base}{ws_path if ws_path.startswith('/') else '/' + ws_path}"


def make_frame_handler(
    account: ResolvedAccount,
    dispatcher: InboundDispatcher,
    *,
    sender: Callable[..., Any] = send_text,
) -> Callable[[dict[str, Any]], Any]:
    """Frame -> InboundMessage -> dispatcher, with replies routed back to the sender."""

    async def _reply_to(message: InboundMessage, text: str) -> None:
        if not text.strip():
            return
        logger.info(f"MSPBots[{account.account_id}] delivering reply: {text[:50]}...")
        await sender(
            account,
            to=message.sender_id,
            text=text,
            agent_id=message.agent_id,
            app_id=message.app_id,
            task_id=message.task_id,
            message_type=message.message_type,
        )

    async def _handle(frame: dict[str, Any]) -> None:
        message = parse_inbound_payload(account.account_id, frame)
        if message is None:
            logger.debug(f"MSPBots[{account.account_id}] skipping message with no content")
            return

        async def reply(text: str) -> None:
            await _reply_to(message, text)

        try:
            await dispatcher.dispatch(message, reply)
        except Exception as e:
            logger.error(f"MSPBots[{account.account_id}] dispatch failed: {sanitize_error_message(str(e))}")

    return _handle


def monitor_account(
    account: ResolvedAccount,
    dispatcher: InboundDispatcher,
    *,
    monitor: MonitorConfig | None = None,
) -> ConnectionHandle | None:
    """Start the ingestion connection for ``account``; None when it cannot run."""
    if not account.accesstoken:
        logger.warning(f"MSPBots[{account.account_id}] no accesstoken provided, skipping connection")
        return None
    if not account.rooturl:
        logger.warning(f"MSPBots[{account.account_id}] no rooturl provided, skipping connection")
        return None
    monitor = monitor or MonitorConfig()
    logger.info(f"MSPBots[{account.account_id}] monitor started")
    connection = IngestionConnection(
        build_ws_url(account.rooturl, monitor.ws_path),
        account.accesstoken,
        make_frame_handler(account, dispatcher),
        name=account.account_id,
        heartbeat_interval=monitor.heartbeat_interval_seconds,
        reconnect_delay=monitor.reconnect_delay_seconds,
    )
    return connection.start()
