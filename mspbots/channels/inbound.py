"""Inbound MSPBots payloads and the host dispatch seam."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from loguru import logger

CHANNEL_ID = "mspbots"
DEFAULT_SENDER_ID = "local-tester"
DEFAULT_SENDER_NAME = "User"

ReplySink = Callable[[str], Awaitable[None]]


def _first_str(payload: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    return ""


def new_message_id() -> str:
    return f"msg-{int(time.time() * 1000)}-{secrets.token_hex(5)}"


@dataclass
class InboundMessage:
    """A user message received over the ingestion connection."""

    account_id: str
    text: str
    sender_id: str
    sender_name: str
    agent_id: str = ""
    app_id: str = ""
    task_id: str = ""
    message_type: str = ""
    message_id: str = field(default_factory=new_message_id)
    received_at: float = field(default_factory=time.time)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def from_address(self) -> str:
        return f"{CHANNEL_ID}:{self.sender_id}"

    @property
    def to_address(self) -> str:
        return f"user:{self.sender_id}"

    @property
    def context_key(self) -> str:
        return f"{CHANNEL_ID}:message:{self.task_id or self.message_id}"


def parse_inbound_payload(account_id: str, payload: dict[str, Any]) -> InboundMessage | None:
    """
    Map an application frame to an InboundMessage.

    Returns None when the frame carries no text content.
    """
    text = payload.get("data")
    if not isinstance(text, str) or not text:
        text = payload.get("message")
    if not isinstance(text, str) or not text.strip():
        return None
    return InboundMessage(
        account_id=account_id,
        text=text,
        sender_id=_first_str(payload, ("userId", "senderId")) or DEFAULT_SENDER_ID,
        sender_name=_first_str(payload, ("senderName",)) or DEFAULT_SENDER_NAME,
        agent_id=_first_str(payload, ("agentId",)),
        app_id=_first_str(payload, ("appId",)),
        task_id=_first_str(payload, ("taskId",)),
        message_type=_first_str(payload, ("type",)),
        raw=dict(payload),
    )


class InboundDispatcher(Protocol):
    """Host runtime seam: route, format and run the agent for one message.

    ``reply`` delivers one reply text back to the sender. The dispatcher
    is awaited to completion before the next frame is read.
    """

    async def dispatch(self, message: InboundMessage, reply: ReplySink) -> None: ...


class LogOnlyDispatcher:
    """Dispatcher used when no host runtime is attached."""

    async def dispatch(self, message: InboundMessage, reply: ReplySink) -> None:
        logger.info(
            f"MSPBots[{message.account_id}] message from {message.sender_name} "
            f"({message.sender_id}): {message.text[:50]}"
        )
