"""MSPBots channel: inbound websocket monitor and outbound delivery."""

from mspbots.channels.connection import (
    ConnectionHandle,
    ConnectionState,
    IngestionConnection,
    start_ingestion,
)
from mspbots.channels.inbound import InboundDispatcher, InboundMessage, LogOnlyDispatcher
from mspbots.channels.monitor import monitor_account, resolve_account

__all__ = [
    "ConnectionHandle",
    "ConnectionState",
    "IngestionConnection",
    "start_ingestion",
    "InboundDispatcher",
    "InboundMessage",
    "LogOnlyDispatcher",
    "monitor_account",
    "resolve_account",
]
