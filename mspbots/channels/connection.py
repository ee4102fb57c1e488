"""Reconnecting inbound websocket connection for one MSPBots account.

State machine::

    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTING / CONNECTED -> RECONNECT_PENDING -> CONNECTING
    any -> CLOSED (stop(), terminal)

Every transition goes through ``_transition``, which refuses to move once
the connection is closed. Sockets are opened one at a time: a new attempt
starts only after the previous ``async with`` block has exited and the
socket is closed. The heartbeat task lives only while CONNECTED and the
reconnect wait only while RECONNECT_PENDING.

Frames that arrive while disconnected are lost; there is no replay.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from contextlib import suppress
from enum import Enum
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets
from loguru import logger

from mspbots.utils.exceptions import classify_exception, sanitize_error_message

DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_RECONNECT_DELAY = 5.0

HEARTBEAT_TYPE = "ping"
HEARTBEAT_REPLY_TYPE = "pong"
CONTROL_TYPE = "connection"

FrameHandler = Callable[[dict[str, Any]], Awaitable[None] | None]
ErrorHandler = Callable[[BaseException], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_PENDING = "reconnect_pending"
    CLOSED = "closed"


def build_connection_url(endpoint: str, credential: str) -> str:
    """Append the access token as the ``accessToken`` query parameter."""
    if not credential:
        return endpoint
    delimiter = "&" if "?" in endpoint else "?"
    return f"{endpoint}{delimiter}{urlencode({'accessToken': credential})}"


def redact_url(url: str) -> str:
    """URL without its query string, safe to log."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


class IngestionConnection:
    """Keeps one websocket open to the ingestion endpoint until stopped."""

    def __init__(
        self,
        endpoint: str,
        credential: str,
        on_frame: FrameHandler,
        *,
        on_error: ErrorHandler | None = None,
        name: str = "default",
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
    ):
        self.endpoint = endpoint
        self.name = name
        self.heartbeat_interval = heartbeat_interval
        self.reconnect_delay = reconnect_delay
        self._url = build_connection_url(endpoint, credential)
        self._on_frame = on_frame
        self._on_error = on_error
        self._state = ConnectionState.DISCONNECTED
        self._closed = False
        self._ws: Any = None
        self._task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self.connect_attempts = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def url(self) -> str:
        return self._url

    def connect(self) -> Any:
        """Async context manager yielding an open websocket."""
        # Application-level ping frames replace library keepalive.
        return websockets.connect(self._url, ping_interval=None)

    def start(self) -> "ConnectionHandle":
        """Schedule the connection loop on the running event loop."""
        if self._closed:
            logger.warning(f"MSPBots[{self.name}] start() after stop(), ignoring")
        elif self._task is None:
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name=f"mspbots-ingestion-{self.name}"
            )
        return ConnectionHandle(self)

    async def stop(self) -> None:
        """
        Close for good. Idempotent and safe from any state, including from
        inside the frame handler. After it returns no handler call or
        reconnect attempt happens.
        """
        if not self._closed:
            self._closed = True
            self._state = ConnectionState.CLOSED
            logger.info(f"MSPBots[{self.name}] monitor stopped")
        await self._cancel_heartbeat()
        ws = self._ws
        if ws is not None:
            await self._close_socket(ws)
        task = self._task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def wait_closed(self) -> None:
        """Wait for the connection loop to finish (only happens after stop())."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    def _transition(self, target: ConnectionState) -> bool:
        if self._closed:
            return False
        if self._state != target:
            logger.debug(f"MSPBots[{self.name}] {self._state.value} -> {target.value}")
        self._state = target
        return True

    async def _run(self) -> None:
        while self._transition(ConnectionState.CONNECTING):
            self.connect_attempts += 1
            logger.info(f"MSPBots[{self.name}] connecting to websocket: {redact_url(self._url)}")
            try:
                async with self.connect() as ws:
                    if not self._transition(ConnectionState.CONNECTED):
                        break
                    self._ws = ws
                    logger.info(f"MSPBots[{self.name}] websocket connected")
                    self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(ws))
                    try:
                        await self._read_loop(ws)
                    finally:
                        await self._cancel_heartbeat()
                        self._ws = None
                if not self._closed:
                    logger.info(f"MSPBots[{self.name}] websocket closed by peer")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._report_error(e)

            if not self._transition(ConnectionState.RECONNECT_PENDING):
                break
            logger.info(f"MSPBots[{self.name}] reconnecting in {self.reconnect_delay}s...")
            await asyncio.sleep(self.reconnect_delay)

    async def _read_loop(self, ws: Any) -> None:
        async for raw in ws:
            if self._closed:
                return
            frame = self._decode(raw)
            if frame is None:
                continue
            frame_type = frame.get("type")
            if frame_type == HEARTBEAT_TYPE:
                await ws.send(json.dumps({"type": HEARTBEAT_REPLY_TYPE}))
                continue
            if frame_type == CONTROL_TYPE:
                continue
            await self._deliver(frame)

    def _decode(self, raw: Any) -> dict[str, Any] | None:
        try:
            text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)
            frame = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"MSPBots[{self.name}] error parsing websocket message: {e}")
            return None
        if not isinstance(frame, dict):
            logger.warning(f"MSPBots[{self.name}] dropping non-object frame: {str(frame)[:100]}")
            return None
        return frame

    async def _deliver(self, frame: dict[str, Any]) -> None:
        try:
            result = self._on_frame(frame)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"MSPBots[{self.name}] frame handler failed: {sanitize_error_message(str(e))}")

    async def _heartbeat_loop(self, ws: Any) -> None:
        while not self._closed:
            await asyncio.sleep(self.heartbeat_interval)
            if self._closed:
                return
            try:
                await ws.send(json.dumps({"type": HEARTBEAT_TYPE}))
            except Exception as e:
                # A failed heartbeat ends the read loop through the close.
                self._report_error(e)
                await self._close_socket(ws)
                return

    async def _cancel_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _close_socket(self, ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"MSPBots[{self.name}] error while closing websocket: {e}")

    def _report_error(self, exc: BaseException) -> None:
        code, _, _ = classify_exception(exc)
        logger.warning(f"MSPBots[{self.name}] websocket error [{code}]: {sanitize_error_message(str(exc))}")
        if self._on_error is None:
            return
        try:
            self._on_error(exc)
        except Exception as e:
            logger.error(f"MSPBots[{self.name}] error callback failed: {e}")


class ConnectionHandle:
    """Returned by ``start()``; the caller keeps it to stop the connection."""

    def __init__(self, connection: IngestionConnection):
        self._connection = connection

    @property
    def name(self) -> str:
        return self._connection.name

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    async def stop(self) -> None:
        await self._connection.stop()

    async def wait_closed(self) -> None:
        await self._connection.wait_closed()


def start_ingestion(
    endpoint: str,
    credential: str,
    on_frame: FrameHandler,
    on_error: ErrorHandler | None = None,
    **kwargs: Any,
) -> ConnectionHandle:
    """Create an ``IngestionConnection`` and start it on the running loop."""
    return IngestionConnection(endpoint, credential, on_frame, on_error=on_error, **kwargs).start()
