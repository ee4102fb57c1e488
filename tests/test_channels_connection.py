import asyncio
import json
import random
from contextlib import asynccontextmanager

import pytest

from mspbots.channels.connection import (
    ConnectionState,
    IngestionConnection,
    build_connection_url,
    redact_url,
    start_ingestion,
)

_CLOSE = object()


class _FakeWs:
    def __init__(self, frames=(), *, end=None):
        self._incoming: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self._incoming.put_nowait(frame)
        if end is not None:
            self._incoming.put_nowait(end)
        self.sent: list[dict] = []
        self.closed = False
        self.fail_send = False

    def push(self, frame) -> None:
        self._incoming.put_nowait(frame)

    async def send(self, data: str) -> None:
        if self.closed or self.fail_send:
            raise ConnectionResetError("send on broken socket")
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item if isinstance(item, (str, bytes)) else json.dumps(item)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(_CLOSE)


class _FakeServer:
    """Hands out scripted sockets/errors and tracks how many are open."""

    def __init__(self, script=()):
        self.script = list(script)
        self.connects = 0
        self.active = 0
        self.max_active = 0
        self.sockets: list[_FakeWs] = []

    def install(self, conn: IngestionConnection) -> None:
        @asynccontextmanager
        async def _fake_connect():
            self.connects += 1
            item = self.script.pop(0) if self.script else ConnectionRefusedError("refused")
            if isinstance(item, BaseException):
                raise item
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.sockets.append(item)
            try:
                yield item
            finally:
                await item.close()
                self.active -= 1

        conn.connect = _fake_connect  # type: ignore[method-assign]


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.005)


def _connection(on_frame, **kwargs) -> IngestionConnection:
    kwargs.setdefault("heartbeat_interval", 60.0)
    kwargs.setdefault("reconnect_delay", 0.01)
    return IngestionConnection("ws://bots.example/ws/openclaw", "tok", on_frame, **kwargs)


def test_build_connection_url_appends_access_token() -> None:
    assert build_connection_url("ws://h/ws/openclaw", "a b") == "ws://h/ws/openclaw?accessToken=a+b"
    assert build_connection_url("ws://h/ws?x=1", "t") == "ws://h/ws?x=1&accessToken=t"
    assert build_connection_url("ws://h/ws", "") == "ws://h/ws"


def test_redact_url_drops_query() -> None:
    assert redact_url("wss://h:8000/ws/openclaw?accessToken=secret") == "wss://h:8000/ws/openclaw"


@pytest.mark.asyncio
async def test_frames_forwarded_in_order_with_heartbeat_and_control_intercepted() -> None:
    ws = _FakeWs(
        [
            {"type": "connection", "status": "ok"},
            {"type": "message", "data": "a"},
            {"type": "ping"},
            {"type": "message", "data": "b"},
            "not json",
            [1, 2, 3],
            b'{"type": "message", "data": "c"}',
        ]
    )
    received: list[tuple[str, list]] = []

    async def on_frame(frame):
        received.append((frame["data"], list(ws.sent)))

    conn = _connection(on_frame)
    server = _FakeServer([ws])
    server.install(conn)
    handle = conn.start()

    await _wait_until(lambda: len(received) == 3)
    assert [data for data, _ in received] == ["a", "b", "c"]
    assert received[0][1] == []
    assert received[1][1] == [{"type": "pong"}]
    assert ws.sent == [{"type": "pong"}]
    assert handle.state is ConnectionState.CONNECTED

    await handle.stop()
    assert handle.state is ConnectionState.CLOSED
    assert server.active == 0


@pytest.mark.asyncio
async def test_handler_calls_are_sequential() -> None:
    ws = _FakeWs([{"type": "message", "n": i} for i in range(5)])
    running = 0
    max_running = 0
    seen: list[int] = []

    async def on_frame(frame):
        nonlocal running, max_running
        running += 1
        max_running = max(max_running, running)
        await asyncio.sleep(0.01)
        seen.append(frame["n"])
        running -= 1

    conn = _connection(on_frame)
    _FakeServer([ws]).install(conn)
    conn.start()
    await _wait_until(lambda: len(seen) == 5)
    assert seen == [0, 1, 2, 3, 4]
    assert max_running == 1
    await conn.stop()


@pytest.mark.asyncio
async def test_sync_handler_and_handler_errors_keep_connection() -> None:
    ws = _FakeWs([{"type": "message", "n": 1}, {"type": "message", "n": 2}])
    seen: list[int] = []

    def on_frame(frame):
        seen.append(frame["n"])
        if frame["n"] == 1:
            raise RuntimeError("handler bug")

    conn = _connection(on_frame)
    server = _FakeServer([ws])
    server.install(conn)
    conn.start()
    await _wait_until(lambda: seen == [1, 2])
    assert conn.state is ConnectionState.CONNECTED
    assert server.connects == 1
    await conn.stop()


@pytest.mark.asyncio
async def test_reconnects_after_close_and_connect_error() -> None:
    errors: list[BaseException] = []
    ws1 = _FakeWs([{"type": "message", "n": 1}], end=_CLOSE)
    ws2 = _FakeWs([{"type": "message", "n": 2}])
    seen: list[int] = []

    conn = _connection(lambda f: seen.append(f["n"]), on_error=errors.append)
    server = _FakeServer([ws1, ConnectionRefusedError("refused"), ws2])
    server.install(conn)
    conn.start()

    await _wait_until(lambda: seen == [1, 2])
    assert server.connects == 3
    assert server.max_active == 1
    assert ws1.closed
    assert conn.state is ConnectionState.CONNECTED
    assert len(errors) == 1 and isinstance(errors[0], ConnectionRefusedError)
    await conn.stop()


@pytest.mark.asyncio
async def test_socket_error_mid_stream_triggers_reconnect() -> None:
    ws1 = _FakeWs([{"type": "message", "n": 1}], end=ConnectionResetError("reset by peer"))
    ws2 = _FakeWs()
    conn = _connection(lambda f: None)
    server = _FakeServer([ws1, ws2])
    server.install(conn)
    conn.start()
    await _wait_until(lambda: server.connects == 2 and conn.state is ConnectionState.CONNECTED)
    assert server.max_active == 1
    await conn.stop()


@pytest.mark.asyncio
async def test_stop_during_reconnect_wait_prevents_further_attempts() -> None:
    conn = _connection(lambda f: None, reconnect_delay=10.0)
    server = _FakeServer([ConnectionRefusedError("refused")])
    server.install(conn)
    handle = conn.start()

    await _wait_until(lambda: conn.state is ConnectionState.RECONNECT_PENDING)
    await handle.stop()
    assert handle.state is ConnectionState.CLOSED
    await asyncio.sleep(0.05)
    assert server.connects == 1
    await handle.wait_closed()


@pytest.mark.asyncio
async def test_stop_while_connecting() -> None:
    gate = asyncio.Event()
    entered = asyncio.Event()
    conn = _connection(lambda f: None)

    @asynccontextmanager
    async def _hanging_connect():
        entered.set()
        await gate.wait()
        yield _FakeWs()

    conn.connect = _hanging_connect  # type: ignore[method-assign]
    conn.start()
    await asyncio.wait_for(entered.wait(), timeout=2.0)
    assert conn.state is ConnectionState.CONNECTING
    await conn.stop()
    gate.set()
    await asyncio.sleep(0.02)
    assert conn.state is ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_stop_from_inside_handler_suppresses_further_frames() -> None:
    ws = _FakeWs([{"type": "message", "n": i} for i in range(3)])
    seen: list[int] = []
    conn: IngestionConnection

    async def on_frame(frame):
        seen.append(frame["n"])
        await conn.stop()

    conn = _connection(on_frame)
    server = _FakeServer([ws, _FakeWs()])
    server.install(conn)
    conn.start()
    await _wait_until(lambda: conn.state is ConnectionState.CLOSED)
    await conn.wait_closed()
    assert seen == [0]
    assert server.connects == 1
    assert server.active == 0


@pytest.mark.asyncio
async def test_stop_is_idempotent_and_start_after_stop_is_ignored() -> None:
    conn = _connection(lambda f: None)
    server = _FakeServer([_FakeWs()])
    server.install(conn)
    first = conn.start()
    second = conn.start()
    await _wait_until(lambda: conn.state is ConnectionState.CONNECTED)
    assert server.connects == 1

    await first.stop()
    await second.stop()
    await conn.stop()
    conn.start()
    await asyncio.sleep(0.02)
    assert conn.state is ConnectionState.CLOSED
    assert server.connects == 1


@pytest.mark.asyncio
async def test_stop_before_start_is_safe() -> None:
    conn = _connection(lambda f: None)
    await conn.stop()
    assert conn.state is ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_heartbeat_sends_ping_and_failure_reconnects() -> None:
    ws1 = _FakeWs()
    ws2 = _FakeWs()
    errors: list[BaseException] = []
    conn = _connection(lambda f: None, heartbeat_interval=0.01, on_error=errors.append)
    server = _FakeServer([ws1, ws2])
    server.install(conn)
    conn.start()

    await _wait_until(lambda: ws1.sent.count({"type": "ping"}) >= 2)
    ws1.fail_send = True
    await _wait_until(lambda: server.connects == 2 and conn.state is ConnectionState.CONNECTED)
    assert ws1.closed
    assert any(isinstance(e, ConnectionResetError) for e in errors)
    assert server.max_active == 1
    await _wait_until(lambda: {"type": "ping"} in ws2.sent)
    await conn.stop()


@pytest.mark.asyncio
async def test_failed_heartbeat_reply_is_a_connection_error() -> None:
    ws1 = _FakeWs()
    ws1.fail_send = True
    ws1.push({"type": "ping"})
    conn = _connection(lambda f: None)
    server = _FakeServer([ws1, _FakeWs()])
    server.install(conn)
    conn.start()
    await _wait_until(lambda: server.connects == 2 and conn.state is ConnectionState.CONNECTED)
    await conn.stop()


@pytest.mark.asyncio
async def test_start_ingestion_returns_handle(monkeypatch) -> None:
    seen: list[dict] = []
    urls: list[str] = []
    ws = _FakeWs([{"type": "message"}])

    @asynccontextmanager
    async def _fake_connect(self):
        urls.append(self.url)
        yield ws

    monkeypatch.setattr(IngestionConnection, "connect", _fake_connect)
    handle = start_ingestion("ws://h/ws", "t", seen.append, name="acc-1", reconnect_delay=0.01)
    await _wait_until(lambda: seen == [{"type": "message"}])
    assert handle.name == "acc-1"
    assert handle.state is ConnectionState.CONNECTED
    assert urls == ["ws://h/ws?accessToken=t"]
    await handle.stop()
    assert handle.state is ConnectionState.CLOSED


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(8))
async def test_random_event_orders_never_overlap_sockets(seed: int) -> None:
    rng = random.Random(seed)
    script = []
    for _ in range(40):
        roll = rng.random()
        if roll < 0.3:
            script.append(ConnectionRefusedError("refused"))
        else:
            frames = [rng.choice([{"type": "ping"}, {"type": "connection"}, {"type": "m"}, "junk"]) for _ in range(rng.randint(0, 4))]
            end = _CLOSE if roll < 0.65 else ConnectionResetError("reset")
            script.append(_FakeWs(frames, end=end))

    conn = _connection(lambda f: None, reconnect_delay=0.001, heartbeat_interval=0.002)
    server = _FakeServer(script)
    server.install(conn)
    conn.start()
    await asyncio.sleep(rng.uniform(0.0, 0.05))
    await conn.stop()
    connects_at_stop = server.connects
    await asyncio.sleep(0.02)

    assert server.max_active <= 1
    assert server.active == 0
    assert server.connects == connects_at_stop
    assert conn.state is ConnectionState.CLOSED
