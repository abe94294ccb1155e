"""Tests for the threaded HTTP + WebSocket server process."""

import asyncio
import contextlib
import socket
import threading
import time

import aiohttp
import pytest
from aiohttp import WSCloseCode, WSMsgType

from webio_http.config import ServerConfig
from webio_http.exceptions import ServerStartError
from webio_http.server import start_server


ROUTE = "/webio_websocket/"


@pytest.fixture
def process_factory(asset_registry, recording_dispatch):
    processes = []

    def factory(config=None, **kwargs):
        kwargs.setdefault("assets", asset_registry)
        kwargs.setdefault("dispatch", recording_dispatch)
        process = start_server(config or ServerConfig(http_port=0), **kwargs)
        processes.append(process)
        return process

    yield factory
    for process in processes:
        process.shutdown(timeout=2.0)


def _ws_url(process) -> str:
    return f"ws://{process.host}:{process.port}{ROUTE}"


async def _close(ws) -> None:
    with contextlib.suppress(asyncio.TimeoutError):
        await asyncio.wait_for(ws.close(), timeout=1)


# ==============================================================================
# Lifecycle Tests
# ==============================================================================


class TestStartServer:
    def test_binds_ephemeral_port(self, process_factory):
        process = process_factory()

        assert process.port > 0
        assert process.is_alive()
        assert process.thread.daemon
        assert process.url == f"http://127.0.0.1:{process.port}"

    def test_address_in_use_raises(self, process_factory):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen()
            port = sock.getsockname()[1]

            with pytest.raises(ServerStartError) as exc_info:
                process_factory(ServerConfig(http_port=port))

        assert exc_info.value.port == port

    def test_kill_is_idempotent(self, process_factory):
        process = process_factory()

        process.kill()
        process.kill()

        assert not process.is_alive()

    def test_shutdown_stops_thread(self, process_factory):
        process = process_factory()

        process.shutdown(timeout=2.0)

        assert not process.thread.is_alive()
        assert process.loop.is_closed()


# ==============================================================================
# Request Flow Tests
# ==============================================================================


@pytest.mark.asyncio
async def test_asset_scenario(process_factory, asset_registry, asset_file, free_port):
    """Test a registered asset is served with its exact bytes."""
    process = await asyncio.to_thread(
        process_factory, ServerConfig(host="127.0.0.1", http_port=free_port)
    )
    asset_registry.add("/foo.bin", asset_file)

    async with aiohttp.ClientSession() as session:
        async with session.get(f"{process.url}/foo.bin") as response:
            assert response.status == 200
            assert response.headers["Content-Type"] == "application/octet-stream"
            assert await response.read() == bytes([1, 2, 3])
        async with session.get(f"{process.url}/unregistered") as response:
            assert response.status == 404


@pytest.mark.asyncio
async def test_websocket_scenario(process_factory, recording_dispatch):
    process = await asyncio.to_thread(process_factory)

    async with aiohttp.ClientSession() as session:
        ws = await session.ws_connect(_ws_url(process))
        await ws.send_json({"type": "event", "value": 42})
        messages = await recording_dispatch.wait_for(1)
        await _close(ws)

    assert messages == [{"type": "event", "value": 42}]


@pytest.mark.asyncio
async def test_slow_page_handler_does_not_block_websockets(
    process_factory, recording_dispatch
):
    release = threading.Event()

    def slow_page(request):
        release.wait(timeout=5)
        return "slow"

    process = await asyncio.to_thread(process_factory, page_handler=slow_page)

    async with aiohttp.ClientSession() as session:

        async def fetch_page() -> str:
            async with session.get(f"{process.url}/") as response:
                return await response.text()

        page_task = asyncio.create_task(fetch_page())
        await asyncio.sleep(0.1)

        started = time.monotonic()
        ws = await session.ws_connect(_ws_url(process))
        await ws.send_json({"type": "event", "value": 1})
        await recording_dispatch.wait_for(1, timeout=2.0)
        assert time.monotonic() - started < 2.0
        assert not page_task.done()

        release.set()
        assert await page_task == "slow"
        await _close(ws)


# ==============================================================================
# Kill / Shutdown Tests
# ==============================================================================


@pytest.mark.asyncio
async def test_kill_refuses_new_connections_but_keeps_sessions(
    process_factory, recording_dispatch
):
    """Test killing closes the listener while open sessions keep working."""

    def echo(connection, message):
        recording_dispatch(connection, message)
        connection.send({"type": "command", "echo": message["value"]})

    process = await asyncio.to_thread(process_factory, dispatch=echo)

    async with aiohttp.ClientSession() as session:
        ws = await session.ws_connect(_ws_url(process))
        await ws.send_json({"type": "event", "value": "before"})
        assert (await asyncio.wait_for(ws.receive_json(), timeout=2))["echo"] == "before"

        await asyncio.to_thread(process.kill)
        assert not process.is_alive()

        async with aiohttp.ClientSession() as fresh:
            with pytest.raises(aiohttp.ClientConnectionError):
                async with fresh.get(f"{process.url}/"):
                    pass

        await ws.send_json({"type": "event", "value": "after"})
        reply = await asyncio.wait_for(ws.receive_json(), timeout=2)
        assert reply["echo"] == "after"
        await _close(ws)

    assert [m["value"] for m in recording_dispatch.messages] == ["before", "after"]


def test_kill_without_sessions_stops_thread(process_factory):
    """Test a killed listener with no sessions releases its thread and loop."""
    process = process_factory()

    process.kill()
    process.thread.join(timeout=3)

    assert not process.thread.is_alive()
    assert process.loop.is_closed()


@pytest.mark.asyncio
async def test_thread_exits_when_last_session_closes_after_kill(process_factory):
    process = await asyncio.to_thread(process_factory)

    async with aiohttp.ClientSession() as session:
        ws = await session.ws_connect(_ws_url(process))
        await asyncio.sleep(0.05)

        await asyncio.to_thread(process.kill)
        await asyncio.sleep(0.1)
        assert process.thread.is_alive()

        await _close(ws)

    await asyncio.to_thread(process.thread.join, 3)
    assert not process.thread.is_alive()


@pytest.mark.asyncio
async def test_kill_closes_keep_alive_http_connections(
    process_factory, recording_dispatch
):
    """Test an idle keep-alive connection is not served after kill."""

    def echo(connection, message):
        recording_dispatch(connection, message)
        connection.send({"type": "command", "echo": message["value"]})

    process = await asyncio.to_thread(process_factory, dispatch=echo)

    async with aiohttp.ClientSession() as ws_session:
        ws = await ws_session.ws_connect(_ws_url(process))

        async with aiohttp.ClientSession() as http:
            async with http.get(f"{process.url}/missing") as response:
                assert response.status == 404
                await response.read()

            await asyncio.to_thread(process.kill)

            with pytest.raises(aiohttp.ClientError):
                async with http.get(f"{process.url}/missing") as response:
                    await response.read()

        await ws.send_json({"type": "event", "value": "still open"})
        reply = await asyncio.wait_for(ws.receive_json(), timeout=2)
        assert reply["echo"] == "still open"
        await _close(ws)


@pytest.mark.asyncio
async def test_shutdown_closes_sessions_going_away(process_factory):
    process = await asyncio.to_thread(process_factory)

    async with aiohttp.ClientSession() as session:
        ws = await session.ws_connect(_ws_url(process))
        await asyncio.sleep(0.05)
        assert process.active_websockets() == 1

        receive_task = asyncio.create_task(ws.receive())
        await asyncio.to_thread(process.shutdown, 3.0)
        message = await asyncio.wait_for(receive_task, timeout=3)

        assert message.type in (WSMsgType.CLOSE, WSMsgType.CLOSED)
        assert ws.close_code == WSCloseCode.GOING_AWAY
