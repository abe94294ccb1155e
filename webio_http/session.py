"""Per-connection WebSocket session.

A reader loop turns frames into messages and queues them; a worker task hands
them to the dispatch bridge one at a time, in arrival order. Dispatch failures
are logged and never end the session. A frame that is not JSON ends the
session; a JSON frame of an unknown kind is skipped.
"""

from __future__ import annotations

import asyncio
import inspect
import weakref
from enum import Enum
from typing import Any, Callable, cast

from aiohttp import WSCloseCode, WSMsgType, web

from webio_http.connection import WSConnection
from webio_http.dispatch import DispatchFn, is_async_dispatch
from webio_http.exceptions import MalformedMessageError, UnknownMessageKindError
from webio_http.handlers import handle_http
from webio_http.logging import LoggerFactory
from webio_http.messages import Message, parse_message


DISPATCH_KEY: web.AppKey[DispatchFn] = web.AppKey("dispatch")
WEBSOCKETS_KEY: web.AppKey[weakref.WeakSet[web.WebSocketResponse]] = web.AppKey(
    "websockets", cast(Any, weakref.WeakSet)
)
# Request handlers whose connection was upgraded to a session
SESSION_PROTOCOLS_KEY: web.AppKey[set] = web.AppKey("session_protocols", set)
# Called on the server loop when the last session unregisters
ON_DRAINED_KEY: web.AppKey[Callable[[], None]] = web.AppKey("on_drained")


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class WebSocketSession:
    def __init__(
        self,
        ws: web.WebSocketResponse,
        dispatch: DispatchFn,
        *,
        connection_id: str | None = None,
    ) -> None:
        self.ws = ws
        self.dispatch = dispatch
        self.connection = WSConnection(ws, asyncio.get_running_loop(), connection_id)
        self.state = SessionState.CONNECTING
        self.received = 0
        self.dispatched = 0
        self.failed = 0
        self._async_dispatch = is_async_dispatch(dispatch)
        self._queue: asyncio.Queue[Message | None] = asyncio.Queue()
        self._log = LoggerFactory.for_web(self.connection.connection_id)

    async def run(self) -> None:
        """Run until the transport closes or a frame cannot be decoded."""
        self.state = SessionState.OPEN
        worker = asyncio.create_task(self._dispatch_worker())
        try:
            await self._read_loop()
        except asyncio.CancelledError:
            worker.cancel()
            self.state = SessionState.CLOSED
            raise
        except Exception as exc:
            self._log.warning(
                "WebSocket read failed: {}", exc, tags=["ws", "websocket", "error"]
            )
        self.state = SessionState.CLOSED
        # Messages already read are still dispatched
        self._queue.put_nowait(None)
        await worker

    async def _read_loop(self) -> None:
        async for msg in self.ws:
            if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                try:
                    message = parse_message(msg.data)
                except MalformedMessageError as exc:
                    self._log.warning(
                        "Closing session on malformed frame: {}",
                        exc.reason,
                        tags=["ws", "websocket", "error"],
                    )
                    await self.ws.close(
                        code=WSCloseCode.UNSUPPORTED_DATA, message=b"Malformed JSON"
                    )
                    return
                except UnknownMessageKindError as exc:
                    self._log.warning(
                        "Skipping message of unknown kind {!r}",
                        exc.kind,
                        tags=["ws", "websocket", "error"],
                    )
                    continue
                self.received += 1
                self._log.trace(
                    "Frame received: {}", message.kind.value, tags=["ws", "frame"]
                )
                await self._queue.put(message)
            elif msg.type == WSMsgType.ERROR:
                self._log.debug(
                    "WebSocket transport error: {}",
                    self.ws.exception(),
                    tags=["ws", "websocket", "error"],
                )
                return

    async def _dispatch_worker(self) -> None:
        while True:
            message = await self._queue.get()
            if message is None:
                return
            await self._dispatch_one(message)

    async def _dispatch_one(self, message: Message) -> None:
        try:
            if self._async_dispatch:
                await cast(Any, self.dispatch(self.connection, message.data))
            else:
                result = await asyncio.to_thread(
                    self.dispatch, self.connection, message.data
                )
                if inspect.isawaitable(result):
                    await result
        except Exception:
            self.failed += 1
            self._log.opt(exception=True).warning(
                "Dispatch of {} message failed",
                message.kind.value,
                tags=["ws", "dispatch", "error"],
            )
            return
        self.dispatched += 1


def _register_websocket(
    app: web.Application, request: web.Request, ws: web.WebSocketResponse
) -> None:
    websockets = app.get(WEBSOCKETS_KEY)
    if websockets is not None:
        websockets.add(ws)
    protocols = app.get(SESSION_PROTOCOLS_KEY)
    if protocols is not None and request.protocol is not None:
        protocols.add(request.protocol)


def _unregister_websocket(
    app: web.Application, request: web.Request, ws: web.WebSocketResponse
) -> None:
    protocols = app.get(SESSION_PROTOCOLS_KEY)
    if protocols is not None:
        protocols.discard(request.protocol)
    websockets = app.get(WEBSOCKETS_KEY)
    if websockets is None:
        return
    websockets.discard(ws)
    on_drained = app.get(ON_DRAINED_KEY)
    if not websockets and on_drained is not None:
        on_drained()


async def handle_websocket(request: web.Request) -> web.StreamResponse:
    """Upgrade to a WebSocket session; plain requests fall through to HTTP."""
    ws = web.WebSocketResponse(autoping=True)
    if not ws.can_prepare(request).ok:
        return await handle_http(request)
    await ws.prepare(request)

    _register_websocket(request.app, request, ws)
    session = WebSocketSession(ws, request.app[DISPATCH_KEY])
    log = LoggerFactory.for_web(session.connection.connection_id)
    log.debug(
        "WebSocket connected from {}",
        request.remote,
        tags=["ws", "websocket", "connection"],
    )
    try:
        await session.run()
    except Exception as exc:
        log.warning("WebSocket session error: {}", exc, tags=["ws", "websocket", "error"])
    finally:
        try:
            if not ws.closed:
                await ws.close()
        finally:
            _unregister_websocket(request.app, request, ws)
        log.debug(
            "WebSocket disconnected from {} ({} dispatched, {} failed)",
            request.remote,
            session.dispatched,
            session.failed,
            tags=["ws", "websocket", "connection"],
        )
    return ws
