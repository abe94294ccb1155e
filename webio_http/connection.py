"""Connection adapter handed to the dispatch bridge."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from aiohttp import web

from webio_http.logging import LoggerFactory


class WSConnection:
    """Wraps one browser WebSocket.

    ``send`` may be called from the server loop or from any other thread
    (sync dispatch handlers run in worker threads). Delivery is best effort:
    write failures are logged and dropped.
    """

    def __init__(
        self,
        ws: web.WebSocketResponse,
        loop: asyncio.AbstractEventLoop,
        connection_id: str | None = None,
    ) -> None:
        self.ws = ws
        self.loop = loop
        self.connection_id = connection_id or f"ws-{id(ws):x}"
        self._log = LoggerFactory.for_web(self.connection_id)
        self._pending: set[asyncio.Future] = set()

    def __repr__(self) -> str:
        return f"WSConnection({self.connection_id}, open={self.is_open()})"

    def is_open(self) -> bool:
        return not self.ws.closed

    def send(self, data: Any) -> None:
        """Serialize ``data`` to JSON and write it as a single text frame."""
        try:
            text = json.dumps(data)
        except (TypeError, ValueError) as exc:
            self._log.warning(
                "Dropping unserializable message: {}",
                exc,
                tags=["ws", "websocket", "error"],
            )
            return
        if self.loop.is_closed():
            self._log.debug("Send after loop closed, dropping message")
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            future: asyncio.Future = asyncio.ensure_future(self._write(text))
            self._pending.add(future)
            future.add_done_callback(self._pending.discard)
        else:
            write = self._write(text)
            try:
                asyncio.run_coroutine_threadsafe(write, self.loop)
            except RuntimeError as exc:
                # Loop closed after the is_closed() check above
                write.close()
                self._log.debug("Send after loop closed, dropping message: {}", exc)

    async def send_async(self, data: Any) -> bool:
        """Coroutine variant of :meth:`send`; returns whether the write succeeded."""
        try:
            text = json.dumps(data)
        except (TypeError, ValueError) as exc:
            self._log.warning(
                "Dropping unserializable message: {}",
                exc,
                tags=["ws", "websocket", "error"],
            )
            return False
        return await self._write(text)

    async def _write(self, text: str) -> bool:
        if self.ws.closed:
            self._log.debug("Write on closed connection dropped")
            return False
        try:
            await self.ws.send_str(text)
        except Exception as exc:
            self._log.warning(
                "WebSocket write failed: {}",
                exc,
                tags=["ws", "websocket", "error"],
            )
            return False
        self._log.trace("Frame sent", tags=["ws", "frame"])
        return True

