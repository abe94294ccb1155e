"""HTTP + WebSocket listener running on a background thread.

Each :class:`ServerProcess` owns a daemon thread with a private asyncio loop.
``kill`` closes the listening socket and every plain HTTP connection but leaves
established WebSocket sessions running; the thread exits once the last of them
closes. ``shutdown`` also closes the sessions and stops the loop.
"""

from __future__ import annotations

import asyncio
import queue
import threading
import weakref
from dataclasses import dataclass
from typing import Any, Callable, cast

from aiohttp import WSCloseCode, web

from webio_http.assets import AssetRegistry, default_asset_registry
from webio_http.config import ServerConfig
from webio_http.dispatch import DispatchFn, null_dispatch
from webio_http.exceptions import ServerStartError
from webio_http.handlers import (
    ASSETS_KEY,
    PAGE_HANDLER_KEY,
    PageHandler,
    handle_http,
    no_page,
)
from webio_http.logging import LoggerFactory
from webio_http.session import (
    DISPATCH_KEY,
    ON_DRAINED_KEY,
    SESSION_PROTOCOLS_KEY,
    WEBSOCKETS_KEY,
    handle_websocket,
)


DEFAULT_START_TIMEOUT = 5.0


def _stop_when_drained(
    app: web.Application,
    listener_closed: threading.Event,
    stop_requested: asyncio.Event,
) -> None:
    """Release the server loop once a killed listener has no sessions left."""
    if listener_closed.is_set() and not app[WEBSOCKETS_KEY]:
        stop_requested.set()


@dataclass
class ServerProcess:
    config: ServerConfig
    port: int
    runner: web.AppRunner
    site: web.TCPSite
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: threading.Event
    listener_closed: threading.Event
    stop_requested: asyncio.Event

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def is_alive(self) -> bool:
        """True while the listener accepts connections."""
        return (
            not self.listener_closed.is_set()
            and not self.stop_event.is_set()
            and self.thread.is_alive()
        )

    def active_websockets(self) -> int:
        websockets = self.runner.app.get(WEBSOCKETS_KEY)
        return len(websockets) if websockets is not None else 0

    def kill(self, timeout: float = 5.0) -> None:
        """Stop accepting connections; open sessions keep running.

        Plain HTTP connections, including idle keep-alive ones, are closed.
        The server thread exits when the last session ends.
        """
        if self.listener_closed.is_set():
            return
        self.listener_closed.set()
        if not self.loop.is_running():
            return
        future = asyncio.run_coroutine_threadsafe(self._close_listener(), self.loop)
        if threading.current_thread() is not self.thread:
            future.result(timeout=timeout)
        LoggerFactory.for_web().info(
            f"Listener on {self.host}:{self.port} closed", tags=["web", "shutdown"]
        )

    async def _close_listener(self) -> None:
        if self.stop_event.is_set():
            # runner.cleanup() already owns the site and connections
            return
        await self.site.stop()
        self._close_http_connections()
        _stop_when_drained(self.runner.app, self.listener_closed, self.stop_requested)

    def _close_http_connections(self) -> None:
        server = self.runner.server
        if server is None:
            return
        sessions = self.runner.app[SESSION_PROTOCOLS_KEY]
        closed = 0
        for handler in server.connections:
            if handler not in sessions:
                handler.force_close()
                closed += 1
        if closed:
            LoggerFactory.for_web().debug(
                "Closed {} HTTP connection(s)", closed, tags=["web", "shutdown"]
            )

    def shutdown(self, timeout: float = 5.0) -> None:
        """Close every session and stop the server loop."""
        self.stop_event.set()
        if self.loop.is_running():
            self.loop.call_soon_threadsafe(self.stop_requested.set)
        if threading.current_thread() is not self.thread:
            self.thread.join(timeout=timeout)


async def _on_shutdown(app: web.Application) -> None:
    """Close all WebSocket connections with GOING_AWAY on full shutdown."""
    log = LoggerFactory.for_web()
    websockets = app.get(WEBSOCKETS_KEY)
    if not websockets:
        return

    # Snapshot, the set shrinks as handlers exit
    active_ws = set(websockets)
    if not active_ws:
        return

    log.info(
        f"Closing {len(active_ws)} WebSocket connection(s) gracefully",
        tags=["ws", "websocket", "shutdown"],
    )
    close_tasks = [_close_websocket_gracefully(ws, log) for ws in active_ws]
    await asyncio.gather(*close_tasks, return_exceptions=True)


async def _close_websocket_gracefully(ws: web.WebSocketResponse, log) -> None:
    try:
        if not ws.closed:
            await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")
    except Exception as exc:
        log.debug(
            "Error closing WebSocket: {}",
            exc,
            tags=["ws", "websocket", "shutdown", "error"],
        )


def build_app(
    config: ServerConfig,
    page_handler: PageHandler = no_page,
    dispatch: DispatchFn = null_dispatch,
    assets: AssetRegistry | None = None,
    on_drained: Callable[[], None] | None = None,
) -> web.Application:
    app = web.Application()
    app[WEBSOCKETS_KEY] = weakref.WeakSet()
    app[SESSION_PROTOCOLS_KEY] = set()
    if on_drained is not None:
        app[ON_DRAINED_KEY] = on_drained
    app[PAGE_HANDLER_KEY] = page_handler
    app[DISPATCH_KEY] = dispatch
    app[ASSETS_KEY] = assets if assets is not None else default_asset_registry()
    app.on_shutdown.append(cast(Any, _on_shutdown))
    app.router.add_get(config.websocket_route, handle_websocket)
    app.router.add_route("*", "/{tail:.*}", handle_http)
    return app


def start_server(
    config: ServerConfig,
    page_handler: PageHandler = no_page,
    dispatch: DispatchFn = null_dispatch,
    assets: AssetRegistry | None = None,
    timeout: float = DEFAULT_START_TIMEOUT,
) -> ServerProcess:
    """Bind ``config.host:config.http_port`` and serve on a background thread.

    Raises:
        ServerStartError: if the listener cannot be bound or does not come up
            within ``timeout`` seconds.
    """
    runner_queue: queue.Queue[tuple[str, Any]] = queue.Queue(maxsize=1)
    stop_event = threading.Event()
    listener_closed = threading.Event()

    def run_app() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_requested = asyncio.Event()
        app = build_app(
            config,
            page_handler,
            dispatch,
            assets,
            on_drained=lambda: _stop_when_drained(app, listener_closed, stop_requested),
        )

        async def start_site() -> tuple[web.AppRunner, web.TCPSite]:
            runner = web.AppRunner(app)
            await runner.setup()
            site = web.TCPSite(runner, config.host, config.http_port)
            try:
                await site.start()
            except BaseException:
                await runner.cleanup()
                raise
            return runner, site

        try:
            runner, site = loop.run_until_complete(start_site())
        except Exception as exc:
            runner_queue.put(("error", exc))
            loop.close()
            return
        # Posted once the loop is running
        loop.call_soon(runner_queue.put, ("ok", (runner, site, loop, stop_requested)))
        log = LoggerFactory.for_web()
        try:
            loop.run_until_complete(stop_requested.wait())
        finally:
            log.debug("Web server shutting down...", tags=["web", "shutdown"])
            stop_event.set()
            # on_shutdown closes the remaining WebSockets with GOING_AWAY
            loop.run_until_complete(runner.cleanup())
            loop.close()
            log.info("Web server stopped", tags=["web", "shutdown"])

    thread = threading.Thread(target=run_app, name="webio-http", daemon=True)
    thread.start()
    try:
        status, payload = runner_queue.get(timeout=timeout)
    except queue.Empty as exc:
        raise ServerStartError(
            config.host, config.http_port, "timed out waiting for listener"
        ) from exc
    if status == "error":
        raise ServerStartError(config.host, config.http_port, str(payload)) from payload
    runner, site, loop, stop_requested = payload
    port = runner.addresses[0][1] if runner.addresses else config.http_port
    process = ServerProcess(
        config=config,
        port=port,
        runner=runner,
        site=site,
        thread=thread,
        loop=loop,
        stop_event=stop_event,
        listener_closed=listener_closed,
        stop_requested=stop_requested,
    )
    LoggerFactory.for_web().info(f"Web server started at {process.url}")
    return process
