"""Process-wide registry for the singleton server.

``get_or_start`` is the only way the display path obtains a server. In
singleton mode it reuses the registered process while its listener is alive;
concurrent first calls are serialized so only one listener is ever bound.
"""

from __future__ import annotations

import threading
from typing import Any

from aiohttp import web

from webio_http.assets import AssetRegistry, default_asset_registry
from webio_http.config import ServerConfig, global_server_config
from webio_http.connection import WSConnection
from webio_http.dispatch import DispatchFn, null_dispatch
from webio_http.handlers import PageHandler, PageResult, no_page
from webio_http.logging import LoggerFactory
from webio_http.server import DEFAULT_START_TIMEOUT, ServerProcess, start_server


class ServerRegistry:
    def __init__(
        self,
        config: ServerConfig | None = None,
        *,
        assets: AssetRegistry | None = None,
        dispatch: DispatchFn = null_dispatch,
        routing_callback: PageHandler = no_page,
        start_timeout: float = DEFAULT_START_TIMEOUT,
    ) -> None:
        self.config = config if config is not None else global_server_config()
        self.assets = assets if assets is not None else default_asset_registry()
        self.dispatch = dispatch
        self.routing_callback = routing_callback
        self.start_timeout = start_timeout
        self._current: ServerProcess | None = None
        self._lock = threading.Lock()
        self._log = LoggerFactory.for_system()

    def _route(self, request: web.Request) -> PageResult:
        # Read at request time so callbacks can be swapped while running
        return self.routing_callback(request)

    def _dispatch(self, connection: WSConnection, message: dict) -> Any:
        return self.dispatch(connection, message)

    @property
    def current(self) -> ServerProcess | None:
        return self._current

    def get_or_start(
        self,
        page_handler: PageHandler | None = None,
        *,
        singleton: bool = True,
        config: ServerConfig | None = None,
    ) -> ServerProcess:
        """Return the registered server, starting one if needed.

        With ``singleton=False`` a new, unregistered server is always started.

        Raises:
            ServerStartError: if a new listener cannot be started.
        """
        if page_handler is None:
            page_handler = self._route
        config = config if config is not None else self.config
        if not singleton:
            return self._start(config, page_handler)

        with self._lock:
            current = self._current
            if current is not None:
                if current.is_alive():
                    return current
                self._log.warning(
                    f"Registered server on port {current.port} is no longer "
                    "listening, starting a new one",
                    tags=["system", "web"],
                )
                self._current = None
            process = self._start(config, page_handler)
            self._current = process
            return process

    def _start(self, config: ServerConfig, page_handler: PageHandler) -> ServerProcess:
        return start_server(
            config,
            page_handler=page_handler,
            dispatch=self._dispatch,
            assets=self.assets,
            timeout=self.start_timeout,
        )

    def kill(self, process: ServerProcess | None = None) -> bool:
        """Close the listener of ``process`` (default: the registered one).

        Established WebSocket sessions are left running.
        """
        with self._lock:
            if process is None:
                process = self._current
            if process is None:
                return False
            if process is self._current:
                self._current = None
        process.kill()
        return True

    def shutdown(self, timeout: float = 5.0) -> bool:
        """Stop the registered server including its open sessions."""
        with self._lock:
            process = self._current
            self._current = None
        if process is None:
            return False
        process.kill(timeout=timeout)
        process.shutdown(timeout=timeout)
        return True


_default_registry: ServerRegistry | None = None
_default_registry_lock = threading.Lock()


def default_registry() -> ServerRegistry:
    """Registry bound to the memoized global configuration."""
    global _default_registry
    with _default_registry_lock:
        if _default_registry is None:
            _default_registry = ServerRegistry(global_server_config())
        return _default_registry
