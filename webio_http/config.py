"""Server configuration resolved from the environment.

The global configuration is computed on first use and memoized for the life of
the process. Later changes to the environment are ignored.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Mapping

from webio_http.exceptions import ConfigurationError
from webio_http.logging import LoggerFactory


DEFAULT_HOST = "127.0.0.1"
DEFAULT_HTTP_PORT = 8081
DEFAULT_WEBSOCKET_ROUTE = "/webio_websocket/"

ENV_HOST = "WEBIO_SERVER_HOST_URL"
ENV_HTTP_PORT = "WEBIO_HTTP_PORT"
ENV_WEBSOCKET_ROUTE = "WEBIO_WEBSOCKET_ROUTE"
ENV_WEBSOCKET_URL = "WEBIO_WEBSOCKET_URL"
# Misspelled name used by older deployments
ENV_WEBSOCKET_URL_LEGACY = "WEBIO_WEBSOCKT_URL"
ENV_BASEURL = "WEBIO_BASEURL"


def parse_port(value: object, key: str = ENV_HTTP_PORT) -> int:
    try:
        port = int(str(value).strip())
    except ValueError as exc:
        raise ConfigurationError(key, value, "not an integer") from exc
    if not 0 <= port <= 65535:
        raise ConfigurationError(key, value, "must be between 0 and 65535")
    return port


def default_websocket_url(host: str, http_port: int, route: str) -> str:
    return f"{host}:{http_port}{route}"


@dataclass(frozen=True)
class ServerConfig:
    host: str = DEFAULT_HOST
    http_port: int = DEFAULT_HTTP_PORT
    websocket_route: str = DEFAULT_WEBSOCKET_ROUTE
    websocket_url: str = ""
    base_url: str = ""

    def __post_init__(self) -> None:
        parse_port(self.http_port, "http_port")
        if not self.websocket_route.startswith("/"):
            raise ConfigurationError(
                "websocket_route", self.websocket_route, "must start with '/'"
            )
        if not self.websocket_url:
            object.__setattr__(
                self,
                "websocket_url",
                default_websocket_url(self.host, self.http_port, self.websocket_route),
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServerConfig:
        """Build a configuration from environment variables.

        Raises:
            ConfigurationError: if the port or route cannot be used.
        """
        if environ is None:
            environ = os.environ
        host = environ.get(ENV_HOST, DEFAULT_HOST)
        http_port = parse_port(environ.get(ENV_HTTP_PORT, str(DEFAULT_HTTP_PORT)))
        route = environ.get(ENV_WEBSOCKET_ROUTE, DEFAULT_WEBSOCKET_ROUTE)
        if not route.startswith("/"):
            raise ConfigurationError(ENV_WEBSOCKET_ROUTE, route, "must start with '/'")
        websocket_url = environ.get(
            ENV_WEBSOCKET_URL,
            environ.get(
                ENV_WEBSOCKET_URL_LEGACY,
                default_websocket_url(host, http_port, route),
            ),
        )
        return cls(
            host=host,
            http_port=http_port,
            websocket_route=route,
            websocket_url=websocket_url,
            base_url=environ.get(ENV_BASEURL, ""),
        )


_global_config: ServerConfig | None = None
_global_config_lock = threading.Lock()


def global_server_config(environ: Mapping[str, str] | None = None) -> ServerConfig:
    """Return the process-wide configuration, computing it on first call.

    ``environ`` is only consulted on the first call.
    """
    global _global_config
    with _global_config_lock:
        if _global_config is None:
            _global_config = ServerConfig.from_env(environ)
            LoggerFactory.for_system().debug(
                "Resolved server config: {}",
                _global_config,
                tags=["system", "config"],
            )
        return _global_config
