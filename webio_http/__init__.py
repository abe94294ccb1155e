"""HTTP + WebSocket bridge between a server-side UI graph and the browser."""

from webio_http.__version__ import __version__
from webio_http.config import ServerConfig, global_server_config
from webio_http.display import show_application
from webio_http.registry import ServerRegistry, default_registry


__all__ = [
    "ServerConfig",
    "ServerRegistry",
    "__version__",
    "default_registry",
    "global_server_config",
    "show_application",
]
