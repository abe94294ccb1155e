"""Display entry point for embedding applications.

``show_application`` makes sure the asset + websocket server is running and
writes the script tags plus the mount fragment for a node into a text sink::

    class MyDisplay:
        def display(self, app):
            self.io.write("outer html")
            show_application(self.io, app)
            self.io.write("close outer html")

To host the bundle and the connection script somewhere else, pass
``bundle_url`` and ``connection_url``.
"""

from __future__ import annotations

import io
import json
import os
from pathlib import Path
from typing import IO, Any, Callable

from aiohttp import web

from webio_http.assets import STATIC_DIR
from webio_http.config import ServerConfig
from webio_http.handlers import PageHandler, PageResult
from webio_http.registry import ServerRegistry, default_registry
from webio_http.render import MountFragment, Renderer, render_node, tohtml


BUNDLE_PATH = "webio/dist/bundle.js"
CONNECTION_PATH = "providers/websocket_connection.js"


def asset_url(file: str | os.PathLike[str], registry: ServerRegistry | None = None) -> str:
    """Register a local file and return the URL the browser should load."""
    registry = registry or default_registry()
    return registry.config.base_url + registry.assets.register(file)


def webio_asset_url(
    relative: str,
    registry: ServerRegistry | None = None,
    asset_dir: str | os.PathLike[str] = STATIC_DIR,
) -> str:
    """URL of a file shipped in the package ``static`` directory."""
    return asset_url(Path(asset_dir) / relative.lstrip("/"), registry)


def write_head_scripts(
    out: IO[str], config: ServerConfig, bundle_url: str, connection_url: str
) -> None:
    out.write(f"<script> var websocket_url = {json.dumps(config.websocket_url)} </script>\n")
    out.write(f"<script src={json.dumps(bundle_url)}></script>\n")
    out.write(f"<script src={json.dumps(connection_url)}></script>\n")


def show_application(
    out: IO[str],
    node: Any,
    *,
    registry: ServerRegistry | None = None,
    bundle_url: str | None = None,
    connection_url: str | None = None,
    renderer: Renderer = render_node,
) -> MountFragment:
    """Ensure the server runs, then write bootstrap scripts and ``node`` to ``out``.

    Safe to call repeatedly; every call draws a new mount id.
    """
    registry = registry or default_registry()
    registry.get_or_start()
    if bundle_url is None:
        bundle_url = webio_asset_url(BUNDLE_PATH, registry)
    if connection_url is None:
        connection_url = webio_asset_url(CONNECTION_PATH, registry)
    write_head_scripts(out, registry.config, bundle_url, connection_url)
    return tohtml(out, node, renderer)


def bootstrap_page(
    node: Any,
    *,
    registry: ServerRegistry | None = None,
    renderer: Renderer = render_node,
) -> str:
    """Complete HTML document mounting ``node``.

    Does not start a server; meant to be returned from a page handler.
    """
    registry = registry or default_registry()
    out = io.StringIO()
    out.write('<!doctype html>\n<html>\n<head>\n<meta charset="UTF-8">\n')
    write_head_scripts(
        out,
        registry.config,
        webio_asset_url(BUNDLE_PATH, registry),
        webio_asset_url(CONNECTION_PATH, registry),
    )
    out.write("</head>\n<body>\n")
    tohtml(out, node, renderer)
    out.write("\n</body>\n</html>\n")
    return out.getvalue()


def page_handler_for(
    get_node: Callable[[], Any],
    *,
    registry: ServerRegistry | None = None,
    path: str = "/",
) -> PageHandler:
    """Page handler serving ``bootstrap_page`` of the current node at ``path``."""

    def serve_page(request: web.Request) -> PageResult:
        if request.path != path:
            return None
        node = get_node()
        if node is None:
            return "no app"
        return bootstrap_page(node, registry=registry)

    return serve_page
