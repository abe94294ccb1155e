"""HTTP handler for everything that is not a WebSocket upgrade.

The embedding application's page handler gets the first chance to answer; the
asset registry is consulted next; anything else is a 404.
"""

from __future__ import annotations

import asyncio
import inspect
from pathlib import Path
from typing import Awaitable, Callable, Union

from aiohttp import web
from typing_extensions import TypeAlias

from webio_http.assets import AssetRegistry
from webio_http.logging import LoggerFactory


NOT_FOUND_BODY = "not found"

PageResult: TypeAlias = Union[web.StreamResponse, str, bytes, None]
PageHandler: TypeAlias = Callable[
    [web.Request], Union[PageResult, Awaitable[PageResult]]
]

ASSETS_KEY: web.AppKey[AssetRegistry] = web.AppKey("assets", AssetRegistry)
PAGE_HANDLER_KEY: web.AppKey[PageHandler] = web.AppKey("page_handler")


def no_page(request: web.Request) -> PageResult:
    return None


def _is_empty(result: PageResult) -> bool:
    if result is None:
        return True
    return isinstance(result, (str, bytes)) and not result


def to_response(result: PageResult) -> web.StreamResponse:
    if isinstance(result, web.StreamResponse):
        return result
    if isinstance(result, (bytes, bytearray)):
        return web.Response(
            body=bytes(result), content_type="application/octet-stream"
        )
    return web.Response(text=str(result), content_type="text/html")


async def call_page_handler(
    page_handler: PageHandler, request: web.Request
) -> PageResult:
    if inspect.iscoroutinefunction(page_handler):
        return await page_handler(request)
    # Sync handlers may block; keep them off the loop serving WebSockets
    result = await asyncio.to_thread(page_handler, request)
    if inspect.isawaitable(result):
        result = await result
    return result


def _read_asset(path: Path) -> bytes | None:
    try:
        if not path.is_file():
            return None
        return path.read_bytes()
    except OSError as exc:
        LoggerFactory.for_assets().debug(f"Asset unreadable {path}: {exc}")
        return None


async def serve_assets(
    request: web.Request, page_handler: PageHandler, assets: AssetRegistry
) -> web.StreamResponse:
    log = LoggerFactory.for_assets()
    try:
        result = await call_page_handler(page_handler, request)
    except Exception:
        log.opt(exception=True).error("Page handler failed for {}", request.path)
        return web.Response(text="internal server error", status=500)
    if not _is_empty(result):
        return to_response(result)

    filepath = assets.resolve(request.path)
    if filepath is not None:
        body = await asyncio.to_thread(_read_asset, filepath)
        if body is not None:
            log.trace("Served asset {} ({} bytes)", request.path, len(body))
            return web.Response(body=body, content_type="application/octet-stream")
        log.debug("Registered asset {} missing on disk: {}", request.path, filepath)

    return web.Response(text=NOT_FOUND_BODY, status=404)


async def handle_http(request: web.Request) -> web.StreamResponse:
    return await serve_assets(
        request, request.app[PAGE_HANDLER_KEY], request.app[ASSETS_KEY]
    )
