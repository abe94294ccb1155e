"""Routing of parsed browser messages into the application.

The server only needs a callable ``dispatch(connection, message)``. It may be a
plain function (run in a worker thread) or a coroutine function (awaited on the
server loop). :class:`Dispatcher` is a small default that routes by message
kind.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Union

from typing_extensions import TypeAlias

from webio_http.connection import WSConnection
from webio_http.logging import LoggerFactory
from webio_http.messages import MessageKind


DispatchFn: TypeAlias = Callable[
    [WSConnection, "dict[str, Any]"], Union[None, Awaitable[None]]
]


def is_async_dispatch(dispatch: Callable[..., Any]) -> bool:
    if inspect.iscoroutinefunction(dispatch):
        return True
    call = getattr(dispatch, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


def null_dispatch(connection: WSConnection, message: dict[str, Any]) -> None:
    LoggerFactory.for_web(connection.connection_id).debug(
        "No dispatcher configured, dropping {} message", message.get("type")
    )


class Dispatcher:
    """Routes messages to handlers registered per message kind.

    Example:
        dispatcher = Dispatcher()

        @dispatcher.on("event")
        def handle_event(connection, message):
            connection.send({"type": "command", "echo": message["value"]})
    """

    def __init__(self) -> None:
        self._handlers: dict[MessageKind, Callable[[WSConnection, dict], Any]] = {}

    def on(self, kind: Union[str, MessageKind], handler: Callable | None = None):
        kind = MessageKind(kind)

        def register(func: Callable[[WSConnection, dict], Any]):
            self._handlers[kind] = func
            return func

        if handler is not None:
            return register(handler)
        return register

    def handler_for(self, kind: Union[str, MessageKind]) -> Callable | None:
        return self._handlers.get(MessageKind(kind))

    def __call__(self, connection: WSConnection, message: dict[str, Any]) -> Any:
        handler = self._handlers.get(MessageKind(message["type"]))
        if handler is None:
            LoggerFactory.for_web(connection.connection_id).debug(
                "No handler for {} message", message["type"]
            )
            return None
        return handler(connection, message)
