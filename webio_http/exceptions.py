"""Custom exceptions for the WebIO HTTP server.

Exception Hierarchy:
    WebIOError (base)
        ├── ConfigurationError
        ├── ServerStartError
        └── MessageError
            ├── MalformedMessageError
            └── UnknownMessageKindError

Usage:
    from webio_http.exceptions import ConfigurationError

    if not route.startswith("/"):
        raise ConfigurationError("WEBIO_WEBSOCKET_ROUTE", route, "must start with '/'")
"""


class WebIOError(Exception):
    """Base exception for all server errors."""


class ConfigurationError(WebIOError):
    """A configuration value could not be resolved."""

    def __init__(self, key: str, value: object, reason: str):
        self.key = key
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid configuration {key}={value!r}: {reason}")


class ServerStartError(WebIOError):
    """The HTTP listener failed to start."""

    def __init__(self, host: str, port: int, reason: str = ""):
        self.host = host
        self.port = port
        self.reason = reason
        msg = f"Server failed to start on {host}:{port}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class MessageError(WebIOError):
    """Base exception for inbound message problems."""


class MalformedMessageError(MessageError):
    """Frame payload is not a UTF-8 JSON document."""

    def __init__(self, payload: object, reason: str):
        self.payload = payload
        self.reason = reason
        super().__init__(f"Malformed message: {reason}")


class UnknownMessageKindError(MessageError):
    """Message has no ``type`` field or one outside the known kinds."""

    def __init__(self, kind: object):
        self.kind = kind
        super().__init__(f"Unknown message kind: {kind!r}")
