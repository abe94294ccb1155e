"""Inbound WebSocket message parsing.

Each frame carries one JSON object tagged by its ``type`` field. Only the kinds
in :class:`MessageKind` are accepted.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from webio_http.exceptions import MalformedMessageError, UnknownMessageKindError


class MessageKind(str, Enum):
    COMMAND = "command"
    REQUEST = "request"
    RESPONSE = "response"
    EVENT = "event"


@dataclass(frozen=True)
class Message:
    kind: MessageKind
    data: dict[str, Any]


def decode_frame(payload: Union[str, bytes]) -> Any:
    """Decode a frame payload as UTF-8 JSON.

    Raises:
        MalformedMessageError: if the payload is not valid UTF-8 or JSON.
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = bytes(payload).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedMessageError(payload, f"invalid UTF-8: {exc}") from exc
    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedMessageError(payload, str(exc)) from exc


def classify(value: Any) -> Message:
    """Validate a decoded JSON value against the known message kinds.

    Raises:
        UnknownMessageKindError: if the value is not an object or its ``type``
            is missing or unknown.
    """
    if not isinstance(value, dict):
        raise UnknownMessageKindError(type(value).__name__)
    kind = value.get("type")
    try:
        return Message(kind=MessageKind(kind), data=value)
    except ValueError as exc:
        raise UnknownMessageKindError(kind) from exc


def parse_message(payload: Union[str, bytes]) -> Message:
    return classify(decode_frame(payload))
