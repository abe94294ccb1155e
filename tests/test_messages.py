"""Tests for inbound message parsing."""

import pytest

from webio_http.exceptions import MalformedMessageError, UnknownMessageKindError
from webio_http.messages import MessageKind, classify, decode_frame, parse_message


class TestDecodeFrame:
    def test_text(self):
        assert decode_frame('{"type": "event", "value": 42}') == {
            "type": "event",
            "value": 42,
        }

    def test_utf8_bytes(self):
        assert decode_frame('{"v": "é"}'.encode("utf-8")) == {"v": "é"}

    def test_invalid_json(self):
        with pytest.raises(MalformedMessageError):
            decode_frame("{not json")

    def test_invalid_utf8(self):
        with pytest.raises(MalformedMessageError) as exc_info:
            decode_frame(b"\xff\xfe")
        assert "UTF-8" in exc_info.value.reason


class TestClassify:
    @pytest.mark.parametrize("kind", ["command", "request", "response", "event"])
    def test_known_kinds(self, kind):
        message = classify({"type": kind})
        assert message.kind is MessageKind(kind)

    def test_keeps_original_payload(self):
        data = {"type": "event", "value": 42}
        assert classify(data).data is data

    @pytest.mark.parametrize(
        "value", [{"type": "bogus"}, {"value": 1}, {"type": ["event"]}, [1, 2], 42, None]
    )
    def test_rejects_unknown(self, value):
        with pytest.raises(UnknownMessageKindError):
            classify(value)


def test_parse_message():
    message = parse_message('{"type": "command", "command": "update"}')

    assert message.kind is MessageKind.COMMAND
    assert message.data["command"] == "update"
