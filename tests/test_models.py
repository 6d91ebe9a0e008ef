import base64

import orjson
import pytest
from mashumaro.exceptions import SuitableVariantNotFoundError

from aiogranolaa.models import (
    FrameMessage,
    RefreshMessage,
    ServerMessage,
    StreamInfo,
    StreamKey,
    StreamsMessage,
    StreamType,
    ViewerMessage,
    pack_frame,
    unpack_frame_length,
)


def test_streams_message_wire_format() -> None:
    message = StreamsMessage(
        streams=[StreamInfo(client_id="abc123", has_screen=True, has_webcam=False)]
    )
    assert orjson.loads(message.to_json()) == {
        "type": "streams",
        "streams": [{"clientId": "abc123", "hasScreen": True, "hasWebcam": False}],
    }


def test_frame_message_wire_format() -> None:
    payload = b"\xff\xd8jpeg\xff\xd9"
    message = FrameMessage.from_payload(StreamKey("abc123", StreamType.WEBCAM), payload)
    assert orjson.loads(message.to_json()) == {
        "type": "frame",
        "clientId": "abc123",
        "streamType": "webcam",
        "data": base64.b64encode(payload).decode(),
    }


def test_server_message_dispatches_on_type() -> None:
    text = FrameMessage.from_payload(StreamKey("p", StreamType.SCREEN), b"img").to_json()
    message = ServerMessage.from_json(text)
    assert isinstance(message, FrameMessage)
    assert message.stream_type is StreamType.SCREEN
    assert message.payload == b"img"


def test_refresh_message_is_parsed() -> None:
    assert isinstance(ViewerMessage.from_json('{"type": "refresh"}'), RefreshMessage)


def test_unknown_viewer_message_is_rejected() -> None:
    with pytest.raises(SuitableVariantNotFoundError):
        ViewerMessage.from_json('{"type": "subscribe"}')


def test_frame_header_helpers() -> None:
    frame = pack_frame(b"abc")
    assert frame == b"\x00\x00\x00\x03abc"
    assert unpack_frame_length(frame) == 3
    with pytest.raises(ValueError):
        unpack_frame_length(b"\x00\x01")


def test_stream_key_str() -> None:
    assert str(StreamKey("abc", StreamType.SCREEN)) == "abc/screen"
