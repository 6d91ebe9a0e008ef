"""Messages pushed by the relay to viewers."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Literal

from mashumaro import field_options
from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import ServerMessage, StreamKey, StreamType


@dataclass
class StreamInfo(DataClassORJSONMixin):
    """Presence of one producer in a streams message."""

    client_id: str = field(metadata=field_options(alias="clientId"))
    """Identifier of the producer."""
    has_screen: bool = field(default=False, metadata=field_options(alias="hasScreen"))
    """Whether the screen stream of this producer is live."""
    has_webcam: bool = field(default=False, metadata=field_options(alias="hasWebcam"))
    """Whether the webcam stream of this producer is live."""

    class Config(BaseConfig):
        """Config for serializing json messages."""

        serialize_by_alias = True


@dataclass
class StreamsMessage(ServerMessage):
    """Presence snapshot: every producer with at least one live stream."""

    streams: list[StreamInfo]
    type: Literal["streams"] = "streams"


@dataclass
class FrameMessage(ServerMessage):
    """A single JPEG frame of one stream."""

    client_id: str = field(metadata=field_options(alias="clientId"))
    """Identifier of the producer the frame belongs to."""
    stream_type: StreamType = field(metadata=field_options(alias="streamType"))
    """Stream type the frame belongs to."""
    data: str
    """Base64 encoded JPEG payload."""
    type: Literal["frame"] = "frame"

    @classmethod
    def from_payload(cls, key: StreamKey, payload: bytes) -> FrameMessage:
        """Build a frame message for ``payload`` received on stream ``key``."""
        return cls(
            client_id=key.producer_id,
            stream_type=key.stream_type,
            data=base64.b64encode(payload).decode("ascii"),
        )

    @property
    def payload(self) -> bytes:
        """Decoded JPEG payload."""
        return base64.b64decode(self.data)
