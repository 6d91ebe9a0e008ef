"""Models for the granolaa relay protocol."""

from __future__ import annotations

__all__ = [
    "FRAME_HEADER_FORMAT",
    "FRAME_HEADER_SIZE",
    "INGRESS_PATH",
    "MAX_FRAME_SIZE",
    "FrameMessage",
    "RefreshMessage",
    "SERVICE_TYPE",
    "ServerMessage",
    "StreamInfo",
    "StreamKey",
    "StreamType",
    "StreamsMessage",
    "ViewerMessage",
    "pack_frame",
    "server_messages",
    "types",
    "unpack_frame_length",
    "viewer_messages",
]
import struct

from . import server_messages, types, viewer_messages
from .server_messages import FrameMessage, StreamInfo, StreamsMessage
from .types import ServerMessage, StreamKey, StreamType, ViewerMessage
from .viewer_messages import RefreshMessage

# Frame header (big-endian): payload_length(4) = 4 bytes
FRAME_HEADER_FORMAT = ">I"
FRAME_HEADER_SIZE = struct.calcsize(FRAME_HEADER_FORMAT)

SERVICE_TYPE = "_granolaa-relay._tcp.local."
"""mDNS service type relays advertise themselves under."""

INGRESS_PATH = "/stream"
"""Path producers stream to, advertised in the mDNS ``path`` property."""

MAX_FRAME_SIZE = 10 * 1024 * 1024
"""Largest payload a producer may declare in a frame header (10 MiB)."""


def unpack_frame_length(data: bytes | bytearray | memoryview) -> int:
    """
    Unpack the payload length from a frame header.

    Args:
        data: Buffer starting with the 4 byte frame header

    Returns:
        Declared payload length in bytes

    Raises:
        ValueError: If fewer than 4 bytes are given
    """
    if len(data) < FRAME_HEADER_SIZE:
        raise ValueError(f"Expected at least {FRAME_HEADER_SIZE} bytes, got {len(data)}")

    (length,) = struct.unpack_from(FRAME_HEADER_FORMAT, data)
    return int(length)


def pack_frame(payload: bytes) -> bytes:
    """
    Encode a payload as a length-prefixed frame.

    Args:
        payload: JPEG bytes of one frame

    Returns:
        4 byte big-endian length followed by ``payload``
    """
    return struct.pack(FRAME_HEADER_FORMAT, len(payload)) + payload
