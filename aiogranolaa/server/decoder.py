"""Splits a chunked producer byte stream into length-prefixed frames."""

import logging
from collections.abc import Iterator

from aiogranolaa.errors import FrameTooLargeError
from aiogranolaa.models import FRAME_HEADER_SIZE, MAX_FRAME_SIZE, unpack_frame_length

logger = logging.getLogger(__name__)


class FrameDecoder:
    """
    Incremental decoder for ``repeat(u32_be_length ++ payload[length])``.

    The decoder alternates between two phases: awaiting a 4 byte length
    header and awaiting the declared number of payload bytes. Chunks may be
    split anywhere; a frame is only emitted once it is complete.

    A header declaring more than ``max_frame_size`` bytes is dropped and the
    decoder expects a new header right after it. This is best-effort
    recovery: if the header itself was corrupt, frame boundaries may stay
    out of sync. With ``strict=True`` a ``FrameTooLargeError`` is raised
    instead so the caller can close the connection.
    """

    __slots__ = (
        "_buffer",
        "_needed",
        "_payload_phase",
        "frames_decoded",
        "frames_dropped",
        "max_frame_size",
        "strict",
    )

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE, *, strict: bool = False) -> None:
        """
        Initialize a decoder with an empty buffer.

        Args:
            max_frame_size: Largest payload length accepted in a header.
            strict: Raise on oversized headers instead of resyncing.
        """
        self.max_frame_size = max_frame_size
        self.strict = strict
        self._buffer = bytearray()
        self._needed = FRAME_HEADER_SIZE
        self._payload_phase = False
        self.frames_decoded = 0
        self.frames_dropped = 0

    @property
    def buffered(self) -> int:
        """Number of received bytes not yet consumed."""
        return len(self._buffer)

    @property
    def awaiting_payload(self) -> bool:
        """Whether a header was read and its payload is still incomplete."""
        return self._payload_phase

    @property
    def needed(self) -> int:
        """Bytes required to complete the current header or payload."""
        return self._needed

    def feed(self, chunk: bytes) -> Iterator[bytes]:
        """
        Buffer ``chunk`` and return an iterator over the frames it completes.

        The chunk is buffered right away; frames are cut lazily while the
        iterator is consumed. Every frame completed by the buffered data is
        yielded before the iterator is exhausted.
        """
        if chunk:
            self._buffer += chunk
        return self._drain()

    def _drain(self) -> Iterator[bytes]:
        buffer = self._buffer
        while len(buffer) >= self._needed:
            if not self._payload_phase:
                length = unpack_frame_length(buffer)
                del buffer[:FRAME_HEADER_SIZE]
                if length > self.max_frame_size:
                    self.frames_dropped += 1
                    if self.strict:
                        raise FrameTooLargeError(length, self.max_frame_size)
                    logger.warning(
                        "Dropping frame header declaring %d bytes (limit %d), resyncing",
                        length,
                        self.max_frame_size,
                    )
                    continue
                self._payload_phase = True
                self._needed = length
                continue

            frame = bytes(buffer[: self._needed])
            del buffer[: self._needed]
            self._payload_phase = False
            self._needed = FRAME_HEADER_SIZE
            self.frames_decoded += 1
            yield frame

    def reset(self) -> None:
        """Discard buffered bytes and expect a fresh header."""
        self._buffer.clear()
        self._needed = FRAME_HEADER_SIZE
        self._payload_phase = False
