"""Tracks which producers currently have live streams."""

import logging
from dataclasses import dataclass, field

from aiogranolaa.models import StreamInfo, StreamKey, StreamType

logger = logging.getLogger(__name__)


@dataclass
class _ProducerEntry:
    """Live streams of one producer, mapped to the connection owning each."""

    owners: dict[StreamType, object | None] = field(default_factory=dict)

    def info(self, producer_id: str) -> StreamInfo:
        return StreamInfo(
            client_id=producer_id,
            has_screen=StreamType.SCREEN in self.owners,
            has_webcam=StreamType.WEBCAM in self.owners,
        )


class StreamRegistry:
    """
    In-memory map of producer id to its live stream types.

    A producer is present while at least one of its streams is live and is
    removed as soon as its last stream goes away. Producers keep their
    insertion order in snapshots.

    When two connections register the same stream, the latest one owns it.
    Unregistering with an owner that was replaced is a no-op, so a stale
    connection closing late does not hide the stream of its successor.

    The registry performs no I/O and must only be used from the event loop.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._entries: dict[str, _ProducerEntry] = {}

    def register(self, producer_id: str, stream_type: StreamType, owner: object = None) -> None:
        """Mark the stream live, handing its ownership to ``owner``."""
        entry = self._entries.get(producer_id)
        if entry is None:
            entry = self._entries[producer_id] = _ProducerEntry()
        elif stream_type in entry.owners and entry.owners[stream_type] is not owner:
            logger.info(
                "Stream %s registered again, replacing previous connection",
                StreamKey(producer_id, stream_type),
            )
        entry.owners[stream_type] = owner

    def unregister(self, producer_id: str, stream_type: StreamType, owner: object = None) -> bool:
        """
        Mark the stream not live.

        Returns True if the registry changed. Unregistering a stream that is
        not live, or that is owned by a different connection than ``owner``,
        does nothing. Passing no owner removes the stream unconditionally.
        """
        entry = self._entries.get(producer_id)
        if entry is None or stream_type not in entry.owners:
            return False
        if owner is not None and entry.owners[stream_type] is not owner:
            logger.debug(
                "Ignoring unregister of %s from a replaced connection",
                StreamKey(producer_id, stream_type),
            )
            return False
        del entry.owners[stream_type]
        if not entry.owners:
            del self._entries[producer_id]
        return True

    def is_live(self, producer_id: str, stream_type: StreamType) -> bool:
        """Return whether the given stream is currently live."""
        entry = self._entries.get(producer_id)
        return entry is not None and stream_type in entry.owners

    def snapshot(self) -> list[StreamInfo]:
        """Return the presence of every producer with at least one live stream."""
        return [entry.info(producer_id) for producer_id, entry in self._entries.items()]

    def clear(self) -> None:
        """Forget every stream."""
        self._entries.clear()

    def __contains__(self, producer_id: object) -> bool:
        """Return whether the producer has at least one live stream."""
        return producer_id in self._entries

    def __len__(self) -> int:
        """Return the number of producers with at least one live stream."""
        return len(self._entries)
