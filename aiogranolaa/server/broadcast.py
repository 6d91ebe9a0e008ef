"""Fan-out of presence and frame events to every connected viewer."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from aiogranolaa.models import FrameMessage, StreamKey, StreamsMessage

from .registry import StreamRegistry

# The cyclic import is not an issue during runtime, so hide it
# pyright: reportImportCycles=none
if TYPE_CHECKING:
    from .viewer import ViewerSession

logger = logging.getLogger(__name__)


class Broadcaster:
    """
    Owns the set of connected viewers and pushes events to all of them.

    Delivery is best-effort: a closed viewer or a failing send is logged and
    skipped, never retried, and never affects the other viewers. Nothing is
    acknowledged and no frame is kept after the broadcast call.
    """

    def __init__(self, registry: StreamRegistry) -> None:
        """Initialize a broadcaster reading presence from ``registry``."""
        self._registry = registry
        self._viewers: set[ViewerSession] = set()

    @property
    def registry(self) -> StreamRegistry:
        """Registry presence snapshots are built from."""
        return self._registry

    @property
    def viewers(self) -> set[ViewerSession]:
        """Get the set of all connected viewers."""
        return self._viewers

    def add_viewer(self, viewer: ViewerSession) -> None:
        """Add a viewer to the broadcast set."""
        self._viewers.add(viewer)
        logger.info("Viewer %s connected, total viewers: %d", viewer.remote, len(self._viewers))

    def remove_viewer(self, viewer: ViewerSession) -> None:
        """Remove a viewer from the broadcast set, if present."""
        if viewer not in self._viewers:
            return
        self._viewers.remove(viewer)
        logger.info(
            "Viewer %s disconnected, total viewers: %d", viewer.remote, len(self._viewers)
        )

    def presence_message(self) -> StreamsMessage:
        """Build a presence snapshot from the registry."""
        return StreamsMessage(streams=self._registry.snapshot())

    def send_presence(self, viewer: ViewerSession) -> bool:
        """Send the current presence snapshot to a single viewer."""
        return self._deliver(viewer, self.presence_message().to_json(), droppable=False)

    def broadcast_presence(self) -> int:
        """Send the current presence snapshot to every viewer.

        Returns the number of viewers the snapshot was handed to.
        """
        text = self.presence_message().to_json()
        return self._fan_out(text, droppable=False)

    def broadcast_frame(self, key: StreamKey, payload: bytes) -> int:
        """Send one frame of stream ``key`` to every viewer.

        Returns the number of viewers the frame was handed to.
        """
        if not self._viewers:
            return 0
        text = FrameMessage.from_payload(key, payload).to_json()
        delivered = self._fan_out(text, droppable=True)
        logger.debug(
            "Frame of %s (%d bytes) sent to %d/%d viewers",
            key,
            len(payload),
            delivered,
            len(self._viewers),
        )
        return delivered

    def _fan_out(self, text: str, *, droppable: bool) -> int:
        delivered = 0
        # Copy, a failing viewer may be removed while we iterate
        for viewer in list(self._viewers):
            if self._deliver(viewer, text, droppable=droppable):
                delivered += 1
        return delivered

    def _deliver(self, viewer: ViewerSession, text: str, *, droppable: bool) -> bool:
        if viewer.closed:
            logger.debug("Skipping viewer %s, connection is not open", viewer.remote)
            return False
        try:
            return viewer.send_text(text, droppable=droppable)
        except Exception:
            # NOTE: Intentional catch-all, one viewer must not break the broadcast.
            logger.exception("Error sending to viewer %s", viewer.remote)
            return False
