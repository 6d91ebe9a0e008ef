"""Runtime settings of the relay server."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from aiogranolaa.models import MAX_FRAME_SIZE

from .viewer import MAX_PENDING_MSG

DEFAULT_PORT = 3000


class OversizePolicy(Enum):
    """What to do when a producer declares a frame above the size limit."""

    RESYNC = "resync"
    """Drop the header and expect a new one right after it."""
    CLOSE = "close"
    """Close the producer connection."""


def _default_port() -> int:
    return int(os.environ.get("PORT", DEFAULT_PORT))


@dataclass
class RelayConfig:
    """Settings of a RelayServer."""

    host: str = "0.0.0.0"  # noqa: S104
    """Address to listen on."""
    port: int = 0
    """Port to listen on, 0 selects the PORT environment variable or 3000."""
    static_dir: Path | None = None
    """Directory with the viewer page, served at / when set."""
    max_frame_size: int = MAX_FRAME_SIZE
    """Largest frame payload accepted from producers."""
    oversize_policy: OversizePolicy = OversizePolicy.RESYNC
    """Handling of frame headers above max_frame_size."""
    idle_timeout: float | None = None
    """Seconds without data after which a producer is dropped, None to disable."""
    viewer_queue_size: int = MAX_PENDING_MSG
    """Messages queued per viewer before frames are dropped."""
    advertise: bool = False
    """Announce the relay over mDNS."""

    def __post_init__(self) -> None:
        """Validate field values and resolve the port."""
        if not self.port:
            self.port = _default_port()
        if self.max_frame_size <= 0:
            raise ValueError(f"max_frame_size must be positive, got {self.max_frame_size}")
        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ValueError(f"idle_timeout must be positive, got {self.idle_timeout}")
        if self.viewer_queue_size <= 0:
            raise ValueError(f"viewer_queue_size must be positive, got {self.viewer_queue_size}")
