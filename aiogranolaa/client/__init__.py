"""Public interface for the granolaa producer client package."""

from .discovery import ServiceDiscovery
from .producer import FrameProducer, FrameSource, directory_frame_source

__all__ = [
    "FrameProducer",
    "FrameSource",
    "ServiceDiscovery",
    "directory_frame_source",
]
