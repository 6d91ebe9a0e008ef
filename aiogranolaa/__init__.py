"""Granolaa: relay of live screen and webcam frames to browser viewers."""

from __future__ import annotations

# Re-export the producer client for easy import
from aiogranolaa.client import FrameProducer, FrameSource, ServiceDiscovery, directory_frame_source

__all__ = [
    "FrameProducer",
    "FrameSource",
    "ServiceDiscovery",
    "directory_frame_source",
]
