"""
Granolaa relay server connecting frame producers to viewers.

RelayServer is the core of the relay, responsible for:
- Tracking which producer streams are live
- Splitting inbound producer byte streams into frames
- Pushing presence changes and frames to every connected viewer
"""

__all__ = [
    "Broadcaster",
    "FrameDecoder",
    "IngressState",
    "OversizePolicy",
    "ProducerStream",
    "RelayConfig",
    "RelayEvent",
    "RelayServer",
    "StreamAddedEvent",
    "StreamRegistry",
    "StreamRemovedEvent",
    "ViewerAddedEvent",
    "ViewerRemovedEvent",
    "ViewerSession",
]

from .broadcast import Broadcaster
from .config import OversizePolicy, RelayConfig
from .decoder import FrameDecoder
from .ingress import IngressState, ProducerStream
from .registry import StreamRegistry
from .server import (
    RelayEvent,
    RelayServer,
    StreamAddedEvent,
    StreamRemovedEvent,
    ViewerAddedEvent,
    ViewerRemovedEvent,
)
from .viewer import ViewerSession
