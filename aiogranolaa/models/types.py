"""Models for enum types and message base classes used by granolaa."""

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Discriminator


# Base message classes
@dataclass
class ViewerMessage(DataClassORJSONMixin):
    """Base class for messages sent by viewers."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)


@dataclass
class ServerMessage(DataClassORJSONMixin):
    """Base class for messages pushed to viewers."""

    class Config(BaseConfig):
        """Config for serializing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)
        serialize_by_alias = True


# Enums


class StreamType(Enum):
    """Kind of media a producer pushes on one connection."""

    SCREEN = "screen"
    """Screen capture."""
    WEBCAM = "webcam"
    """Webcam capture."""


class StreamKey(NamedTuple):
    """Identifies one logical media stream."""

    producer_id: str
    """Identifier supplied by the producer."""
    stream_type: StreamType
    """Stream type, fixed by the ingress endpoint."""

    def __str__(self) -> str:
        """Return ``producer/type`` for log lines."""
        return f"{self.producer_id}/{self.stream_type.value}"
