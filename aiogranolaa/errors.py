"""Exceptions raised by the granolaa relay."""


class RelayError(Exception):
    """Base class for all relay errors."""


class FrameDecodeError(RelayError):
    """The inbound byte stream violates the frame format."""


class FrameTooLargeError(FrameDecodeError):
    """A frame header declared a payload above the allowed maximum."""

    def __init__(self, declared: int, limit: int) -> None:
        """Initialize with the declared length and the limit it exceeds."""
        super().__init__(f"Declared frame length {declared} exceeds limit of {limit} bytes")
        self.declared = declared
        self.limit = limit


class MissingProducerIdError(RelayError):
    """A producer connected without identifying itself."""


class UnknownStreamTypeError(RelayError):
    """A producer asked for a stream type the relay does not carry."""
