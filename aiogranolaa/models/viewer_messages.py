"""Messages sent by viewers to the relay."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .types import ViewerMessage


@dataclass
class RefreshMessage(ViewerMessage):
    """Ask the relay to resend the current presence snapshot."""

    type: Literal["refresh"] = "refresh"
