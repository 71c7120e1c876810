"""Base types and protocols for price feed providers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..streaming.channel import SampleChannel


class ConnectionPhase(Enum):
    """Lifecycle phase of a feed connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKOFF = "backoff"


@dataclass
class ConnectionState:
    """Current phase plus the consecutive connect failure count."""
    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    failures: int = 0  # reset to 0 on every successful connect


class PriceStream(Protocol):
    """Protocol for streaming price providers."""

    async def run(self, channel: SampleChannel) -> None:
        """
        Produce price samples onto the channel until cancelled.

        Should handle reconnection internally and never raise on network errors.
        Must close the channel on every exit path, cancellation included.
        """
        ...
