"""
Capability interfaces the trace engine is driven through.

Any clock and transport implementing these can run the engine: a raw
socket on an asyncio loop, or a fully synthetic network for tests.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable


class TraceError(Exception):
    """Base exception for trace engine errors."""
    pass


class ProbeSendError(TraceError):
    """The transport failed to transmit a probe."""
    pass


class EngineStateError(TraceError):
    """Operation not allowed in the engine's current state."""
    pass


class PacketKind(str, Enum):
    """Classification of an inbound ICMP packet."""
    ECHO_REPLY = "echo_reply"
    TIME_EXCEEDED = "time_exceeded"
    OTHER = "other"


@dataclass(frozen=True)
class InboundPacket:
    """An ICMP packet delivered by the transport.

    ``payload`` is the echo data of the probe: the reply's own data for an
    echo reply, or the quoted bytes of the original probe's data for a
    time-exceeded notification. It may be truncated.
    """
    kind: PacketKind
    source: str
    payload: bytes = b""


ReceiveCallback = Callable[[InboundPacket], None]


class Clock(ABC):
    """Time source with one-shot cancellable timers."""

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds."""
        pass

    @abstractmethod
    def schedule(self, delay: float, callback: Callable[..., None], *args: Any) -> Any:
        """Run ``callback(*args)`` after ``delay`` seconds.

        Returns:
            An opaque handle accepted by cancel()
        """
        pass

    @abstractmethod
    def cancel(self, handle: Any) -> None:
        """Cancel a scheduled callback. Cancelling a fired timer is a no-op."""
        pass


class PacketIO(ABC):
    """Sends echo probes and delivers inbound ICMP packets.

    Implementations must deliver inbound packets from the event loop, never
    re-entrantly from inside send_probe().
    """

    @abstractmethod
    def send_probe(self, destination: str, hop_limit: int, payload: bytes) -> Any:
        """Transmit an ICMP echo request carrying ``payload``.

        Raises:
            ProbeSendError: if the probe could not be sent
        """
        pass

    @abstractmethod
    def set_receive_callback(self, callback: ReceiveCallback | None) -> None:
        """Register the callback invoked for each inbound packet."""
        pass
