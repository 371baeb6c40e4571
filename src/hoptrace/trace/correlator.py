"""
Reply correlation: match inbound ICMP packets to outstanding probes.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any

from hoptrace.trace.base import Clock, InboundPacket, PacketKind
from hoptrace.trace.codec import parse_probe_header, ticks_elapsed, to_ticks, TICKS_PER_SECOND
from hoptrace.trace.ledger import ProbeLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchResult:
    """An inbound packet matched to the probe that triggered it."""
    sequence: int
    hop_limit: int
    responder: str
    rtt_ms: float
    reached_destination: bool
    via_fallback: bool = False


@dataclass
class CorrelatorStats:
    """Counters for correlated and discarded packets."""
    matched: int = 0
    fallback: int = 0
    unmatched: int = 0
    malformed: int = 0
    ignored: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ReplyCorrelator:
    """
    Resolves inbound packets against the probe ledger.

    The ledger's send time is authoritative for round-trip time. The
    timestamp embedded in the probe payload is a cross-check, and the only
    source of timing for a reply reclaimed after its probe expired at the
    same instant.

    Usage:
        correlator = ReplyCorrelator(ledger, clock, destination="192.0.2.1")
        match = correlator.correlate(packet)
        if match:
            print(match.responder, match.rtt_ms)
    """

    def __init__(self, ledger: ProbeLedger, clock: Clock, destination: str | None = None):
        self.ledger = ledger
        self.clock = clock
        self.destination = destination
        self.stats = CorrelatorStats()

    def reset_stats(self) -> None:
        self.stats = CorrelatorStats()

    def correlate(self, packet: InboundPacket) -> MatchResult | None:
        """Match a packet to its probe.

        Returns:
            MatchResult, or None if the packet is unrelated, truncated,
            or matches no outstanding probe
        """
        if packet.kind not in (PacketKind.ECHO_REPLY, PacketKind.TIME_EXCEEDED):
            self.stats.ignored += 1
            return None

        header = parse_probe_header(packet.payload)
        if header is None:
            self.stats.malformed += 1
            logger.debug(
                f"Discarding {packet.kind.value} from {packet.source}: "
                f"{len(packet.payload)}-byte fragment is too short"
            )
            return None

        reached = packet.kind == PacketKind.ECHO_REPLY
        if reached and self.destination and packet.source != self.destination:
            self.stats.unmatched += 1
            logger.debug(f"Discarding echo reply seq={header.sequence} from unexpected source {packet.source}")
            return None

        now = self.clock.now()
        entry = self.ledger.resolve(header.sequence)
        if entry is not None:
            if header.timestamp != to_ticks(entry.send_time):
                logger.warning(
                    f"Embedded timestamp mismatch for seq={header.sequence}: "
                    f"payload={header.timestamp} ledger={to_ticks(entry.send_time)}"
                )
            self.stats.matched += 1
            return MatchResult(
                sequence=header.sequence,
                hop_limit=entry.hop_limit,
                responder=packet.source,
                rtt_ms=max(now - entry.send_time, 0.0) * 1000.0,
                reached_destination=reached,
            )

        entry = self.ledger.reclaim(header.sequence, now)
        if entry is not None and header.timestamp == to_ticks(entry.send_time):
            elapsed = ticks_elapsed(to_ticks(now), header.timestamp)
            self.stats.fallback += 1
            logger.debug(f"Reclaimed seq={header.sequence} from {packet.source} via embedded timestamp")
            return MatchResult(
                sequence=header.sequence,
                hop_limit=entry.hop_limit,
                responder=packet.source,
                rtt_ms=elapsed * 1000.0 / TICKS_PER_SECOND,
                reached_destination=reached,
                via_fallback=True,
            )

        self.stats.unmatched += 1
        logger.debug(f"Discarding unmatched {packet.kind.value} seq={header.sequence} from {packet.source}")
        return None
