"""
Hop records and the report accumulator.
"""

from dataclasses import dataclass, field
from typing import Any, Callable

LineCallback = Callable[[str], None]


@dataclass
class HopRecord:
    """Result for one hop-limit value."""
    hop_limit: int
    responder: str | None = None
    rtt_ms: float | None = None  # RTT of the probe that identified the responder
    samples: list[float | None] = field(default_factory=list)  # None = no reply
    attempts: int = 0

    @property
    def answered(self) -> bool:
        return self.responder is not None

    @property
    def timeouts(self) -> int:
        return sum(1 for s in self.samples if s is None)

    @property
    def rtts(self) -> list[float]:
        return [s for s in self.samples if s is not None]

    @property
    def min_ms(self) -> float | None:
        return min(self.rtts) if self.rtts else None

    @property
    def avg_ms(self) -> float | None:
        rtts = self.rtts
        return sum(rtts) / len(rtts) if rtts else None

    @property
    def max_ms(self) -> float | None:
        return max(self.rtts) if self.rtts else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "hop_limit": self.hop_limit,
            "responder": self.responder,
            "rtt_ms": self.rtt_ms,
            "samples": list(self.samples),
            "attempts": self.attempts,
            "timeouts": self.timeouts,
            "min_ms": self.min_ms,
            "avg_ms": self.avg_ms,
            "max_ms": self.max_ms,
        }


def silent_marks(record: HopRecord) -> str:
    """One ``*`` per unanswered attempt at a hop that never replied."""
    return " ".join("*" * max(record.attempts, 1))


def format_hop_line(record: HopRecord) -> str:
    """Render one hop traceroute-style: ``hop  address  rtt ms  *``."""
    if not record.answered:
        return f"{record.hop_limit:>2}  {silent_marks(record)}"
    samples = "  ".join(f"{s:.3f} ms" if s is not None else "*" for s in record.samples)
    line = f"{record.hop_limit:>2}  {record.responder}"
    if samples:
        line += f"  {samples}"
    return line


class ReportAccumulator:
    """
    Ordered hop records, one per hop-limit probed.

    The first responder recorded for a hop-limit is kept; later replies at
    the same hop-limit only add RTT samples. When ``verbose`` is set, each
    hop's line is emitted to the registered callbacks as soon as the hop
    completes.
    """

    def __init__(
        self,
        destination: str,
        max_hop_limit: int,
        probe_size: int,
        verbose: bool = True,
    ):
        self.destination = destination
        self.max_hop_limit = max_hop_limit
        self.probe_size = probe_size
        self.verbose = verbose
        self._records: dict[int, HopRecord] = {}
        self._completed: set[int] = set()
        self._listeners: list[LineCallback] = []

    def on_line(self, callback: LineCallback) -> None:
        """Register a callback for incremental report lines."""
        self._listeners.append(callback)

    def header(self) -> str:
        return (
            f"Traceroute to {self.destination}, {self.max_hop_limit} hops Max, "
            f"{self.probe_size} bytes of data"
        )

    @property
    def records(self) -> list[HopRecord]:
        return [self._records[k] for k in sorted(self._records)]

    def get(self, hop_limit: int) -> HopRecord | None:
        return self._records.get(hop_limit)

    def _slot(self, hop_limit: int) -> HopRecord:
        record = self._records.get(hop_limit)
        if record is None:
            record = HopRecord(hop_limit=hop_limit)
            self._records[hop_limit] = record
        return record

    def begin(self) -> None:
        """Emit the header line."""
        if self.verbose:
            self.emit(self.header())

    def record_attempt(self, hop_limit: int) -> HopRecord:
        record = self._slot(hop_limit)
        record.attempts += 1
        return record

    def record_reply(self, hop_limit: int, responder: str, rtt_ms: float) -> bool:
        """Add a reply sample.

        Returns:
            True if this reply identified the hop's responder
        """
        record = self._slot(hop_limit)
        record.samples.append(rtt_ms)
        if record.responder is not None:
            return False
        record.responder = responder
        record.rtt_ms = rtt_ms
        return True

    def record_timeout(self, hop_limit: int) -> None:
        self._slot(hop_limit).samples.append(None)

    def reclaim_timeout(
        self,
        hop_limit: int,
        responder: str,
        rtt_ms: float,
        retry_withdrawn: bool = False,
    ) -> bool:
        """Turn the hop's latest timeout into a reply sample.

        The reply belongs to a probe already counted as timed out, so its
        ``None`` sample is replaced rather than a new sample added. With
        ``retry_withdrawn`` the retry sent at the same instant is taken
        back out of the attempt count.

        Returns:
            True if this reply identified the hop's responder
        """
        record = self._slot(hop_limit)
        for index in range(len(record.samples) - 1, -1, -1):
            if record.samples[index] is None:
                record.samples[index] = rtt_ms
                break
        else:
            record.samples.append(rtt_ms)
        if retry_withdrawn and record.attempts > 0:
            record.attempts -= 1
        if record.responder is not None:
            return False
        record.responder = responder
        record.rtt_ms = rtt_ms
        return True

    def complete_hop(self, hop_limit: int) -> None:
        """Mark a hop as resolved, emitting its line once."""
        if hop_limit in self._completed or hop_limit not in self._records:
            return
        self._completed.add(hop_limit)
        if self.verbose:
            self.emit(format_hop_line(self._records[hop_limit]))

    def render(self, summary: str | None = None) -> str:
        """Full report text: header, one line per hop, optional summary."""
        lines = [self.header()]
        lines.extend(format_hop_line(r) for r in self.records)
        if summary:
            lines.append(summary)
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        self._records.clear()
        self._completed.clear()

    def to_dict(self) -> dict[str, Any]:
        return {
            "destination": self.destination,
            "max_hop_limit": self.max_hop_limit,
            "probe_size": self.probe_size,
            "hops": [r.to_dict() for r in self.records],
        }

    def emit(self, line: str) -> None:
        """Send a line to every registered callback."""
        for callback in self._listeners:
            callback(line)
