"""
Probe ledger: outstanding probes keyed by sequence number.

Each entry is removed exactly once, either by resolve() when a reply is
correlated or by expire() when its reply timer fires. Whichever happens
first wins; the other sees no entry.
"""

import logging
from dataclasses import dataclass

from hoptrace.trace.base import TraceError

logger = logging.getLogger(__name__)


class DuplicateProbeError(TraceError):
    """A sequence number was recorded while still pending."""
    pass


@dataclass(frozen=True)
class PendingProbe:
    """An outstanding probe."""
    sequence: int
    send_time: float
    hop_limit: int


class ProbeLedger:
    """
    Mapping of sequence number to send time for unanswered probes.

    Entries retired by expire() are remembered for the instant at which they
    expired, so a reply racing its own timeout at that same instant can still
    be reclaimed through the embedded-timestamp path.
    """

    def __init__(self):
        self._pending: dict[int, PendingProbe] = {}
        self._expired: dict[int, tuple[float, PendingProbe]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, sequence: int) -> bool:
        return sequence in self._pending

    @property
    def pending(self) -> list[PendingProbe]:
        return list(self._pending.values())

    def record(self, sequence: int, send_time: float, hop_limit: int) -> PendingProbe:
        """Insert a probe at send time.

        Raises:
            DuplicateProbeError: if ``sequence`` is already pending
        """
        if sequence in self._pending:
            raise DuplicateProbeError(f"sequence {sequence} is already pending")
        entry = PendingProbe(sequence=sequence, send_time=send_time, hop_limit=hop_limit)
        self._pending[sequence] = entry
        self._expired.pop(sequence, None)
        return entry

    def resolve(self, sequence: int) -> PendingProbe | None:
        """Remove and return the entry for a correlated reply."""
        return self._pending.pop(sequence, None)

    def expire(self, sequence: int, at: float | None = None) -> PendingProbe | None:
        """Remove and return the entry for a probe whose timer fired.

        Args:
            sequence: Sequence number of the timed-out probe
            at: Clock reading at expiry; when given the entry stays
                reclaimable for that instant only
        """
        entry = self._pending.pop(sequence, None)
        if entry is not None and at is not None:
            self._prune(at)
            self._expired[sequence] = (at, entry)
        return entry

    def reclaim(self, sequence: int, now: float) -> PendingProbe | None:
        """Return an entry expired at exactly ``now``, consuming it."""
        self._prune(now)
        item = self._expired.get(sequence)
        if item is None or item[0] != now:
            return None
        del self._expired[sequence]
        return item[1]

    def clear(self) -> None:
        """Abandon all outstanding entries."""
        if self._pending:
            logger.debug(f"Abandoning {len(self._pending)} pending probe(s)")
        self._pending.clear()
        self._expired.clear()

    def _prune(self, now: float) -> None:
        stale = [seq for seq, (at, _) in self._expired.items() if at != now]
        for seq in stale:
            del self._expired[seq]
