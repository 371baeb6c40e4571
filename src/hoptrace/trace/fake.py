"""
Synthetic clock and transport.

SimulatedClock is a discrete-event scheduler; FakeTransport answers probes
from a scripted path of routers. Together they drive the engine without a
network stack.
"""

import heapq
import itertools
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

from hoptrace.trace.base import (
    Clock,
    InboundPacket,
    PacketIO,
    PacketKind,
    ProbeSendError,
    ReceiveCallback,
)


@dataclass(order=True)
class SimulatedTimer:
    """Handle for a callback scheduled on a SimulatedClock."""
    when: float
    order: int
    callback: Callable[..., None] = field(compare=False)
    args: tuple = field(default=(), compare=False)
    cancelled: bool = field(default=False, compare=False)
    fired: bool = field(default=False, compare=False)


class SimulatedClock(Clock):
    """
    Event queue ordered by time, then by scheduling order.

    Usage:
        clock = SimulatedClock()
        clock.schedule(1.5, callback)
        clock.run()
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: list[SimulatedTimer] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._now

    def schedule(self, delay: float, callback: Callable[..., None], *args: Any) -> SimulatedTimer:
        if delay < 0:
            raise ValueError(f"delay must not be negative, got {delay}")
        timer = SimulatedTimer(self._now + delay, next(self._counter), callback, args)
        heapq.heappush(self._queue, timer)
        return timer

    def cancel(self, handle: SimulatedTimer) -> None:
        handle.cancelled = True

    @property
    def pending(self) -> int:
        return sum(1 for t in self._queue if not t.cancelled)

    def step(self) -> bool:
        """Fire the next live timer. Returns False when the queue is empty."""
        while self._queue:
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = max(self._now, timer.when)
            timer.fired = True
            timer.callback(*timer.args)
            return True
        return False

    def run(self, until: float | None = None, max_events: int = 100000) -> int:
        """Fire timers in order, optionally only those due by ``until``.

        Returns:
            Number of timers fired
        """
        fired = 0
        while fired < max_events:
            while self._queue and self._queue[0].cancelled:
                heapq.heappop(self._queue)
            if not self._queue:
                break
            if until is not None and self._queue[0].when > until:
                break
            self.step()
            fired += 1
        if until is not None and until > self._now:
            self._now = until
        return fired

    def advance(self, seconds: float) -> int:
        """Move time forward, firing everything due on the way."""
        return self.run(until=self._now + seconds)


@dataclass
class SentProbe:
    """A probe captured by FakeTransport."""
    destination: str
    hop_limit: int
    payload: bytes
    sent_at: float


class FakeTransport(PacketIO):
    """
    Answers probes as if they crossed a fixed path.

    routers: addresses of intermediate hops, in order; None for a router
        that never answers. A probe with hop_limit <= len(routers) expires
        at routers[hop_limit - 1].
    destination: address answering echo requests once hop_limit exceeds
        the router count (None for a destination that never answers).
    script: dict[hop_limit] -> list of per-probe reply delays, consumed in
        order; None drops that probe. Unscripted probes use reply_delay.
    quote_bytes: how many bytes of the probe's data a router quotes back
        in a time-exceeded notification (None for all of it).
    """

    def __init__(
        self,
        clock: Clock,
        routers: list[str | None],
        destination: str | None,
        reply_delay: float = 0.001,
        script: dict[int, list[float | None]] | None = None,
        quote_bytes: int | None = None,
        fail_after: int | None = None,
    ):
        self.clock = clock
        self.routers = list(routers)
        self.destination = destination
        self.reply_delay = reply_delay
        self.quote_bytes = quote_bytes
        self.fail_after = fail_after
        self.sent: list[SentProbe] = []
        self._callback: ReceiveCallback | None = None
        self.script: dict[int, deque] = {}
        if script:
            for hop_limit, delays in script.items():
                self.script[hop_limit] = deque(delays)

    def set_receive_callback(self, callback: ReceiveCallback | None) -> None:
        self._callback = callback

    def send_probe(self, destination: str, hop_limit: int, payload: bytes) -> int:
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise ProbeSendError(f"simulated send failure for ttl={hop_limit}")

        self.sent.append(SentProbe(destination, hop_limit, payload, self.clock.now()))

        delay = self.reply_delay
        queued = self.script.get(hop_limit)
        if queued:
            delay = queued.popleft()
        if delay is None:
            return len(self.sent)

        if hop_limit <= len(self.routers):
            router = self.routers[hop_limit - 1]
            if router is not None:
                quoted = payload if self.quote_bytes is None else payload[:self.quote_bytes]
                self.inject(InboundPacket(PacketKind.TIME_EXCEEDED, router, quoted), delay)
        elif self.destination is not None:
            self.inject(InboundPacket(PacketKind.ECHO_REPLY, self.destination, payload), delay)
        return len(self.sent)

    def inject(self, packet: InboundPacket, delay: float = 0.0) -> None:
        """Deliver an arbitrary packet after ``delay`` seconds."""
        self.clock.schedule(delay, self._deliver, packet)

    def hop_limits_sent(self) -> list[int]:
        return [probe.hop_limit for probe in self.sent]

    def _deliver(self, packet: InboundPacket) -> None:
        if self._callback is not None:
            self._callback(packet)
