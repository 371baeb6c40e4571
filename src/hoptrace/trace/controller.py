"""
Hop controller: the probing state machine.

Drives a trace one probe at a time. Every mutation happens inside a
callback from the clock (timer expiry, paced send) or the transport
(inbound packet); the controller never blocks and never starts threads.

    IDLE --start()/send--> AWAITING_REPLY --reply/timeout--> AWAITING_REPLY
                                |                                 |
                                +---- destination / max hops / stop() ----> STOPPED

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from hoptrace.config import TraceConfig
from hoptrace.logging_config import track_error
from hoptrace.trace.base import (
    Clock,
    EngineStateError,
    InboundPacket,
    PacketIO,
    ProbeSendError,
)
from hoptrace.trace.codec import SEQUENCE_MODULUS, build_probe_payload, to_ticks
from hoptrace.trace.correlator import MatchResult, ReplyCorrelator
from hoptrace.trace.ledger import ProbeLedger
from hoptrace.trace.report import LineCallback, ReportAccumulator

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    """Controller states."""
    IDLE = "idle"
    AWAITING_REPLY = "awaiting_reply"
    STOPPED = "stopped"


class StopReason(str, Enum):
    """Why a trace ended."""
    DESTINATION_REACHED = "destination_reached"
    MAX_HOPS_EXCEEDED = "max_hops_exceeded"
    STOPPED = "stopped"
    SEND_FAILED = "send_failed"


@dataclass
class SessionState:
    """Mutable state of one trace run, owned by the controller."""
    current_hop_limit: int = 1
    probes_sent_at_current_hop: int = 0
    destination_reached: bool = False
    start_time: float | None = None
    next_sequence: int = 0
    outstanding: int | None = None
    probes_sent: int = 0
    stop_reason: StopReason | None = None


FinishedCallback = Callable[["HopController"], None]


class HopController:
    """
    Traceroute engine for a single destination.

    The ledger, correlator and report are injected collaborators; defaults
    are built from the config when not given.

    Usage:
        engine = HopController(TraceConfig(destination="192.0.2.1"), transport, clock)
        engine.on_report_line(print)
        engine.start()
        # ... the clock/transport drive the run ...
        print(engine.render_final_report())
    """

    def __init__(
        self,
        config: TraceConfig,
        transport: PacketIO,
        clock: Clock,
        ledger: ProbeLedger | None = None,
        correlator: ReplyCorrelator | None = None,
        report: ReportAccumulator | None = None,
    ):
        self.config = config.validate()
        self.transport = transport
        self.clock = clock
        self.ledger = ledger if ledger is not None else ProbeLedger()
        if correlator is None:
            source_check = config.destination if config.destination_is_address else None
            correlator = ReplyCorrelator(self.ledger, clock, destination=source_check)
        self.correlator = correlator
        if report is None:
            report = ReportAccumulator(
                destination=config.destination,
                max_hop_limit=config.max_hop_limit,
                probe_size=config.probe_size,
                verbose=config.verbose,
            )
        self.report = report

        self.session = SessionState()
        self.state = EngineState.IDLE
        self.error: Exception | None = None

        self._started = False
        self._timer: Any = None
        self._next_send: Any = None
        self._finished_callbacks: list[FinishedCallback] = []

        self.transport.set_receive_callback(self.handle_packet)

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def destination_reached(self) -> bool:
        return self.session.destination_reached

    @property
    def stop_reason(self) -> StopReason | None:
        return self.session.stop_reason

    @property
    def is_running(self) -> bool:
        return self._started and self.state is not EngineState.STOPPED

    def on_report_line(self, callback: LineCallback) -> None:
        """Register a callback receiving report lines as hops resolve."""
        self.report.on_line(callback)

    def on_finished(self, callback: FinishedCallback) -> None:
        """Register a callback invoked once when the run stops."""
        self._finished_callbacks.append(callback)

    def start(self) -> None:
        """Send the first probe.

        Raises:
            EngineStateError: if already started (reset() first)
        """
        if self._started or self.state is not EngineState.IDLE:
            raise EngineStateError(f"cannot start engine in state {self.state.value}; reset it first")
        self._started = True
        self.session.start_time = self.clock.now()
        logger.info(
            f"Tracing {self.config.destination}: max {self.config.max_hop_limit} hops, "
            f"{self.config.max_probes_per_hop} probes per hop"
        )
        self.report.begin()
        self._send_probe()

    def stop(self) -> None:
        """Abandon the run. Late replies are discarded afterwards."""
        if self.state is EngineState.STOPPED:
            return
        self._finish(StopReason.STOPPED)

    def reset(self) -> None:
        """Clear all session state so the engine can start again."""
        self._cancel_pending()
        self.ledger.clear()
        self.correlator.reset_stats()
        self.report.reset()
        self.session = SessionState()
        self.state = EngineState.IDLE
        self.error = None
        self._started = False

    def summary(self) -> str:
        """One-line outcome of the run."""
        reason = self.session.stop_reason
        if reason is StopReason.DESTINATION_REACHED:
            hops = self.session.current_hop_limit
            return f"Trace complete: {self.config.destination} reached in {hops} hop{'s' if hops != 1 else ''}"
        if reason is StopReason.MAX_HOPS_EXCEEDED:
            return f"Destination {self.config.destination} not reached within {self.config.max_hop_limit} hops"
        if reason is StopReason.SEND_FAILED:
            return "Trace aborted: probe could not be sent"
        if reason is StopReason.STOPPED:
            return "Trace stopped"
        return "Trace in progress"

    def render_final_report(self) -> str:
        summary = self.summary() if self.state is EngineState.STOPPED else None
        return self.report.render(summary)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def handle_packet(self, packet: InboundPacket) -> None:
        """Transport callback for each inbound ICMP packet."""
        match = self.correlator.correlate(packet)
        if match is None:
            return

        if self.state is EngineState.STOPPED:
            logger.debug(f"Ignoring seq={match.sequence} from {match.responder}: engine stopped")
            return

        if match.sequence == self.session.outstanding:
            self._accept(match)
        elif match.via_fallback and match.hop_limit == self.session.current_hop_limit:
            self._accept(match)
        else:
            logger.debug(
                f"Ignoring seq={match.sequence} from {match.responder}: "
                f"hop {match.hop_limit} is no longer being probed"
            )

    def _handle_timeout(self, sequence: int) -> None:
        entry = self.ledger.expire(sequence, at=self.clock.now())
        if entry is None:
            return
        if sequence == self.session.outstanding:
            self._timer = None
            self.session.outstanding = None

        self.report.record_timeout(entry.hop_limit)
        logger.debug(
            f"Probe seq={sequence} ttl={entry.hop_limit} timed out "
            f"({self.session.probes_sent_at_current_hop}/{self.config.max_probes_per_hop})",
            extra={"hop_limit": entry.hop_limit, "sequence": sequence},
        )

        if self.session.probes_sent_at_current_hop < self.config.max_probes_per_hop:
            self._schedule_next()
        else:
            self._advance()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _accept(self, match: MatchResult) -> None:
        self._cancel_pending()
        outstanding = self.session.outstanding
        retry_withdrawn = outstanding is not None and outstanding != match.sequence
        if retry_withdrawn:
            # Reclaimed reply supersedes the retry already in flight
            self.ledger.expire(outstanding)
        self.session.outstanding = None

        if match.via_fallback:
            self.report.reclaim_timeout(
                match.hop_limit, match.responder, match.rtt_ms, retry_withdrawn=retry_withdrawn
            )
        else:
            self.report.record_reply(match.hop_limit, match.responder, match.rtt_ms)
        logger.debug(
            f"Probe seq={match.sequence} ttl={match.hop_limit} answered by "
            f"{match.responder} in {match.rtt_ms:.3f} ms",
            extra={"hop_limit": match.hop_limit, "sequence": match.sequence},
        )

        if match.reached_destination:
            self.session.destination_reached = True
            self._finish(StopReason.DESTINATION_REACHED)
            return

        self._advance()

    def _advance(self) -> None:
        self.report.complete_hop(self.session.current_hop_limit)
        self.session.probes_sent_at_current_hop = 0
        self.session.current_hop_limit += 1
        if self.session.current_hop_limit > self.config.max_hop_limit:
            self._finish(StopReason.MAX_HOPS_EXCEEDED)
        else:
            self._schedule_next()

    def _schedule_next(self) -> None:
        if self.config.interval > 0:
            self.state = EngineState.IDLE
            self._next_send = self.clock.schedule(self.config.interval, self._send_probe)
        else:
            self._send_probe()

    def _send_probe(self) -> None:
        self._next_send = None
        hop_limit = self.session.current_hop_limit
        sequence = self._allocate_sequence()
        now = self.clock.now()
        payload = build_probe_payload(sequence, to_ticks(now), self.config.probe_size)

        self.ledger.record(sequence, now, hop_limit)
        try:
            self.transport.send_probe(self.config.destination, hop_limit, payload)
        except (OSError, ProbeSendError) as e:
            self.ledger.resolve(sequence)
            track_error(
                "probe_send_failed",
                f"Could not send probe to {self.config.destination}",
                exception=e,
                context={"sequence": sequence, "hop_limit": hop_limit},
            )
            error = e if isinstance(e, ProbeSendError) else ProbeSendError(str(e))
            self.error = error
            self._finish(StopReason.SEND_FAILED)
            if error is e:
                raise
            raise error from e

        self.session.outstanding = sequence
        self.session.probes_sent_at_current_hop += 1
        self.session.probes_sent += 1
        self.report.record_attempt(hop_limit)
        self._timer = self.clock.schedule(self.config.wait_reply_timeout, self._handle_timeout, sequence)
        self.state = EngineState.AWAITING_REPLY
        logger.debug(
            f"Sent probe seq={sequence} ttl={hop_limit} to {self.config.destination}",
            extra={"hop_limit": hop_limit, "sequence": sequence},
        )

    def _finish(self, reason: StopReason) -> None:
        self._cancel_pending()
        self.ledger.clear()
        self.report.complete_hop(self.session.current_hop_limit)
        self.session.outstanding = None
        self.session.stop_reason = reason
        self.state = EngineState.STOPPED

        summary = self.summary()
        logger.info(f"{summary} ({self.session.probes_sent} probes sent)")
        if self.report.verbose:
            self.report.emit(summary)

        for callback in self._finished_callbacks:
            callback(self)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _allocate_sequence(self) -> int:
        sequence = self.session.next_sequence
        while sequence in self.ledger:
            sequence = (sequence + 1) % SEQUENCE_MODULUS
        self.session.next_sequence = (sequence + 1) % SEQUENCE_MODULUS
        return sequence

    def _cancel_pending(self) -> None:
        if self._timer is not None:
            self.clock.cancel(self._timer)
            self._timer = None
        if self._next_send is not None:
            self.clock.cancel(self._next_send)
            self._next_send = None
