"""
Trace Module

Event-driven traceroute engine: probe ledger, reply correlation, the hop
controller state machine and report accumulation, plus the clocks and
transports that drive it.
"""

from hoptrace.trace.base import (
    Clock,
    PacketIO,
    PacketKind,
    InboundPacket,
    TraceError,
    ProbeSendError,
    EngineStateError,
)
from hoptrace.trace.codec import (
    encode_timestamp,
    decode_timestamp,
    build_probe_payload,
    parse_probe_header,
    ProbeHeader,
)
from hoptrace.trace.ledger import ProbeLedger, PendingProbe, DuplicateProbeError
from hoptrace.trace.correlator import ReplyCorrelator, MatchResult, CorrelatorStats
from hoptrace.trace.report import ReportAccumulator, HopRecord
from hoptrace.trace.controller import HopController, EngineState, StopReason, SessionState
from hoptrace.trace.icmp import (
    AsyncioClock,
    RawSocketTransport,
    RawSocketPermissionError,
    DestinationResolveError,
    run_trace,
)

__all__ = [
    "Clock",
    "PacketIO",
    "PacketKind",
    "InboundPacket",
    "TraceError",
    "ProbeSendError",
    "EngineStateError",
    "encode_timestamp",
    "decode_timestamp",
    "build_probe_payload",
    "parse_probe_header",
    "ProbeHeader",
    "ProbeLedger",
    "PendingProbe",
    "DuplicateProbeError",
    "ReplyCorrelator",
    "MatchResult",
    "CorrelatorStats",
    "ReportAccumulator",
    "HopRecord",
    "HopController",
    "EngineState",
    "StopReason",
    "SessionState",
    "AsyncioClock",
    "RawSocketTransport",
    "RawSocketPermissionError",
    "DestinationResolveError",
    "run_trace",
]
