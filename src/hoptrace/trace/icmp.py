"""
IPv4 raw-socket transport and asyncio clock.

Sends ICMP echo requests with a per-probe TTL and turns inbound echo
replies and time-exceeded notifications into InboundPacket events on the
asyncio loop. Requires root or CAP_NET_RAW.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import asyncio
import logging
import os
import socket
import struct
from dataclasses import dataclass
from typing import Any, Callable

from netaddr import AddrFormatError, IPAddress

from hoptrace.config import TraceConfig
from hoptrace.logging_config import track_error
from hoptrace.trace.base import (
    Clock,
    InboundPacket,
    PacketIO,
    PacketKind,
    ProbeSendError,
    ReceiveCallback,
    TraceError,
)
from hoptrace.trace.codec import parse_probe_header
from hoptrace.trace.controller import HopController
from hoptrace.trace.report import LineCallback

logger = logging.getLogger(__name__)

ICMP_ECHO_REPLY = 0
ICMP_ECHO_REQUEST = 8
ICMP_TIME_EXCEEDED = 11

IPPROTO_ICMP = 1

IPV4_HEADER = struct.Struct("!BBHHHBBH4s4s")
ECHO_HEADER = struct.Struct("!BBHHH")

RECV_BUFFER = 65535


class RawSocketPermissionError(PermissionError):
    """Raw socket creation failed due to missing privileges."""


class DestinationResolveError(TraceError):
    """The destination host name could not be resolved."""
    pass


@dataclass
class IcmpDatagram:
    """An ICMP message received on the raw socket."""
    source: str
    icmp_type: int
    code: int
    identifier: int
    sequence: int
    data: bytes


def icmp_checksum(data: bytes) -> int:
    """RFC 1071 internet checksum."""
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack("!%dH" % (len(data) // 2), data))
    total = (total >> 16) + (total & 0xFFFF)
    total += total >> 16
    return (~total) & 0xFFFF


def build_echo_request(identifier: int, sequence: int, payload: bytes) -> bytes:
    """Build an ICMP echo request with a valid checksum."""
    header = ECHO_HEADER.pack(ICMP_ECHO_REQUEST, 0, 0, identifier, sequence)
    checksum = icmp_checksum(header + payload)
    return ECHO_HEADER.pack(ICMP_ECHO_REQUEST, 0, checksum, identifier, sequence) + payload


def _ipv4_header_length(packet: bytes) -> int | None:
    if len(packet) < IPV4_HEADER.size:
        return None
    version_ihl = packet[0]
    if version_ihl >> 4 != 4:
        return None
    length = (version_ihl & 0x0F) * 4
    if length < IPV4_HEADER.size or len(packet) < length:
        return None
    return length


def parse_icmp_datagram(raw: bytes) -> IcmpDatagram | None:
    """Parse an IPv4 datagram carrying ICMP, or None if it is not one."""
    ihl = _ipv4_header_length(raw)
    if ihl is None or len(raw) < ihl + ECHO_HEADER.size:
        return None
    fields = IPV4_HEADER.unpack_from(raw)
    if fields[6] != IPPROTO_ICMP:
        return None

    icmp_type, code, _, identifier, sequence = ECHO_HEADER.unpack_from(raw, ihl)
    return IcmpDatagram(
        source=socket.inet_ntoa(fields[8]),
        icmp_type=icmp_type,
        code=code,
        identifier=identifier,
        sequence=sequence,
        data=raw[ihl + ECHO_HEADER.size:],
    )


def classify(datagram: IcmpDatagram, identifier: int) -> InboundPacket | None:
    """Turn a datagram into an engine event.

    Echo replies and time-exceeded notifications that belong to another
    process (different echo identifier) are dropped here.
    """
    if datagram.icmp_type == ICMP_ECHO_REPLY:
        if datagram.identifier != identifier:
            return None
        return InboundPacket(PacketKind.ECHO_REPLY, datagram.source, datagram.data)

    if datagram.icmp_type == ICMP_TIME_EXCEEDED:
        # Quoted original datagram follows the 8-byte ICMP header
        quoted = datagram.data
        ihl = _ipv4_header_length(quoted)
        if ihl is None or len(quoted) < ihl + ECHO_HEADER.size:
            return None
        if quoted[9] != IPPROTO_ICMP:
            return None
        inner_type, _, _, inner_id, _ = ECHO_HEADER.unpack_from(quoted, ihl)
        if inner_type != ICMP_ECHO_REQUEST or inner_id != identifier:
            return None
        return InboundPacket(PacketKind.TIME_EXCEEDED, datagram.source, quoted[ihl + ECHO_HEADER.size:])

    return InboundPacket(PacketKind.OTHER, datagram.source, datagram.data)


def resolve_destination(host: str) -> str:
    """Return the IPv4 address for ``host``."""
    try:
        if IPAddress(host).version == 4:
            return host
    except (AddrFormatError, ValueError):
        pass

    try:
        return socket.gethostbyname(host)
    except OSError as e:
        raise DestinationResolveError(f"Unable to resolve {host}: {e}") from e


class AsyncioClock(Clock):
    """Clock backed by an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop

    def now(self) -> float:
        return self.loop.time()

    def schedule(self, delay: float, callback: Callable[..., None], *args: Any) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback, *args)

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()


class RawSocketTransport(PacketIO):
    """
    ICMP echo transport over an IPv4 raw socket.

    Usage:
        with RawSocketTransport(loop) as transport:
            engine = HopController(config, transport, AsyncioClock(loop))
            engine.start()
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, identifier: int | None = None):
        self.loop = loop
        self.identifier = identifier if identifier is not None else os.getpid() & 0xFFFF
        self._sock: socket.socket | None = None
        self._callback: ReceiveCallback | None = None

    def open(self) -> "RawSocketTransport":
        if self._sock is not None:
            return self
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP)
        except PermissionError as e:
            raise RawSocketPermissionError(
                "Raw socket requires elevated privileges. Use sudo or grant "
                "CAP_NET_RAW to the Python interpreter."
            ) from e
        sock.setblocking(False)
        self.loop.add_reader(sock.fileno(), self._on_readable)
        self._sock = sock
        logger.debug(f"Opened raw ICMP socket (identifier={self.identifier})")
        return self

    def close(self) -> None:
        if self._sock is None:
            return
        try:
            self.loop.remove_reader(self._sock.fileno())
            self._sock.close()
        finally:
            self._sock = None

    def __enter__(self) -> "RawSocketTransport":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def set_receive_callback(self, callback: ReceiveCallback | None) -> None:
        self._callback = callback

    def send_probe(self, destination: str, hop_limit: int, payload: bytes) -> int:
        if self._sock is None:
            raise ProbeSendError("transport is not open")

        header = parse_probe_header(payload)
        sequence = header.sequence if header else 0
        packet = build_echo_request(self.identifier, sequence, payload)
        try:
            self._sock.setsockopt(socket.IPPROTO_IP, socket.IP_TTL, hop_limit)
            return self._sock.sendto(packet, (destination, 0))
        except OSError as e:
            raise ProbeSendError(f"sendto {destination} ttl={hop_limit} failed: {e}") from e

    def _on_readable(self) -> None:
        while self._sock is not None:
            try:
                raw, _ = self._sock.recvfrom(RECV_BUFFER)
            except BlockingIOError:
                return
            except OSError as e:
                track_error("socket_error", "Raw socket receive failed", exception=e)
                return

            datagram = parse_icmp_datagram(raw)
            if datagram is None:
                continue
            packet = classify(datagram, self.identifier)
            if packet is not None and self._callback is not None:
                self._callback(packet)


async def run_trace(config: TraceConfig, on_line: LineCallback | None = None) -> HopController:
    """Trace ``config.destination`` over a raw socket and wait for the result.

    Raises:
        DestinationResolveError: if the destination cannot be resolved
        RawSocketPermissionError: without raw socket privileges
        ProbeSendError: if a probe cannot be sent
    """
    loop = asyncio.get_running_loop()
    config = config.with_overrides(destination=resolve_destination(config.destination))
    finished: asyncio.Future = loop.create_future()

    def _on_finished(engine: HopController) -> None:
        if not finished.done():
            finished.set_result(engine)

    with RawSocketTransport(loop) as transport:
        engine = HopController(config, transport, AsyncioClock(loop))
        if on_line is not None:
            engine.on_report_line(on_line)
        engine.on_finished(_on_finished)
        engine.start()
        try:
            await finished
        finally:
            engine.stop()

    if engine.error is not None:
        raise engine.error
    return engine
