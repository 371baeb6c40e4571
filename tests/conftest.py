# tests/conftest.py
import pytest

from hoptrace.config import TraceConfig
from hoptrace.trace.controller import HopController
from hoptrace.trace.fake import FakeTransport, SimulatedClock

DEST = "192.0.2.50"
ROUTERS = ["10.0.0.1", "10.0.1.1", "10.0.2.1"]


@pytest.fixture
def clock():
    return SimulatedClock()


@pytest.fixture
def build_engine(clock):
    """Factory returning (engine, transport, emitted_lines) on the shared clock."""

    def _build(routers, destination=DEST, script=None, quote_bytes=None, fail_after=None, **overrides):
        overrides.setdefault("wait_reply_timeout", 1.0)
        config = TraceConfig(destination=DEST, **overrides)
        transport = FakeTransport(
            clock,
            routers,
            destination,
            script=script,
            quote_bytes=quote_bytes,
            fail_after=fail_after,
        )
        engine = HopController(config, transport, clock)
        lines = []
        engine.on_report_line(lines.append)
        return engine, transport, lines

    return _build
