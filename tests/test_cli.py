# tests/test_cli.py
import json

import pytest
from click.testing import CliRunner

import hoptrace.cli as cli
from hoptrace.trace.controller import HopController
from hoptrace.trace.fake import FakeTransport, SimulatedClock

DEST = "192.0.2.50"


@pytest.fixture
def synthetic_run(monkeypatch):
    """Replace the raw-socket run with a synthetic path; returns captured configs."""
    seen = []

    def install(routers, reachable=True):
        async def fake_run_trace(config, on_line=None):
            seen.append(config)
            clock = SimulatedClock()
            transport = FakeTransport(clock, routers, config.destination if reachable else None)
            engine = HopController(config, transport, clock)
            if on_line is not None:
                engine.on_report_line(on_line)
            engine.start()
            clock.run()
            return engine

        monkeypatch.setattr(cli, "run_trace", fake_run_trace)
        return seen

    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)
    return install


def test_trace_streams_lines(synthetic_run):
    synthetic_run(["10.0.0.1", "10.0.1.1"])
    result = CliRunner().invoke(cli.main, ["trace", DEST])

    assert result.exit_code == 0
    assert "Traceroute to 192.0.2.50" in result.output
    assert " 1  10.0.0.1" in result.output
    assert "Trace complete" in result.output


def test_trace_json_output(synthetic_run):
    seen = synthetic_run(["10.0.0.1"])
    result = CliRunner().invoke(cli.main, ["trace", DEST, "--json-output", "-m", "8", "-q", "2"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["success"] is True
    assert data["stop_reason"] == "destination_reached"
    assert [h["responder"] for h in data["hops"]] == ["10.0.0.1", DEST]
    assert data["max_hop_limit"] == 8
    assert seen[0].max_probes_per_hop == 2
    assert seen[0].verbose is False


def test_trace_quiet_prints_table(synthetic_run):
    synthetic_run(["10.0.0.1"])
    result = CliRunner().invoke(cli.main, ["trace", DEST, "--quiet"])

    assert result.exit_code == 0
    assert "10.0.0.1" in result.output
    assert "Traceroute to" not in result.output


def test_unreached_destination_exits_nonzero(synthetic_run):
    synthetic_run(["10.0.0.1"], reachable=False)
    result = CliRunner().invoke(cli.main, ["trace", DEST, "-m", "2", "-q", "1", "-w", "0.5"])

    assert result.exit_code == 1
    assert "not reached within 2 hops" in result.output


def test_invalid_option_exits_with_error(synthetic_run):
    seen = synthetic_run(["10.0.0.1"])
    result = CliRunner().invoke(cli.main, ["trace", DEST, "-s", "2"])

    assert result.exit_code == 2
    assert "probe_size" in result.output
    assert seen == []
