# tests/test_report.py
from hoptrace.trace.report import HopRecord, ReportAccumulator, format_hop_line, silent_marks

DEST = "192.0.2.50"


def make_report(verbose=True):
    report = ReportAccumulator(DEST, max_hop_limit=30, probe_size=56, verbose=verbose)
    lines = []
    report.on_line(lines.append)
    return report, lines


def test_first_responder_wins():
    """Later replies at the same hop-limit only add samples."""
    report, _ = make_report()
    assert report.record_reply(1, "10.0.0.1", 1.5) is True
    assert report.record_reply(1, "10.9.9.9", 3.5) is False

    hop = report.get(1)
    assert hop.responder == "10.0.0.1"
    assert hop.rtt_ms == 1.5
    assert hop.samples == [1.5, 3.5]
    assert hop.min_ms == 1.5
    assert hop.max_ms == 3.5
    assert hop.avg_ms == 2.5


def test_timeouts_leave_hop_unanswered():
    report, _ = make_report()
    for _ in range(3):
        report.record_attempt(2)
        report.record_timeout(2)

    hop = report.get(2)
    assert hop.answered is False
    assert hop.attempts == 3
    assert hop.timeouts == 3
    assert hop.avg_ms is None


def test_records_are_ordered_by_hop_limit():
    report, _ = make_report()
    report.record_attempt(2)
    report.record_attempt(1)
    assert [r.hop_limit for r in report.records] == [1, 2]


def test_complete_hop_emits_once_when_verbose():
    report, lines = make_report()
    report.begin()
    report.record_attempt(1)
    report.record_reply(1, "10.0.0.1", 1.0)
    report.complete_hop(1)
    report.complete_hop(1)
    report.complete_hop(7)  # never probed

    assert lines == [
        "Traceroute to 192.0.2.50, 30 hops Max, 56 bytes of data",
        " 1  10.0.0.1  1.000 ms",
    ]


def test_quiet_report_emits_nothing():
    report, lines = make_report(verbose=False)
    report.begin()
    report.record_attempt(1)
    report.record_reply(1, "10.0.0.1", 1.0)
    report.complete_hop(1)
    assert lines == []


def test_format_hop_line():
    answered = HopRecord(hop_limit=3, responder="10.0.2.1", rtt_ms=2.5, samples=[None, 2.5], attempts=2)
    silent = HopRecord(hop_limit=12, samples=[None, None, None], attempts=3)

    assert format_hop_line(answered) == " 3  10.0.2.1  *  2.500 ms"
    assert format_hop_line(silent) == "12  * * *"


def test_render_and_to_dict():
    report, _ = make_report()
    report.record_attempt(1)
    report.record_reply(1, "10.0.0.1", 1.0)
    report.record_attempt(2)
    report.record_timeout(2)

    text = report.render("Trace stopped")
    assert text.splitlines() == [
        "Traceroute to 192.0.2.50, 30 hops Max, 56 bytes of data",
        " 1  10.0.0.1  1.000 ms",
        " 2  *",
        "Trace stopped",
    ]

    data = report.to_dict()
    assert data["destination"] == DEST
    assert [h["responder"] for h in data["hops"]] == ["10.0.0.1", None]
    assert data["hops"][1]["timeouts"] == 1


def test_reset_clears_records():
    report, lines = make_report()
    report.record_attempt(1)
    report.complete_hop(1)
    report.reset()
    assert report.records == []
    report.record_attempt(1)
    report.complete_hop(1)
    assert len(lines) == 2


def test_silent_hop_marks_match_attempts():
    """Line and table both show one mark per unanswered attempt."""
    report, _ = make_report()
    for _ in range(2):
        report.record_attempt(5)
        report.record_timeout(5)

    record = report.get(5)
    assert silent_marks(record) == "* *"
    assert format_hop_line(record) == " 5  * *"
    assert silent_marks(HopRecord(hop_limit=6)) == "*"


def test_reclaimed_reply_replaces_timeout_sample():
    """A reply for a timed-out probe overwrites its timeout instead of adding a sample."""
    report, _ = make_report()
    report.record_attempt(1)
    report.record_timeout(1)
    report.record_attempt(1)

    assert report.reclaim_timeout(1, "10.0.0.1", 1000.0, retry_withdrawn=True) is True

    record = report.get(1)
    assert record.samples == [1000.0]
    assert record.timeouts == 0
    assert record.attempts == 1
    assert record.responder == "10.0.0.1"
