# tests/test_logging_config.py
import logging

import pytest

from hoptrace.logging_config import (
    ProbeFormatter,
    FILE_FORMAT,
    get_error_stats,
    get_last_errors,
    reset_error_stats,
    setup_logging,
    track_error,
)


@pytest.fixture
def restore_package_logger():
    logger = logging.getLogger("hoptrace")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def _record(**extra):
    record = logging.LogRecord("hoptrace.trace.controller", logging.DEBUG, __file__, 1, "Sent probe", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_probe_formatter_shows_probe_fields():
    line = ProbeFormatter(FILE_FORMAT).format(_record(hop_limit=4, sequence=17))
    assert "ttl=4" in line
    assert "seq=17" in line
    assert line.endswith("Sent probe")


def test_probe_formatter_fills_missing_fields():
    line = ProbeFormatter(FILE_FORMAT).format(_record())
    assert "ttl=-" in line
    assert "seq=-" in line


def test_file_logging_writes_debug_records(tmp_path, restore_package_logger):
    log_file = tmp_path / "logs" / "trace.log"
    logger = setup_logging(level="WARNING", log_file=log_file, enable_console=False, enable_file=True)

    logging.getLogger("hoptrace.trace.controller").debug("probe sent", extra={"hop_limit": 2, "sequence": 9})
    for handler in logger.handlers:
        handler.flush()

    content = log_file.read_text(encoding="utf-8")
    assert "ttl=2" in content
    assert "probe sent" in content
    assert logger.propagate is False


def test_console_only_logging_respects_level(restore_package_logger):
    logger = setup_logging(level="WARNING")

    assert logger.level == logging.WARNING
    assert len(logger.handlers) == 1
    assert logger.handlers[0].level == logging.WARNING


def test_track_error_counts_and_remembers(restore_package_logger):
    reset_error_stats()

    track_error("socket_error", "receive failed", exception=OSError("boom"))
    track_error("socket_error", "receive failed again")

    assert get_error_stats() == {"socket_error": 2}
    assert get_last_errors() == {"socket_error": "receive failed again"}

    reset_error_stats()
    assert get_error_stats() == {}
