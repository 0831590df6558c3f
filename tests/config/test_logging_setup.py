"""
Brief: Tests for ensdns.config.logging_config.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import logging.handlers
from pathlib import Path

import pytest

from ensdns.config.logging_config import (
    BracketLevelFormatter,
    SyslogFormatter,
    init_logging,
    log_message,
    parse_level,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)
    logging.captureWarnings(False)


def _record(level: int, msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord("ensdns.test", level, __file__, 1, msg, None, None)


@pytest.mark.parametrize(
    "name,level",
    [("debug", logging.DEBUG), ("WARN", logging.WARNING), ("crit", logging.CRITICAL), (None, logging.INFO), ("bogus", logging.INFO)],
)
def test_parse_level(name, level):
    assert parse_level(name) == level


def test_formatters_use_bracket_tags():
    fmt = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")
    rec = _record(logging.WARNING)
    rec.created = 0
    assert fmt.format(rec) == "1970-01-01T00:00:00Z [warn] ensdns.test: hello"
    assert SyslogFormatter().format(_record(logging.ERROR)) == "[error] ensdns.test: hello"


def test_init_logging_replaces_handlers():
    init_logging({"level": "debug"})
    init_logging({"level": "debug"})
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1


def test_init_logging_file_handler_writes(tmp_path):
    log_path = tmp_path / "logs" / "ensdns.log"
    init_logging({"level": "info", "stderr": False, "file": str(log_path)})
    logging.getLogger("ensdns.test").info("file message")
    content = Path(log_path).read_text()
    assert "file message" in content
    assert "[info]" in content


def test_init_logging_syslog(monkeypatch):
    created = {}

    class DummySysLogHandler(logging.Handler):
        LOG_USER = 1
        LOG_DAEMON = 3

        def __init__(self, address=None, facility=None):
            super().__init__()
            created["address"] = address
            created["facility"] = facility

        def emit(self, record):
            created["last"] = self.format(record)

    monkeypatch.setattr(logging.handlers, "SysLogHandler", DummySysLogHandler)
    init_logging({"stderr": False, "syslog": {"address": "/tmp/log", "facility": "daemon"}})
    logging.getLogger("ensdns.test").warning("to syslog")
    assert created["address"] == "/tmp/log"
    assert created["facility"] == 3
    assert created["last"] == "[warn] ensdns.test: to syslog"


def test_log_message_only_renders_at_debug(caplog):
    class Loud:
        def __str__(self):
            return "line one\nline two"

    log = logging.getLogger("ensdns.test.msg")
    caplog.set_level(logging.INFO, logger="ensdns.test.msg")
    log_message(log, "DNS Request:", Loud())
    assert caplog.records == []

    caplog.set_level(logging.DEBUG, logger="ensdns.test.msg")
    log_message(log, "DNS Request:", Loud())
    assert [r.getMessage() for r in caplog.records] == ["DNS Request:", "line one", "line two"]
