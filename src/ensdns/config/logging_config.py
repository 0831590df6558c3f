from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}


def _level_tag(levelno: int) -> str:
    return _TAGS.get(levelno, f"[lvl{levelno}]")


class SyslogFormatter(logging.Formatter):
    """Formatter for syslog output without timestamps (syslog adds its own)."""

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return f"{record.level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """Formatter that adds bracketed lowercase level tags and UTC timestamps."""

    def formatTime(self, record, datefmt=None):
        """Format the record creation time as UTC ISO-8601 with Z suffix."""
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return stamp.strftime(datefmt or "%Y-%m-%dT%H:%M:%SZ")

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return super().format(record)


def parse_level(value: object, default: int = logging.INFO) -> int:
    """Brief: Map a level name such as "debug" or "warn" to a logging constant.

    Inputs:
      - value: Level name (case-insensitive) or None.
      - default: Level returned for unknown or missing names.

    Outputs:
      - int logging level.

    Example:
      >>> parse_level("WARN") == logging.WARNING
      True
    """

    if value is None:
        return default
    return _LEVELS.get(str(value).strip().lower(), default)


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """
    Initialize the root logger for the ENS resolver process.

    Args:
        cfg: Logging configuration dictionary with optional keys:
            - level: debug, info, warn, error, crit (default: info)
            - stderr: boolean to log to stderr (default: True)
            - file: string path to log file (optional)
            - syslog: boolean or dict to enable syslog logging (optional)
                Can be a boolean (True uses defaults) or a dict with:
                - address: Unix socket path (default: /dev/log)
                - facility: syslog facility (default: USER)

    Example config:
        {
            "level": "debug",
            "stderr": True,
            "file": "./ensdns.log",
            "syslog": {"address": "/dev/log", "facility": "daemon"}
        }
    """
    cfg = cfg or {}
    level = parse_level(cfg.get("level"))
    formatter = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")

    root = logging.getLogger()
    root.setLevel(level)

    # Re-initialization replaces handlers instead of stacking them.
    for h in list(root.handlers):
        root.removeHandler(h)

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        if isinstance(syslog_cfg, dict):
            address = syslog_cfg.get("address", "/dev/log")
            facility = getattr(
                logging.handlers.SysLogHandler,
                f"LOG_{str(syslog_cfg.get('facility', 'USER')).upper()}",
                logging.handlers.SysLogHandler.LOG_USER,
            )
        else:
            address = "/dev/log"
            facility = logging.handlers.SysLogHandler.LOG_USER
        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=address, facility=facility
            )
        except (OSError, ValueError) as e:  # pragma: no cover - environment-specific
            root.warning("Failed to configure syslog: %s", e)
        else:
            syslog_handler.setFormatter(SyslogFormatter())
            root.addHandler(syslog_handler)

    logging.captureWarnings(True)


def log_message(logger: logging.Logger, prefix: str, msg: object) -> None:
    """Brief: Dump a DNS message line by line at debug level.

    Inputs:
      - logger: Logger to write to.
      - prefix: Heading line, e.g. "DNS Request:".
      - msg: Object whose str() is a multi-line presentation (dnslib.DNSRecord).

    Outputs:
      - None. Nothing is rendered unless the logger is enabled for DEBUG.
    """

    if not logger.isEnabledFor(logging.DEBUG):
        return

    logger.debug(prefix)
    for line in str(msg).strip().splitlines():
        logger.debug(line)
