"""config.py — Central configuration: environment variables, identifiers, logging.

All settings are read once at import time from the process environment.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Optional


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, "") or default)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, "") or default)
    except ValueError:
        return default


__all__ = [
    "ACTION_POLL_INTERVAL_SECONDS",
    "ACTION_TIMEOUT_SECONDS",
    "CAP_OS",
    "CAP_OSASCRIPT",
    "CAP_PERMISSIONS",
    "CAP_PROBE",
    "CAP_XCLOGPARSER",
    "CAP_XCODE",
    "CONSOLE_LOGGING",
    "DERIVED_DATA_DIR",
    "HEALTH_CHECK_TOOL",
    "INCLUDE_CLEAN",
    "JXA_TIMEOUT_SECONDS",
    "LOG_FILE",
    "LOG_LEVEL",
    "PROBE_TIMEOUT_SECONDS",
    "PROJECT_LOAD_RETRIES",
    "PROJECT_LOAD_RETRY_DELAY_SECONDS",
    "SERVER_NAME",
    "SERVER_VERSION",
    "XCRESULT_TIMEOUT_SECONDS",
    "configure_logging",
]

# ---------------------------------------------------------------------------
# Server identity
# ---------------------------------------------------------------------------

SERVER_NAME = "xcodemcp"
SERVER_VERSION = "2.0.0"

# ---------------------------------------------------------------------------
# Capability identifiers (probe result keys)
# ---------------------------------------------------------------------------

CAP_OS = "os"
CAP_XCODE = "xcode"
CAP_OSASCRIPT = "osascript"
CAP_XCLOGPARSER = "xclogparser"
CAP_PERMISSIONS = "permissions"
# Synthetic capability recorded when the probe itself raises.
CAP_PROBE = "environment-probe"

HEALTH_CHECK_TOOL = "xcode_health_check"

# ---------------------------------------------------------------------------
# Behaviour
# ---------------------------------------------------------------------------

INCLUDE_CLEAN = _env_flag("XCODEMCP_INCLUDE_CLEAN", True)
JXA_TIMEOUT_SECONDS = _env_float("XCODEMCP_JXA_TIMEOUT_SECONDS", 30.0)
PROBE_TIMEOUT_SECONDS = _env_float("XCODEMCP_PROBE_TIMEOUT_SECONDS", 5.0)
PROJECT_LOAD_RETRIES = _env_int("XCODEMCP_PROJECT_LOAD_RETRIES", 30)
PROJECT_LOAD_RETRY_DELAY_SECONDS = _env_float("XCODEMCP_PROJECT_LOAD_RETRY_DELAY_SECONDS", 1.0)
XCRESULT_TIMEOUT_SECONDS = _env_float("XCODEMCP_XCRESULT_TIMEOUT_SECONDS", 60.0)
# Scheme actions (build, test, clean) are polled until done or this many seconds pass.
ACTION_TIMEOUT_SECONDS = _env_float("XCODEMCP_ACTION_TIMEOUT_SECONDS", 7200.0)
ACTION_POLL_INTERVAL_SECONDS = _env_float("XCODEMCP_ACTION_POLL_INTERVAL_SECONDS", 1.0)
DERIVED_DATA_DIR = os.path.expanduser(
    os.environ.get("XCODEMCP_DERIVED_DATA_DIR", "~/Library/Developer/Xcode/DerivedData")
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"
LOG_FILE = os.environ.get("XCODEMCP_LOG_FILE", "").strip()
CONSOLE_LOGGING = _env_flag("XCODEMCP_CONSOLE_LOGGING", True)

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "SILENT": logging.CRITICAL + 10,
}

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Configure the package logger. Console output always goes to stderr
    because stdout carries the MCP protocol stream."""
    logger = logging.getLogger(SERVER_NAME)
    logger.setLevel(_LEVELS.get((level or LOG_LEVEL).upper(), logging.INFO))
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    formatter = logging.Formatter(_LOG_FORMAT)
    if CONSOLE_LOGGING:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        logger.addHandler(console)

    if LOG_FILE:
        try:
            parent = os.path.dirname(LOG_FILE)
            if parent:
                os.makedirs(parent, exist_ok=True)
            file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as exc:
            logger.warning("XCODEMCP_LOG_FILE %r is not usable: %s", LOG_FILE, exc)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return logger
