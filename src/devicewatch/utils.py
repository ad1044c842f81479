"""Logging setup, wall clock, and HTTP warning helpers shared by devicewatch."""

from __future__ import annotations

import os
import sys
import time

import urllib3
from loguru import logger
from urllib3.exceptions import InsecureRequestWarning

_TRUTHY = {"1", "true", "yes", "on"}
_LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level> {extra}"
)

_sink_id: int | None = None


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def configure_logging(*, force: bool = False) -> None:
    """Route devicewatch logs to stderr once per process.

    ``DEVICEWATCH_LOG_LEVEL`` picks the threshold and
    ``DEVICEWATCH_LOG_DIAGNOSE`` turns on variable dumps in tracebacks, which
    can expose PINs and tokens and stays off by default.
    """
    global _sink_id
    if _sink_id is not None and not force:
        return

    logger.remove()
    _sink_id = logger.add(
        sys.stderr,
        level=os.getenv("DEVICEWATCH_LOG_LEVEL", "INFO").upper(),
        format=_LOG_FORMAT,
        backtrace=False,
        diagnose=_env_flag("DEVICEWATCH_LOG_DIAGNOSE"),
    )


def suppress_insecure_request_warning(verify_ssl: bool) -> None:
    """Mute urllib3's per-request warning for a service reached without TLS checks."""
    if not verify_ssl:
        urllib3.disable_warnings(InsecureRequestWarning)


def epoch_ms() -> int:
    """Return the current wall-clock time in integer milliseconds."""
    return time.time_ns() // 1_000_000


configure_logging()

__all__ = [
    "configure_logging",
    "suppress_insecure_request_warning",
    "epoch_ms",
    "logger",
]
