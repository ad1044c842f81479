"""Public package interface for the devicewatch console."""

from __future__ import annotations

from .aggregator import DeviceStateAggregator
from .cli import main as _cli_main
from .client import MonitorAPIError, MonitorClient
from .config import Settings, settings
from .dashboard import DashboardMonitor
from .emergency import EmergencyRequest, EmergencyStatus, EmergencyUnlockFlow
from .errors import (
    AccountLocked,
    AuthExpired,
    AuthMalformed,
    ConsoleError,
    EmergencyRequestPending,
    NetworkUnavailable,
    PinRejected,
    RequestFailed,
)
from .pin_entry import PinEntry, PinState
from .schemas import Device, DeviceUpdate, StorageInfo
from .service import MonitorService
from .session import LockoutState, Session, SessionGuard
from .store import InMemorySessionStore, SessionStore, SQLAlchemySessionStore

__all__ = [
    "Settings",
    "settings",
    "MonitorAPIError",
    "MonitorClient",
    "MonitorService",
    "SessionStore",
    "InMemorySessionStore",
    "SQLAlchemySessionStore",
    "Session",
    "LockoutState",
    "SessionGuard",
    "PinEntry",
    "PinState",
    "EmergencyRequest",
    "EmergencyStatus",
    "EmergencyUnlockFlow",
    "Device",
    "DeviceUpdate",
    "StorageInfo",
    "DeviceStateAggregator",
    "DashboardMonitor",
    "ConsoleError",
    "AuthExpired",
    "AuthMalformed",
    "PinRejected",
    "AccountLocked",
    "NetworkUnavailable",
    "RequestFailed",
    "EmergencyRequestPending",
    "main",
]


def main(argv: None | list[str] = None) -> None:
    """Entrypoint for the command-line interface."""
    _cli_main(argv)
