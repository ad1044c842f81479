"""Command-line console for session, emergency unlock, and device commands."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from .aggregator import DeviceStateAggregator
from .client import MonitorClient
from .config import settings
from .dashboard import DashboardMonitor
from .emergency import EmergencyStatus, EmergencyUnlockFlow
from .errors import AccountLocked, ConsoleError, PinRejected
from .pin_entry import PinEntry
from .service import MonitorService
from .session import SessionGuard
from .store import get_session_store
from .utils import configure_logging, epoch_ms, logger

configure_logging()


def _format_remaining(seconds: int) -> str:
    hours, rest = divmod(max(seconds, 0), 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}h {minutes}m {secs}s"


def _format_epoch(epoch: int | None) -> str | None:
    if epoch is None:
        return None
    dt = datetime.fromtimestamp(epoch / 1000, tz=UTC).astimezone()
    return dt.strftime("%Y-%m-%d %H:%M:%S %Z")


def _dump_json(data: object, *, print_fn=print) -> None:
    print_fn(json.dumps(data, indent=2, sort_keys=True, default=str))


def _create_guard() -> SessionGuard:
    guard = SessionGuard(get_session_store())
    guard.initialize()
    return guard


def _create_service(guard: SessionGuard) -> MonitorService:
    client = MonitorClient(
        settings.api_url,
        token_provider=guard.token,
        verify_ssl=settings.verify_ssl,
        timeout=settings.timeout,
    )
    return MonitorService(client)


def status(*, print_fn=print) -> None:
    """Print the current authentication and lockout state."""
    guard = _create_guard()
    session = guard.session()
    lockout = guard.lockout_state()
    now = epoch_ms()
    _dump_json(
        {
            "authenticated": session.authenticated,
            "bypass_active": session.bypass_active,
            "token_expires_at": _format_epoch(session.token_expiry_epoch),
            "failed_attempts": lockout.failed_attempts,
            "locked": lockout.is_locked(now),
            "locked_until": _format_epoch(lockout.locked_until_epoch),
        },
        print_fn=print_fn,
    )


def login(
    *,
    input_fn: Callable[[str], str] = getpass.getpass,
    print_fn=print,
) -> bool:
    """Prompt for the PIN until accepted, locked, or the user gives up."""
    guard = _create_guard()
    if guard.is_authenticated():
        print_fn("Already authenticated.")
        return True

    service = _create_service(guard)
    entry = PinEntry(guard, service)

    async def _attempt(pin: str) -> bool:
        entry.clear()
        for digit in pin:
            entry.append_digit(digit)
        return await entry.submit()

    try:
        while True:
            remaining = entry.tick()
            if remaining:
                print_fn(f"Account locked. Time remaining: {_format_remaining(remaining)}")
                raise SystemExit(1)

            pin = input_fn("Enter 6-digit PIN: ").strip()
            if not pin:
                print_fn("Login cancelled.")
                return False
            if len(pin) != 6 or not pin.isdigit():
                print_fn("PIN must be exactly 6 digits.")
                continue

            try:
                accepted = asyncio.run(_attempt(pin))
            except AccountLocked as exc:
                print_fn(str(exc))
                raise SystemExit(1) from exc
            except PinRejected as exc:
                print_fn(str(exc))
                continue
            except ConsoleError as exc:
                logger.warning("Login attempt failed: {}", exc)
                raise SystemExit(str(exc)) from exc

            if accepted:
                print_fn("Authentication successful!")
                return True
    finally:
        service.client.close()


def emergency_unlock(device_id: str | None = None, *, print_fn=print) -> EmergencyStatus:
    """Request device approval and wait for the bypass window."""
    guard = _create_guard()
    service = _create_service(guard)
    flow = EmergencyUnlockFlow(
        guard, service, reachability=service.client.is_reachable
    )
    target = device_id or settings.console_device_id

    async def _run() -> EmergencyStatus:
        await flow.send_request(target)
        print_fn("Emergency unlock request sent to device. Please approve on your device.")
        try:
            result = await flow.wait()
        finally:
            await flow.cancel()
        return result or EmergencyStatus.EXPIRED

    try:
        result = asyncio.run(_run())
    except ConsoleError as exc:
        print_fn(str(exc))
        raise SystemExit(1) from exc
    finally:
        service.client.close()

    if result is EmergencyStatus.APPROVED:
        print_fn("Emergency unlock approved! Access granted for 1 minute.")
    elif result is EmergencyStatus.DENIED:
        print_fn("Emergency unlock was denied on the device.")
    else:
        print_fn("Emergency unlock request expired without approval.")
    return result


def logout(*, print_fn=print) -> None:
    guard = _create_guard()
    guard.logout()
    print_fn("Logged out.")


def _create_dashboard() -> DashboardMonitor:
    guard = _create_guard()
    if not guard.is_authenticated():
        raise SystemExit("Not authenticated. Run with --login first.")
    return DashboardMonitor(_create_service(guard), DeviceStateAggregator(), guard)


def _device_record(device) -> dict[str, object]:
    record = device.model_dump(exclude_none=True)
    if device.last_seen is not None:
        record["last_seen"] = _format_epoch(device.last_seen)
    return record


def list_devices(*, print_fn=print) -> None:
    """Poll the inventory once and print the merged device view."""
    dashboard = _create_dashboard()
    try:
        asyncio.run(dashboard.refresh_inventory())
    except ConsoleError as exc:
        raise SystemExit(str(exc)) from exc
    finally:
        dashboard.service.client.close()

    devices = dashboard.aggregator.devices()
    if not devices:
        print_fn("No devices found.")
        return
    _dump_json(
        {
            "total": len(devices),
            "selected": dashboard.aggregator.selected_device_id,
            "devices": [_device_record(device) for device in devices.values()],
        },
        print_fn=print_fn,
    )


def send_command(
    command: str, device_id: str, *, camera: str = "back", print_fn=print
) -> None:
    """Select a device from the inventory and send it a command."""
    dashboard = _create_dashboard()

    async def _run() -> None:
        await dashboard.refresh_inventory()
        if not dashboard.aggregator.select_device(device_id):
            raise ConsoleError(f"Unknown device '{device_id}'.")
        if command == "lock":
            await dashboard.lock_selected()
            print_fn("Device lock command sent")
        elif command == "locate":
            await dashboard.locate_selected()
            print_fn("Location request sent")
        elif command == "photo":
            await dashboard.capture_photo(camera)
            print_fn("Photo capture command sent")
        else:
            raise ConsoleError(f"Unsupported command '{command}'.")

    try:
        asyncio.run(_run())
    except ConsoleError as exc:
        logger.bind(command=command, device_id=device_id).warning(
            "Device command failed: {}", exc
        )
        raise SystemExit(str(exc)) from exc
    finally:
        dashboard.service.client.close()


def main(argv: Iterable[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Authenticate and control devices on the monitoring service."
    )
    parser.add_argument("--status", action="store_true", help="Show session state.")
    parser.add_argument("--login", action="store_true", help="Log in with a PIN.")
    parser.add_argument(
        "--emergency",
        action="store_true",
        help="Request emergency access approval from a registered device.",
    )
    parser.add_argument(
        "--device-id",
        help="Device asked to approve the emergency unlock.",
    )
    parser.add_argument("--logout", action="store_true", help="Clear the session.")
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List monitored devices.",
    )
    parser.add_argument("--lock", metavar="DEVICE_ID", help="Send a lock command.")
    parser.add_argument("--locate", metavar="DEVICE_ID", help="Request device location.")
    parser.add_argument("--photo", metavar="DEVICE_ID", help="Capture a photo.")
    parser.add_argument(
        "--camera",
        default="back",
        choices=["back", "front"],
        help="Camera used with --photo.",
    )
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.logout:
        logout(print_fn=print)
        return
    if args.login:
        login(print_fn=print)
        return
    if args.emergency:
        emergency_unlock(args.device_id, print_fn=print)
        return
    if args.list_devices:
        list_devices(print_fn=print)
        return
    for command in ("lock", "locate", "photo"):
        device_id = getattr(args, command)
        if device_id:
            send_command(command, device_id, camera=args.camera, print_fn=print)
            return
    status(print_fn=print)


__all__ = [
    "status",
    "login",
    "emergency_unlock",
    "logout",
    "list_devices",
    "send_command",
    "main",
]
