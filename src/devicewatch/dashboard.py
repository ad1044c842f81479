"""Background refresh, push ingestion, and commands for the device dashboard."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterable, Awaitable, Callable, Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

import requests  # type: ignore[import-untyped]
from pydantic import ValidationError

from .aggregator import DeviceStateAggregator
from .client import MonitorAPIError
from .errors import AuthExpired, ConsoleError, RequestFailed
from .schemas import Device, DeviceUpdate
from .service import MonitorService
from .session import SessionGuard
from .utils import logger

INVENTORY_POLL_SECONDS = 30
DETAIL_POLL_SECONDS = 15


@dataclass
class DashboardMonitor:
    service: MonitorService
    aggregator: DeviceStateAggregator
    guard: SessionGuard
    inventory_interval: float = INVENTORY_POLL_SECONDS
    detail_interval: float = DETAIL_POLL_SECONDS
    _tasks: list[asyncio.Task[None]] = field(default_factory=list, init=False)

    async def refresh_inventory(self) -> bool:
        """Poll the inventory once; returns False when skipped for lack of auth."""
        if not self.guard.is_authenticated():
            logger.debug("Skipping inventory poll: session not authenticated")
            return False
        devices = await self._call("list devices", self.service.list_devices)
        self.aggregator.ingest_poll(devices)
        return True

    async def refresh_selected(self) -> Device | None:
        """Poll detail for the selected device and merge it."""
        device_id = self.aggregator.selected_device_id
        if device_id is None or not self.guard.is_authenticated():
            return None
        detail = await self._call("fetch device detail", self.service.get_device, device_id)
        if detail is None:
            return self.aggregator.selected_device
        self.aggregator.ingest_poll([detail])
        return self.aggregator.selected_device

    def handle_push(self, message: str | bytes | Mapping[str, Any]) -> Device | None:
        """Merge one push message; malformed messages are logged and dropped."""
        try:
            payload = json.loads(message) if isinstance(message, (str, bytes)) else message
            update = DeviceUpdate.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            logger.bind(message=str(message)[:200]).warning(
                "Dropping malformed push message: {}", exc
            )
            return None
        return self.aggregator.ingest_push(update)

    async def consume_push(self, stream: AsyncIterable[str | bytes | Mapping[str, Any]]) -> int:
        merged = 0
        async for message in stream:
            if self.handle_push(message) is not None:
                merged += 1
        logger.bind(merged=merged).info("Push stream closed")
        return merged

    async def start(self) -> None:
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._run_periodic(self.refresh_inventory, self.inventory_interval)),
            loop.create_task(self._run_periodic(self.refresh_selected, self.detail_interval)),
        ]
        logger.info("Dashboard polling started.")

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        if tasks:
            logger.info("Dashboard polling stopped.")

    async def _run_periodic(
        self, refresh: Callable[[], Awaitable[Any]], interval: float
    ) -> None:
        while True:
            try:
                await refresh()
            except ConsoleError as exc:
                logger.warning("Dashboard refresh failed: {}", exc)
            await asyncio.sleep(interval)

    async def lock_selected(self) -> str:
        device_id = self._command_target()
        await self._call("lock device", self.service.lock_device, device_id)
        logger.bind(device_id=device_id).info("Device lock command sent")
        return device_id

    async def locate_selected(self) -> str:
        device_id = self._command_target()
        await self._call("request location", self.service.request_location, device_id)
        logger.bind(device_id=device_id).info("Location request sent")
        return device_id

    async def capture_photo(self, camera: str = "back") -> str:
        device_id = self._command_target()
        await self._call(
            "capture photo",
            lambda: self.service.capture_photo(device_id, camera=camera),
        )
        logger.bind(device_id=device_id, camera=camera).info("Photo capture command sent")
        return device_id

    def _command_target(self) -> str:
        if not self.guard.is_authenticated():
            raise AuthExpired()
        device_id = self.aggregator.selected_device_id
        if device_id is None:
            raise ConsoleError("No device selected.")
        return device_id

    @staticmethod
    async def _call(action: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except (MonitorAPIError, requests.RequestException) as exc:
            logger.warning("Failed to {}: {}", action, exc)
            raise RequestFailed(f"Failed to {action}.") from exc


__all__ = ["INVENTORY_POLL_SECONDS", "DETAIL_POLL_SECONDS", "DashboardMonitor"]
