"""Merge polled inventory and pushed updates into one device view."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from threading import Lock
from typing import Any

from .schemas import Device, DeviceUpdate
from .utils import logger


class DeviceStateAggregator:
    """Holds the device mapping and the currently selected device.

    Both ingest paths merge field by field in arrival order (last write
    wins); neither removes entries. Removal only happens through
    ``remove_device``. The selection is stored as a key, so reads through
    ``selected_device`` always see the latest merged entry.
    """

    def __init__(self) -> None:
        self._devices: dict[str, Device] = {}
        self._selected_id: str | None = None
        self._lock = Lock()

    @property
    def selected_device_id(self) -> str | None:
        return self._selected_id

    @property
    def selected_device(self) -> Device | None:
        with self._lock:
            if self._selected_id is None:
                return None
            return self._devices.get(self._selected_id)

    def devices(self) -> dict[str, Device]:
        with self._lock:
            return dict(self._devices)

    def get(self, device_id: str) -> Device | None:
        with self._lock:
            return self._devices.get(device_id)

    def known_ids(self) -> set[str]:
        with self._lock:
            return set(self._devices)

    def ingest_poll(self, devices: Iterable[Device | Mapping[str, Any]]) -> None:
        records = [
            device
            if isinstance(device, DeviceUpdate)
            else DeviceUpdate.model_validate(
                device.model_dump(exclude_unset=True)
                if isinstance(device, Device)
                else device
            )
            for device in devices
        ]
        with self._lock:
            for record in records:
                self._merge(record)
            if self._selected_id is None and records:
                self._selected_id = records[0].device_id
                logger.bind(device_id=self._selected_id).debug(
                    "Selected first polled device"
                )
        logger.bind(polled=len(records), known=len(self._devices)).debug(
            "Merged device inventory poll"
        )

    def ingest_push(self, update: DeviceUpdate | Mapping[str, Any]) -> Device:
        record = (
            update
            if isinstance(update, DeviceUpdate)
            else DeviceUpdate.model_validate(update)
        )
        with self._lock:
            return self._merge(record)

    def select_device(self, device_id: str) -> bool:
        with self._lock:
            if device_id not in self._devices:
                logger.bind(device_id=device_id).debug("Ignoring unknown device selection")
                return False
            self._selected_id = device_id
            return True

    def remove_device(self, device_id: str) -> bool:
        with self._lock:
            removed = self._devices.pop(device_id, None) is not None
            if removed and self._selected_id == device_id:
                self._selected_id = None
        return removed

    def _merge(self, record: DeviceUpdate) -> Device:
        fields = record.changed_fields()
        existing = self._devices.get(record.device_id)
        if existing is None:
            merged = Device.model_validate({"device_id": record.device_id, **fields})
        else:
            merged = Device.model_validate({**existing.model_dump(), **fields})
        self._devices[record.device_id] = merged
        return merged


__all__ = ["DeviceStateAggregator"]
