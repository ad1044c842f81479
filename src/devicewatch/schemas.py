"""Pydantic models for payloads exchanged with the monitoring service."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DeviceState = Literal["online", "offline"]


def _normalize_status(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class StorageInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    used_gb: float = Field(..., ge=0)
    total_gb: float = Field(..., ge=0)


class Device(BaseModel):
    """A monitored device as held by the aggregator."""

    model_config = ConfigDict(extra="ignore")

    device_id: str = Field(..., min_length=1)
    device_name: str = ""
    status: DeviceState = "offline"
    battery_level: int | None = Field(default=None, ge=0, le=100)
    last_seen: int | None = None
    storage_info: StorageInfo | None = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        return _normalize_status(value)

    @property
    def online(self) -> bool:
        return self.status == "online"


class DeviceUpdate(BaseModel):
    """Partial device record; only the fields actually sent are applied."""

    model_config = ConfigDict(extra="ignore")

    device_id: str = Field(..., min_length=1)
    device_name: str | None = None
    status: DeviceState | None = None
    battery_level: int | None = Field(default=None, ge=0, le=100)
    last_seen: int | None = None
    storage_info: StorageInfo | None = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        return _normalize_status(value)

    def changed_fields(self) -> dict[str, Any]:
        """Return the fields present in the payload, excluding the key."""
        fields = self.model_dump(exclude_unset=True, exclude={"device_id"})
        # A null for a non-optional field carries no information.
        for name in ("device_name", "status"):
            if name in fields and fields[name] is None:
                fields.pop(name)
        return fields


class PinVerificationResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)


class EmergencyStatusResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str | None = None
    approved: bool | None = None

    @property
    def normalized(self) -> Literal["pending", "approved", "denied"]:
        if self.approved is True:
            return "approved"
        status = (self.status or "").strip().lower()
        if status in {"approved", "granted"}:
            return "approved"
        if status in {"denied", "rejected"}:
            return "denied"
        return "pending"


__all__ = [
    "DeviceState",
    "StorageInfo",
    "Device",
    "DeviceUpdate",
    "PinVerificationResponse",
    "EmergencyStatusResponse",
]
