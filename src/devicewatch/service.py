"""Typed wrappers around the monitoring service endpoints."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import ValidationError

from .client import MonitorAPIError, MonitorClient
from .schemas import Device, EmergencyStatusResponse, PinVerificationResponse
from .utils import logger


class MonitorService:
    """Interface for authentication, inventory, and command endpoints."""

    def __init__(self, client: MonitorClient) -> None:
        self._client = client

    @property
    def client(self) -> MonitorClient:
        return self._client

    def verify_pin(self, pin: str) -> str:
        """Exchange a PIN for an access token.

        Raises ``MonitorAPIError`` when the service declines the PIN and
        ``ValueError`` when an accepted response carries no token.
        """
        response = self._client.request("post", "/api/auth/pin", json={"pin": pin})
        try:
            payload = PinVerificationResponse.model_validate(response.json())
        except (ValidationError, ValueError) as exc:
            raise ValueError("PIN verification response carried no access token") from exc
        return payload.access_token

    def request_emergency_unlock(self, device_id: str, request_id: str) -> None:
        """Ask the registered device to approve an emergency unlock."""
        self._client.request(
            "post",
            "/api/auth/emergency-unlock",
            json={"device_id": device_id, "request_id": request_id},
        )
        logger.bind(device_id=device_id, request_id=request_id).info(
            "Emergency unlock request accepted"
        )

    def emergency_unlock_status(
        self, request_id: str
    ) -> Literal["pending", "approved", "denied"]:
        response = self._client.request(
            "get", f"/api/auth/emergency-unlock/{request_id}"
        )
        try:
            payload = EmergencyStatusResponse.model_validate(response.json())
        except (ValidationError, ValueError):
            return "pending"
        return payload.normalized

    def list_devices(self) -> list[Device]:
        """Return the device inventory, skipping records that fail validation."""
        response = self._client.request("get", "/api/devices")
        devices = [
            device
            for device in (self._parse_device(item) for item in self._extract_list(response))
            if device is not None
        ]
        logger.bind(device_count=len(devices)).info("Fetched device inventory")
        return devices

    def get_device(self, device_id: str) -> Device | None:
        response = self._client.request("get", f"/api/devices/{device_id}")
        payload = response.json()
        if isinstance(payload, dict) and isinstance(payload.get("device"), dict):
            payload = payload["device"]
        if isinstance(payload, dict):
            payload.setdefault("device_id", device_id)
        return self._parse_device(payload)

    def lock_device(self, device_id: str) -> None:
        self._client.request("post", "/api/security/lock", json={"device_id": device_id})

    def request_location(self, device_id: str) -> None:
        self._client.request("get", f"/api/location/{device_id}")

    def capture_photo(self, device_id: str, *, camera: str = "back") -> None:
        self._client.request(
            "post",
            f"/api/media/camera/{device_id}/photo",
            json={"camera": camera},
        )

    @staticmethod
    def _extract_list(response: Any) -> list[Any]:
        payload = response.json()
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            for key in ("devices", "data"):
                data = payload.get(key)
                if isinstance(data, list):
                    return list(data)
        return []

    @staticmethod
    def _parse_device(item: Any) -> Device | None:
        try:
            return Device.model_validate(item)
        except ValidationError as exc:
            logger.bind(payload=item).warning("Skipping invalid device record: {}", exc)
            return None


__all__ = ["MonitorService", "MonitorAPIError"]
