"""Out-of-band emergency unlock: approval request and time-boxed wait."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Protocol

import requests  # type: ignore[import-untyped]

from .client import MonitorAPIError
from .errors import EmergencyRequestPending, NetworkUnavailable, RequestFailed
from .session import Clock, SessionGuard
from .utils import epoch_ms, logger

EMERGENCY_TTL_MS = 60_000
APPROVAL_POLL_INTERVAL_MS = 2_000


class ApprovalService(Protocol):
    def request_emergency_unlock(self, device_id: str, request_id: str) -> None:
        ...

    def emergency_unlock_status(self, request_id: str) -> str:
        ...


class EmergencyStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    EXPIRED = "expired"
    DENIED = "denied"


@dataclass(frozen=True)
class EmergencyRequest:
    device_id: str
    request_id: str
    issued_at_epoch: int
    status: EmergencyStatus = EmergencyStatus.PENDING
    ttl_ms: int = EMERGENCY_TTL_MS

    @property
    def expires_at_epoch(self) -> int:
        return self.issued_at_epoch + self.ttl_ms

    def is_expired(self, now: int) -> bool:
        return now >= self.expires_at_epoch


def _new_request_id() -> str:
    return uuid.uuid4().hex


class EmergencyUnlockFlow:
    """Requests device approval and grants the bypass only on confirmation.

    At most one request is pending at a time; ``send_request`` refuses to
    start another while one is being sent or until the current one reaches a
    terminal status.
    """

    def __init__(
        self,
        guard: SessionGuard,
        service: ApprovalService,
        *,
        reachability: Callable[[], bool],
        clock: Clock = epoch_ms,
        ttl_ms: int = EMERGENCY_TTL_MS,
        poll_interval_ms: int = APPROVAL_POLL_INTERVAL_MS,
        request_id_factory: Callable[[], str] = _new_request_id,
    ) -> None:
        self._guard = guard
        self._service = service
        self._reachability = reachability
        self._clock = clock
        self._ttl_ms = ttl_ms
        self._poll_interval = poll_interval_ms / 1000
        self._request_id_factory = request_id_factory
        self._request: EmergencyRequest | None = None
        self._task: asyncio.Task[EmergencyStatus] | None = None
        self._sending = False

    @property
    def request(self) -> EmergencyRequest | None:
        return self._request

    @property
    def pending(self) -> bool:
        return (
            self._request is not None
            and self._request.status is EmergencyStatus.PENDING
        )

    async def send_request(self, device_id: str) -> EmergencyRequest:
        if self._sending or self.pending:
            raise EmergencyRequestPending()

        self._sending = True
        try:
            reachable = await asyncio.to_thread(self._reachability)
            if not reachable:
                logger.bind(device_id=device_id).warning(
                    "Emergency unlock refused: service unreachable"
                )
                raise NetworkUnavailable()

            request_id = self._request_id_factory()
            try:
                await asyncio.to_thread(
                    self._service.request_emergency_unlock, device_id, request_id
                )
            except (MonitorAPIError, requests.RequestException) as exc:
                logger.bind(device_id=device_id).warning(
                    "Emergency unlock request failed: {}", exc
                )
                raise RequestFailed("Failed to send emergency unlock request.") from exc

            await self.cancel()
            self._request = EmergencyRequest(
                device_id=device_id,
                request_id=request_id,
                issued_at_epoch=self._clock(),
                ttl_ms=self._ttl_ms,
            )
            self._task = asyncio.get_running_loop().create_task(self.poll_approval())
        finally:
            self._sending = False

        logger.bind(device_id=device_id, request_id=request_id).info(
            "Emergency unlock pending approval"
        )
        return self._request

    async def poll_approval(self) -> EmergencyStatus:
        """Check the approval status until confirmed, denied, or expired."""
        current = asyncio.current_task()
        if self._task is not None and not self._task.done() and self._task is not current:
            return await asyncio.shield(self._task)

        while self._request is not None and self._request.status is EmergencyStatus.PENDING:
            if self._request.is_expired(self._clock()):
                self._finish(EmergencyStatus.EXPIRED)
                break

            request_id = self._request.request_id
            try:
                status = await asyncio.to_thread(
                    self._service.emergency_unlock_status, request_id
                )
            except (MonitorAPIError, requests.RequestException) as exc:
                logger.bind(request_id=request_id).debug(
                    "Approval status check failed: {}", exc
                )
                status = EmergencyStatus.PENDING.value

            if self._request.is_expired(self._clock()):
                self._finish(EmergencyStatus.EXPIRED)
                break
            if status == EmergencyStatus.APPROVED:
                self._guard.login_bypass()
                self._finish(EmergencyStatus.APPROVED)
                break
            if status == EmergencyStatus.DENIED:
                self._finish(EmergencyStatus.DENIED)
                break

            await asyncio.sleep(self._poll_interval)

        return self._request.status if self._request else EmergencyStatus.EXPIRED

    def _finish(self, status: EmergencyStatus) -> None:
        if self._request is None:
            return
        self._request = replace(self._request, status=status)
        logger.bind(request_id=self._request.request_id, status=status.value).info(
            "Emergency unlock finished"
        )

    async def wait(self) -> EmergencyStatus | None:
        """Wait for the current request to reach a terminal status."""
        if self._task is None:
            return self._request.status if self._request else None
        return await asyncio.shield(self._task)

    async def cancel(self) -> None:
        """Stop polling; a pending request is marked expired."""
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self.pending:
            self._finish(EmergencyStatus.EXPIRED)


__all__ = [
    "EMERGENCY_TTL_MS",
    "APPROVAL_POLL_INTERVAL_MS",
    "ApprovalService",
    "EmergencyStatus",
    "EmergencyRequest",
    "EmergencyUnlockFlow",
]
