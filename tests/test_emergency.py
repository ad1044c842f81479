"""Tests for the emergency unlock flow."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from contextlib import suppress

import pytest
import requests

from devicewatch.client import MonitorAPIError
from devicewatch.emergency import EmergencyRequest, EmergencyStatus, EmergencyUnlockFlow
from devicewatch.errors import EmergencyRequestPending, NetworkUnavailable, RequestFailed

from conftest import FakeClock


class StubApprovalService:
    """Replays a sequence of statuses, advancing the clock on each check."""

    def __init__(
        self,
        clock: FakeClock,
        statuses: Iterable[str | Exception] = (),
        *,
        step_ms: int = 2_000,
        request_error: Exception | None = None,
    ) -> None:
        self.clock = clock
        self.statuses = list(statuses)
        self.step_ms = step_ms
        self.request_error = request_error
        self.requests: list[tuple[str, str]] = []
        self.checks: list[str] = []

    def request_emergency_unlock(self, device_id: str, request_id: str) -> None:
        self.requests.append((device_id, request_id))
        if self.request_error is not None:
            raise self.request_error

    def emergency_unlock_status(self, request_id: str) -> str:
        self.checks.append(request_id)
        self.clock.advance(self.step_ms)
        status = self.statuses.pop(0) if self.statuses else "pending"
        if isinstance(status, Exception):
            raise status
        return status


def _flow(guard, service, clock, *, reachable: bool = True) -> EmergencyUnlockFlow:
    return EmergencyUnlockFlow(
        guard,
        service,
        reachability=lambda: reachable,
        clock=clock,
        poll_interval_ms=1,
    )


@pytest.mark.asyncio
async def test_offline_request_is_refused_without_contacting_service(guard, clock):
    service = StubApprovalService(clock)
    flow = _flow(guard, service, clock, reachable=False)

    with pytest.raises(NetworkUnavailable, match="Internet connection required"):
        await flow.send_request("phone-1")

    assert service.requests == []
    assert flow.request is None
    assert guard.is_authenticated() is False


@pytest.mark.asyncio
async def test_approval_grants_bypass(guard, clock):
    service = StubApprovalService(clock, ["pending", "pending", "approved"])
    flow = _flow(guard, service, clock)

    request = await flow.send_request("phone-1")
    assert request.status is EmergencyStatus.PENDING
    assert service.requests == [("phone-1", request.request_id)]

    assert await flow.wait() is EmergencyStatus.APPROVED

    session = guard.session()
    assert session.authenticated is True
    assert session.bypass_active is True
    assert session.bypass_start_epoch == request.issued_at_epoch + 6_000
    assert service.checks == [request.request_id] * 3


@pytest.mark.asyncio
async def test_unconfirmed_request_expires_without_authenticating(guard, clock):
    service = StubApprovalService(clock, step_ms=15_000)
    flow = _flow(guard, service, clock)

    await flow.send_request("phone-1")

    assert await flow.wait() is EmergencyStatus.EXPIRED
    assert flow.pending is False
    assert guard.is_authenticated() is False
    assert len(service.checks) == 4


@pytest.mark.asyncio
async def test_approval_arriving_after_expiry_is_ignored(guard, clock):
    service = StubApprovalService(clock, ["pending", "approved"], step_ms=40_000)
    flow = _flow(guard, service, clock)

    await flow.send_request("phone-1")

    assert await flow.wait() is EmergencyStatus.EXPIRED
    assert guard.is_authenticated() is False


@pytest.mark.asyncio
async def test_denied_request_ends_without_bypass(guard, clock):
    service = StubApprovalService(clock, ["denied"])
    flow = _flow(guard, service, clock)

    await flow.send_request("phone-1")

    assert await flow.wait() is EmergencyStatus.DENIED
    assert guard.is_authenticated() is False


@pytest.mark.asyncio
async def test_status_errors_keep_polling(guard, clock):
    service = StubApprovalService(
        clock,
        [
            requests.ConnectionError("flaky"),
            MonitorAPIError("busy", status_code=503),
            "approved",
        ],
    )
    flow = _flow(guard, service, clock)

    await flow.send_request("phone-1")

    assert await flow.wait() is EmergencyStatus.APPROVED
    assert len(service.checks) == 3


@pytest.mark.asyncio
async def test_second_request_is_rejected_while_pending(guard, clock):
    service = StubApprovalService(clock, step_ms=0)
    flow = _flow(guard, service, clock)
    first = await flow.send_request("phone-1")

    with pytest.raises(EmergencyRequestPending):
        await flow.send_request("phone-1")

    await flow.cancel()
    assert flow.request is not None
    assert flow.request.request_id == first.request_id
    assert flow.request.status is EmergencyStatus.EXPIRED
    assert len(service.requests) == 1


@pytest.mark.asyncio
async def test_each_request_gets_a_fresh_identifier(guard, clock):
    service = StubApprovalService(clock, ["denied", "denied"])
    flow = _flow(guard, service, clock)

    first = await flow.send_request("phone-1")
    await flow.wait()
    second = await flow.send_request("phone-1")
    await flow.wait()

    assert first.request_id != second.request_id


@pytest.mark.asyncio
async def test_failed_request_leaves_no_pending_state(guard, clock):
    service = StubApprovalService(
        clock, request_error=MonitorAPIError("boom", status_code=500)
    )
    flow = _flow(guard, service, clock)

    with pytest.raises(RequestFailed):
        await flow.send_request("phone-1")

    assert flow.request is None
    assert flow.pending is False
    assert await flow.wait() is None


@pytest.mark.asyncio
async def test_overlapping_requests_send_only_once(guard, clock):
    class SlowApprovalService(StubApprovalService):
        def request_emergency_unlock(self, device_id: str, request_id: str) -> None:
            time.sleep(0.05)
            super().request_emergency_unlock(device_id, request_id)

    service = SlowApprovalService(clock, step_ms=0)
    flow = _flow(guard, service, clock)

    results = await asyncio.gather(
        flow.send_request("phone-1"),
        flow.send_request("phone-1"),
        return_exceptions=True,
    )

    try:
        assert len(service.requests) == 1
        assert sum(isinstance(result, EmergencyRequest) for result in results) == 1
        assert sum(isinstance(result, EmergencyRequestPending) for result in results) == 1
        assert flow.pending is True
    finally:
        await flow.cancel()


@pytest.mark.asyncio
async def test_reachability_check_does_not_block_the_loop(guard, clock):
    ticks = 0

    def slow_reachability() -> bool:
        time.sleep(0.2)
        return False

    async def ticker() -> None:
        nonlocal ticks
        while True:
            await asyncio.sleep(0.01)
            ticks += 1

    flow = EmergencyUnlockFlow(
        guard,
        StubApprovalService(clock),
        reachability=slow_reachability,
        clock=clock,
    )
    task = asyncio.create_task(ticker())
    try:
        with pytest.raises(NetworkUnavailable):
            await flow.send_request("phone-1")
    finally:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    assert ticks >= 5


@pytest.mark.asyncio
async def test_request_allowed_again_after_unreachable_attempt(guard, clock):
    reachable = iter([False, True])
    service = StubApprovalService(clock, ["denied"])
    flow = EmergencyUnlockFlow(
        guard,
        service,
        reachability=lambda: next(reachable),
        clock=clock,
        poll_interval_ms=1,
    )

    with pytest.raises(NetworkUnavailable):
        await flow.send_request("phone-1")

    await flow.send_request("phone-1")
    assert await flow.wait() is EmergencyStatus.DENIED
