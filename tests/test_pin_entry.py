"""Tests for the PIN entry state machine."""

from __future__ import annotations

import asyncio
import threading

import pytest
import requests

from devicewatch.client import MonitorAPIError
from devicewatch.errors import AccountLocked, PinRejected, RequestFailed
from devicewatch.pin_entry import LOCKOUT_DURATION_MS, PinEntry, PinState
from devicewatch.store import FAILED_ATTEMPTS_KEY

from conftest import make_token


class StubVerifier:
    def __init__(self, token: str | None = None, error: Exception | None = None) -> None:
        self.token = token
        self.error = error
        self.pins: list[str] = []

    def verify_pin(self, pin: str) -> str:
        self.pins.append(pin)
        if self.error is not None:
            raise self.error
        assert self.token is not None
        return self.token


def _rejecting() -> StubVerifier:
    return StubVerifier(error=MonitorAPIError("declined", status_code=401))


def _type(entry: PinEntry, pin: str) -> None:
    for digit in pin:
        entry.append_digit(digit)


def test_buffer_editing_transitions(guard):
    entry = PinEntry(guard, StubVerifier())
    assert entry.state is PinState.IDLE

    _type(entry, "12x3")
    assert entry.buffer == "123"
    assert entry.state is PinState.FILLING

    _type(entry, "45678")
    assert entry.buffer == "123456"
    assert entry.state is PinState.READY

    entry.backspace()
    assert entry.buffer == "12345"

    entry.clear()
    entry.backspace()
    assert entry.buffer == ""
    assert entry.state is PinState.IDLE


@pytest.mark.asyncio
async def test_submit_ignored_until_buffer_is_full(guard):
    verifier = StubVerifier(token="unused")
    entry = PinEntry(guard, verifier)
    _type(entry, "12345")

    assert await entry.submit() is False
    assert verifier.pins == []
    assert entry.buffer == "12345"


@pytest.mark.asyncio
async def test_successful_submit_authenticates_and_resets_attempts(guard, store, clock):
    store.set(FAILED_ATTEMPTS_KEY, "3")
    verifier = StubVerifier(token=make_token(clock.now + 3_600_000))
    entry = PinEntry(guard, verifier, clock=clock)
    _type(entry, "123456")

    assert await entry.submit() is True

    assert verifier.pins == ["123456"]
    assert guard.is_authenticated() is True
    assert entry.buffer == ""
    assert entry.failed_attempts == 0
    assert store.get(FAILED_ATTEMPTS_KEY) is None


@pytest.mark.asyncio
async def test_nine_rejections_report_remaining_attempts(guard, clock):
    entry = PinEntry(guard, _rejecting(), clock=clock)

    for attempt in range(1, 10):
        _type(entry, "000000")
        with pytest.raises(PinRejected) as excinfo:
            await entry.submit()
        assert excinfo.value.remaining_attempts == 10 - attempt
        assert entry.buffer == ""

    assert entry.failed_attempts == 9
    assert entry.is_locked() is False
    assert guard.lockout_state().locked_until_epoch is None


@pytest.mark.asyncio
async def test_tenth_rejection_locks_for_twenty_four_hours(guard, clock):
    entry = PinEntry(guard, _rejecting(), clock=clock)
    for _ in range(9):
        _type(entry, "000000")
        with pytest.raises(PinRejected):
            await entry.submit()

    _type(entry, "000000")
    with pytest.raises(AccountLocked) as excinfo:
        await entry.submit()

    try:
        expected = clock.now + LOCKOUT_DURATION_MS
        assert excinfo.value.locked_until == expected
        assert guard.lockout_state().locked_until_epoch == expected
        assert guard.lockout_state().failed_attempts == 10
        assert entry.state is PinState.LOCKED
        assert entry.tick() == 86_400
    finally:
        await entry.close()


@pytest.mark.asyncio
async def test_locked_entry_ignores_input_but_allows_clear(guard, clock):
    verifier = StubVerifier(token=make_token(clock.now + 3_600_000))
    entry = PinEntry(guard, verifier, clock=clock)
    _type(entry, "123456")
    guard.lock_until(clock.now + 60_000)

    entry.append_digit("7")
    entry.backspace()
    assert entry.buffer == "123456"
    assert await entry.submit() is False
    assert verifier.pins == []

    entry.clear()
    assert entry.buffer == ""
    assert entry.state is PinState.LOCKED


@pytest.mark.asyncio
async def test_clock_past_lock_reenables_submission(guard, store, clock):
    verifier = StubVerifier(token=make_token(clock.now + 7_200_000))
    entry = PinEntry(guard, verifier, clock=clock)
    store.set(FAILED_ATTEMPTS_KEY, "10")
    guard.lock_until(clock.now + 1_500)

    assert entry.tick() == 2

    clock.advance(1_500)
    assert entry.tick() == 0
    assert entry.state is PinState.IDLE
    assert entry.failed_attempts == 0

    _type(entry, "654321")
    assert await entry.submit() is True


@pytest.mark.asyncio
async def test_countdown_task_clears_expired_lock(guard, clock):
    entry = PinEntry(guard, StubVerifier(), clock=clock, tick_seconds=0.01)
    guard.lock_until(clock.now + 5_000)
    entry.start()

    clock.advance(5_000)
    for _ in range(100):
        await asyncio.sleep(0.01)
        if guard.lockout_state().locked_until_epoch is None:
            break

    try:
        assert guard.lockout_state().locked_until_epoch is None
    finally:
        await entry.close()


@pytest.mark.asyncio
async def test_transport_failure_does_not_count_as_attempt(guard, clock):
    verifier = StubVerifier(error=requests.ConnectionError("offline"))
    entry = PinEntry(guard, verifier, clock=clock)
    _type(entry, "123456")

    with pytest.raises(RequestFailed):
        await entry.submit()

    assert entry.failed_attempts == 0
    assert entry.buffer == ""
    assert guard.is_authenticated() is False


@pytest.mark.asyncio
async def test_second_submit_is_ignored_while_first_is_in_flight(guard, clock):
    release = threading.Event()
    token = make_token(clock.now + 3_600_000)

    class BlockingVerifier(StubVerifier):
        def verify_pin(self, pin: str) -> str:
            self.pins.append(pin)
            release.wait(timeout=5)
            return token

    verifier = BlockingVerifier()
    entry = PinEntry(guard, verifier, clock=clock)
    _type(entry, "123456")

    first = asyncio.create_task(entry.submit())
    await asyncio.sleep(0)
    assert entry.state is PinState.SUBMITTING

    _type(entry, "999999")
    assert entry.buffer == "123456"
    assert await entry.submit() is False

    release.set()
    assert await first is True
    assert verifier.pins == ["123456"]
