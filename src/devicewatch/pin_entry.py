"""PIN entry buffer, single-flight submission, and lockout countdown."""

from __future__ import annotations

import asyncio
import math
from contextlib import suppress
from enum import StrEnum
from typing import Protocol

import requests  # type: ignore[import-untyped]

from .client import MonitorAPIError
from .errors import AccountLocked, PinRejected, RequestFailed
from .session import MAX_FAILED_ATTEMPTS, Clock, SessionGuard
from .utils import epoch_ms, logger

PIN_LENGTH = 6
LOCKOUT_DURATION_MS = 24 * 60 * 60 * 1000


class PinVerifier(Protocol):
    def verify_pin(self, pin: str) -> str:
        ...


class PinState(StrEnum):
    IDLE = "idle"
    FILLING = "filling"
    READY = "ready"
    SUBMITTING = "submitting"
    LOCKED = "locked"


class PinEntry:
    """Drives the PIN pad: buffer edits, submission, and lockout."""

    def __init__(
        self,
        guard: SessionGuard,
        verifier: PinVerifier,
        *,
        clock: Clock = epoch_ms,
        tick_seconds: float = 1.0,
    ) -> None:
        self._guard = guard
        self._verifier = verifier
        self._clock = clock
        self._tick_seconds = tick_seconds
        self._buffer = ""
        self._submitting = False
        self._countdown: asyncio.Task[None] | None = None

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def state(self) -> PinState:
        if self.is_locked():
            return PinState.LOCKED
        if self._submitting:
            return PinState.SUBMITTING
        if not self._buffer:
            return PinState.IDLE
        if len(self._buffer) < PIN_LENGTH:
            return PinState.FILLING
        return PinState.READY

    @property
    def failed_attempts(self) -> int:
        return self._guard.lockout_state().failed_attempts

    @property
    def remaining_attempts(self) -> int:
        return max(MAX_FAILED_ATTEMPTS - self.failed_attempts, 0)

    def is_locked(self) -> bool:
        return self.tick() > 0

    def append_digit(self, digit: str) -> None:
        if len(digit) != 1 or digit not in "0123456789":
            return
        if len(self._buffer) >= PIN_LENGTH or self._submitting or self.is_locked():
            return
        self._buffer += digit

    def backspace(self) -> None:
        if not self._buffer or self._submitting or self.is_locked():
            return
        self._buffer = self._buffer[:-1]

    def clear(self) -> None:
        self._buffer = ""

    async def submit(self) -> bool:
        """Send the buffered PIN for verification.

        Returns False when the submission is ignored (incomplete buffer,
        locked, or another submission in flight) and True once the session
        is authenticated. Rejections raise ``PinRejected`` or
        ``AccountLocked``; transport failures raise ``RequestFailed`` without
        counting against the user.
        """
        if self._submitting or len(self._buffer) != PIN_LENGTH or self.is_locked():
            return False

        pin = self._buffer
        self._submitting = True
        try:
            try:
                token = await asyncio.to_thread(self._verifier.verify_pin, pin)
            except MonitorAPIError as exc:
                logger.bind(status_code=exc.status_code).debug(
                    "PIN verification declined"
                )
                self._reject()
            except (requests.RequestException, ValueError) as exc:
                logger.warning("PIN verification failed: {}", exc)
                raise RequestFailed("Unable to reach the verification service.") from exc

            self._guard.login(token)
            self._guard.reset_lockout()
            logger.info("PIN accepted")
            return True
        finally:
            self._buffer = ""
            self._submitting = False

    def _reject(self) -> None:
        state = self._guard.record_failed_attempt()
        if state.failed_attempts >= MAX_FAILED_ATTEMPTS:
            locked_until = self._clock() + LOCKOUT_DURATION_MS
            self._guard.lock_until(locked_until)
            self.start()
            raise AccountLocked(locked_until)
        raise PinRejected(MAX_FAILED_ATTEMPTS - state.failed_attempts)

    def tick(self) -> int:
        """Recompute the lock and return the remaining whole seconds.

        Reaching zero purges the lock deadline and resets the failure count.
        """
        lockout = self._guard.lockout_state()
        if lockout.locked_until_epoch is None:
            return 0
        remaining_ms = lockout.remaining_ms(self._clock())
        if remaining_ms > 0:
            return math.ceil(remaining_ms / 1000)
        self._guard.reset_lockout()
        logger.info("PIN lockout expired")
        return 0

    def start(self) -> None:
        """Run the countdown while a lock is active; needs a running loop."""
        if self._countdown is not None and not self._countdown.done():
            return
        if self.tick() == 0:
            return
        self._countdown = asyncio.get_running_loop().create_task(self._run_countdown())

    async def _run_countdown(self) -> None:
        while True:
            await asyncio.sleep(self._tick_seconds)
            if self.tick() == 0:
                return

    async def close(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
            with suppress(asyncio.CancelledError):
                await self._countdown
            self._countdown = None


__all__ = [
    "PIN_LENGTH",
    "MAX_FAILED_ATTEMPTS",
    "LOCKOUT_DURATION_MS",
    "PinVerifier",
    "PinState",
    "PinEntry",
]
