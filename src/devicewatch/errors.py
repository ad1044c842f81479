"""Error taxonomy surfaced by the console core."""

from __future__ import annotations


class ConsoleError(RuntimeError):
    """Base class for recoverable, user-facing console failures."""


class AuthExpired(ConsoleError):
    """The stored session token is past its expiry claim."""

    def __init__(self, message: str = "Session expired; please log in again.") -> None:
        super().__init__(message)


class AuthMalformed(ConsoleError):
    """The session token could not be decoded."""

    def __init__(self, message: str = "Session token is malformed.") -> None:
        super().__init__(message)


class PinRejected(ConsoleError):
    """The remote verifier declined the submitted PIN."""

    def __init__(self, remaining_attempts: int) -> None:
        self.remaining_attempts = remaining_attempts
        super().__init__(f"Invalid PIN. {remaining_attempts} attempts remaining.")


class AccountLocked(ConsoleError):
    """Too many failed PIN attempts; entry is locked until the given epoch."""

    def __init__(self, locked_until: int) -> None:
        self.locked_until = locked_until
        super().__init__("Account locked for 24 hours due to too many failed attempts.")


class NetworkUnavailable(ConsoleError):
    """The service is unreachable, so the operation was not attempted."""

    def __init__(
        self, message: str = "Internet connection required for emergency unlock."
    ) -> None:
        super().__init__(message)


class RequestFailed(ConsoleError):
    """A remote call failed for reasons unrelated to the user's input."""


class EmergencyRequestPending(ConsoleError):
    """An emergency unlock request is already awaiting approval."""

    def __init__(
        self, message: str = "An emergency unlock request is already pending."
    ) -> None:
        super().__init__(message)


__all__ = [
    "ConsoleError",
    "AuthExpired",
    "AuthMalformed",
    "PinRejected",
    "AccountLocked",
    "NetworkUnavailable",
    "RequestFailed",
    "EmergencyRequestPending",
]
