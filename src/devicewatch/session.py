"""Local authentication state: token validity, lockout, and bypass window.

The expiry check performed here is advisory. Token signatures are never
verified on the client; the monitoring service authorizes every privileged
call on its own.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import jwt

from .errors import AuthExpired, AuthMalformed
from .store import (
    AUTH_TOKEN_KEY,
    BYPASS_START_KEY,
    FAILED_ATTEMPTS_KEY,
    LOCKED_UNTIL_KEY,
    SessionStore,
)
from .utils import epoch_ms, logger

BYPASS_WINDOW_MS = 60_000
MAX_FAILED_ATTEMPTS = 10

Clock = Callable[[], int]


@dataclass(frozen=True)
class Session:
    """Point-in-time view of the authentication state."""

    authenticated: bool
    token_expiry_epoch: int | None = None
    bypass_active: bool = False
    bypass_start_epoch: int | None = None


@dataclass(frozen=True)
class LockoutState:
    """Persisted PIN failure counter and lock deadline."""

    failed_attempts: int = 0
    locked_until_epoch: int | None = None

    def is_locked(self, now: int) -> bool:
        return self.locked_until_epoch is not None and self.locked_until_epoch > now

    def remaining_ms(self, now: int) -> int:
        if self.locked_until_epoch is None:
            return 0
        return max(self.locked_until_epoch - now, 0)


def read_token_expiry(token: str) -> int:
    """Return the token's ``exp`` claim in epoch milliseconds.

    Raises ``AuthMalformed`` for anything that is not a decodable JWT with a
    numeric ``exp`` claim.
    """
    if not isinstance(token, str) or not token:
        raise AuthMalformed()
    try:
        claims = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
        )
    except jwt.InvalidTokenError as exc:
        raise AuthMalformed() from exc

    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        raise AuthMalformed("Session token has no usable expiry claim.")
    try:
        return int(exp * 1000)
    except (ValueError, OverflowError) as exc:
        raise AuthMalformed("Session token has no usable expiry claim.") from exc


def _parse_epoch(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


class SessionGuard:
    """Single source of truth for whether the console user is authenticated.

    The guard is the only component that touches the session store. It keeps
    the decoded token expiry and the bypass start in memory and recomputes
    authentication on every query, purging whichever credential it finds
    expired.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        clock: Clock = epoch_ms,
        bypass_window_ms: int = BYPASS_WINDOW_MS,
    ) -> None:
        self._store = store
        self._clock = clock
        self._bypass_window_ms = bypass_window_ms
        self._token: str | None = None
        self._token_expiry: int | None = None
        self._bypass_start: int | None = None

    def initialize(self) -> Session:
        """Load persisted credentials, discarding anything unusable."""
        now = self._clock()
        self._token = None
        self._token_expiry = None
        self._bypass_start = None

        token = self._store.get(AUTH_TOKEN_KEY)
        if token is not None:
            try:
                expiry = read_token_expiry(token)
            except AuthMalformed as exc:
                logger.warning("Discarding stored session token: {}", exc)
                self._store.delete(AUTH_TOKEN_KEY)
            else:
                if expiry > now:
                    self._token = token
                    self._token_expiry = expiry
                else:
                    logger.info(str(AuthExpired()))
                    self._store.delete(AUTH_TOKEN_KEY)

        raw_bypass = self._store.get(BYPASS_START_KEY)
        if raw_bypass is not None:
            started = _parse_epoch(raw_bypass)
            if started is not None and now - started < self._bypass_window_ms:
                self._bypass_start = started
            else:
                self._store.delete(BYPASS_START_KEY)

        session = self.session()
        logger.bind(
            authenticated=session.authenticated, bypass=session.bypass_active
        ).info("Session initialized")
        return session

    def login(self, token: str) -> Session:
        """Persist a freshly issued token and drop any bypass marker."""
        expiry = read_token_expiry(token)
        self._store.set(AUTH_TOKEN_KEY, token)
        self._store.delete(BYPASS_START_KEY)
        self._token = token
        self._token_expiry = expiry
        self._bypass_start = None
        logger.bind(expires_at=expiry).info("Logged in with access token")
        return self.session()

    def login_bypass(self) -> Session:
        """Open the fixed emergency bypass window starting now."""
        started = self._clock()
        self._store.set(BYPASS_START_KEY, str(started))
        self._bypass_start = started
        logger.bind(started_at=started, window_ms=self._bypass_window_ms).warning(
            "Emergency bypass granted"
        )
        return self.session()

    def logout(self) -> None:
        self._store.delete(AUTH_TOKEN_KEY)
        self._store.delete(BYPASS_START_KEY)
        self._token = None
        self._token_expiry = None
        self._bypass_start = None
        logger.info("Logged out")

    def is_authenticated(self) -> bool:
        return self.session().authenticated

    def session(self) -> Session:
        now = self._clock()
        token_valid = self._token_expiry is not None and self._token_expiry > now
        if self._token is not None and not token_valid:
            logger.info(str(AuthExpired()))
            self._store.delete(AUTH_TOKEN_KEY)
            self._token = None
            self._token_expiry = None

        bypass_active = (
            self._bypass_start is not None
            and now - self._bypass_start < self._bypass_window_ms
        )
        if self._bypass_start is not None and not bypass_active:
            logger.info("Emergency bypass window closed")
            self._store.delete(BYPASS_START_KEY)
            self._bypass_start = None

        return Session(
            authenticated=token_valid or bypass_active,
            token_expiry_epoch=self._token_expiry,
            bypass_active=bypass_active,
            bypass_start_epoch=self._bypass_start,
        )

    def token(self) -> str | None:
        """Return the current token while it is still valid."""
        if self.session().token_expiry_epoch is None:
            return None
        return self._token

    def lockout_state(self) -> LockoutState:
        attempts = _parse_epoch(self._store.get(FAILED_ATTEMPTS_KEY)) or 0
        attempts = min(max(attempts, 0), MAX_FAILED_ATTEMPTS)
        locked_until = _parse_epoch(self._store.get(LOCKED_UNTIL_KEY))
        return LockoutState(
            failed_attempts=attempts, locked_until_epoch=locked_until
        )

    def record_failed_attempt(self) -> LockoutState:
        state = self.lockout_state()
        attempts = min(state.failed_attempts + 1, MAX_FAILED_ATTEMPTS)
        self._store.set(FAILED_ATTEMPTS_KEY, str(attempts))
        logger.bind(failed_attempts=attempts).warning("PIN attempt rejected")
        return LockoutState(
            failed_attempts=attempts, locked_until_epoch=state.locked_until_epoch
        )

    def lock_until(self, locked_until: int) -> LockoutState:
        self._store.set(LOCKED_UNTIL_KEY, str(locked_until))
        logger.bind(locked_until=locked_until).warning("PIN entry locked")
        return self.lockout_state()

    def reset_lockout(self) -> None:
        self._store.delete(FAILED_ATTEMPTS_KEY)
        self._store.delete(LOCKED_UNTIL_KEY)


__all__ = [
    "BYPASS_WINDOW_MS",
    "MAX_FAILED_ATTEMPTS",
    "Clock",
    "Session",
    "LockoutState",
    "SessionGuard",
    "read_token_expiry",
]
