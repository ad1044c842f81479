from __future__ import annotations

import os

import jwt
import pytest

# Keep test runs away from the durable store under the home directory.
os.environ["DEVICEWATCH_DB_MODE"] = "memory"

from devicewatch.session import SessionGuard  # noqa: E402
from devicewatch.store import InMemorySessionStore  # noqa: E402

START_EPOCH_MS = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: int = START_EPOCH_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_token(exp_ms: int | None, **claims: object) -> str:
    payload = dict(claims)
    if exp_ms is not None:
        payload["exp"] = exp_ms // 1000
    return jwt.encode(payload, "test-secret", algorithm="HS256")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def guard(store: InMemorySessionStore, clock: FakeClock) -> SessionGuard:
    session_guard = SessionGuard(store, clock=clock)
    session_guard.initialize()
    return session_guard
