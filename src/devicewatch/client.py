"""HTTP client for the device monitoring service."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import requests  # type: ignore[import-untyped]
from requests import Response, Session

from .config import settings
from .utils import logger, suppress_insecure_request_warning

TokenProvider = Callable[[], str | None]


class MonitorAPIError(RuntimeError):
    """Raised when the monitoring service answers with a non-success status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MonitorClient:
    """Minimal client for the monitoring service REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token_provider: TokenProvider | None = None,
        verify_ssl: bool | None = None,
        timeout: int | None = None,
        health_path: str = "/health",
    ) -> None:
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.token_provider = token_provider
        self.verify_ssl = settings.verify_ssl if verify_ssl is None else verify_ssl
        self.timeout = settings.timeout if timeout is None else timeout
        self.health_path = health_path
        self._session: Session | None = None

    def establish_connection(self) -> Session:
        """Initialize (or reuse) a requests.Session configured for the API."""
        if self._session is not None:
            return self._session

        suppress_insecure_request_warning(self.verify_ssl)
        session = requests.Session()
        session.verify = self.verify_ssl
        session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

        self._session = session
        return session

    def _auth_headers(self) -> dict[str, str]:
        if self.token_provider is None:
            return {}
        token = self.token_provider()
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any | None = None,
        timeout: float | None = None,
    ) -> Response:
        """Execute an HTTP request against the monitoring API."""
        session = self.establish_connection()
        url = f"{self.base_url}/{path.lstrip('/')}"

        response = session.request(
            method=method.upper(),
            url=url,
            params=params,
            json=json,
            headers=self._auth_headers(),
            timeout=self.timeout if timeout is None else timeout,
        )

        if not response.ok:
            raise MonitorAPIError(
                f"Monitor API request failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )

        return response

    def is_reachable(self, *, timeout: float = 3.0) -> bool:
        """Return True when the service answers its health endpoint."""
        try:
            self.request("get", self.health_path, timeout=timeout)
        except (MonitorAPIError, requests.RequestException) as exc:
            logger.bind(base_url=self.base_url).debug(
                "Monitor service unreachable: {}", exc
            )
            return False
        return True

    def close(self) -> None:
        """Close the underlying session if it was created."""
        if self._session is not None:
            self._session.close()
            self._session = None


__all__ = ["MonitorAPIError", "MonitorClient", "TokenProvider"]
