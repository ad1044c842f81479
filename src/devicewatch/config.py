"""Configuration helpers for the devicewatch console."""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

DEFAULT_API_URL = "http://localhost:8001"
DEFAULT_TIMEOUT = 10
DEFAULT_CONSOLE_DEVICE_ID = "console"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.") from exc


def _env_file_search_order() -> list[Path]:
    """Explicit override first, then the working directory, then the tree
    above the installed package."""
    order: list[Path] = []
    override = os.environ.get("DEVICEWATCH_ENV_FILE")
    if override:
        order.append(Path(override).expanduser())
    order.append(Path.cwd() / ".env")
    package_dir = Path(__file__).resolve().parent
    order.extend(directory / ".env" for directory in (package_dir, *package_dir.parents))
    return order


def _read_env_assignments(env_path: Path) -> Iterable[tuple[str, str]]:
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        name, _, value = line.partition("=")
        yield name.strip(), value.strip().strip("\"'")


def load_dotenv_settings() -> Path | None:
    """Apply the first ``.env`` found to ``os.environ`` and return its path.

    Variables already present in the process environment are left alone.
    """
    env_path = next((path for path in _env_file_search_order() if path.is_file()), None)
    if env_path is None:
        logger.debug("No .env file found for devicewatch")
        return None

    applied = 0
    for name, value in _read_env_assignments(env_path):
        if name not in os.environ:
            os.environ[name] = value
            applied += 1
    logger.bind(path=str(env_path), applied=applied).info("Loaded devicewatch .env file")
    return env_path


load_dotenv_settings()


@dataclass(frozen=True)
class Settings:
    """Typed accessors for configuration derived from the environment."""

    api_url: str
    verify_ssl: bool
    timeout: int
    console_device_id: str

    @classmethod
    def from_env(cls) -> Settings:
        api_url = os.environ.get("DEVICEWATCH_API_URL", DEFAULT_API_URL).strip()
        if not api_url:
            raise RuntimeError(
                "DEVICEWATCH_API_URL is empty; set it in .env or the environment."
            )

        verify_ssl_env = os.environ.get("DEVICEWATCH_VERIFY_SSL")
        verify_ssl = _parse_bool(verify_ssl_env) if verify_ssl_env is not None else True
        timeout = _parse_int("DEVICEWATCH_TIMEOUT", DEFAULT_TIMEOUT)
        device_id = (
            os.environ.get("DEVICEWATCH_DEVICE_ID", DEFAULT_CONSOLE_DEVICE_ID).strip()
            or DEFAULT_CONSOLE_DEVICE_ID
        )

        logger.bind(api_url=api_url, verify_ssl=verify_ssl, timeout=timeout).info(
            "Configuration loaded from environment"
        )

        return cls(
            api_url=api_url,
            verify_ssl=verify_ssl,
            timeout=timeout,
            console_device_id=device_id,
        )


settings = Settings.from_env()
