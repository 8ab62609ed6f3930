"""
app/config.py

Application-level configuration helpers.

All settings are read from environment variables (after loading optional
``.env`` / ``.env.local`` files once) into frozen dataclasses exposed
through cached getters.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Callable, TypeVar

_COMPARISON_POLICIES = {"shift", "none"}

T = TypeVar("T")


def load_env_files() -> None:
    """
    Load KEY=VALUE pairs from `.env` then `.env.local` in the project root.

    Variables already present in the process environment win.
    """

    project_root = Path(__file__).resolve().parents[1]
    for env_path in (project_root / ".env", project_root / ".env.local"):
        if not env_path.is_file():
            continue
        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = (part.strip() for part in line.split("=", 1))
            if key:
                os.environ.setdefault(key, value.strip("\"'"))


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    load_env_files()


def _env(name: str) -> str | None:
    """
    Stripped value of *name*, or ``None`` when unset or blank.
    """

    _load_env_once()
    value = (os.getenv(name) or "").strip()
    return value or None


def _env_number(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError:
        return default


def _get_int_env(name: str, default: int) -> int:
    return _env_number(name, default, int)


def _get_float_env(name: str, default: float) -> float:
    return _env_number(name, default, float)


def _get_str_env(name: str, default: str) -> str:
    return _env(name) or default


@dataclass(frozen=True)
class AnalyticsBackendSettings:
    """
    Connection and retry settings for the analytics edge function.

    ``max_retries`` counts attempts after the first one; the backend
    contract allows a single bounded retry.
    """

    base_url: str = "http://localhost:54321"
    function_name: str = "bigquery-aso-data"
    api_key: str | None = None
    timeout_seconds: float = 30.0
    max_retries: int = 1
    backoff_initial_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    backoff_max_seconds: float = 4.0

    @property
    def function_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/functions/v1/{self.function_name}"


@dataclass(frozen=True)
class DispatcherSettings:
    """
    Debounce settings for background intelligence computation.
    """

    debounce_seconds: float = 0.1


@dataclass(frozen=True)
class ComparisonSettings:
    """
    Previous-period comparison policy.

    ``shift`` moves the selected range back by its own length;
    ``none`` disables deltas entirely.
    """

    policy: str = "shift"


@lru_cache(maxsize=1)
def get_analytics_backend_settings() -> AnalyticsBackendSettings:
    """
    Return analytics backend settings from environment variables.
    """

    return AnalyticsBackendSettings(
        base_url=_get_str_env("ANALYTICS_BACKEND_URL", "http://localhost:54321"),
        function_name=_get_str_env("ANALYTICS_FUNCTION_NAME", "bigquery-aso-data"),
        api_key=_env("ANALYTICS_API_KEY"),
        timeout_seconds=max(1.0, _get_float_env("ANALYTICS_HTTP_TIMEOUT_SECONDS", 30.0)),
        max_retries=min(1, max(0, _get_int_env("ANALYTICS_HTTP_MAX_RETRIES", 1))),
        backoff_initial_seconds=max(0.0, _get_float_env("ANALYTICS_HTTP_BACKOFF_INITIAL_SECONDS", 0.5)),
        backoff_multiplier=max(1.0, _get_float_env("ANALYTICS_HTTP_BACKOFF_MULTIPLIER", 2.0)),
        backoff_max_seconds=max(0.0, _get_float_env("ANALYTICS_HTTP_BACKOFF_MAX_SECONDS", 4.0)),
    )


@lru_cache(maxsize=1)
def get_dispatcher_settings() -> DispatcherSettings:
    """
    Return dispatcher debounce settings from environment variables.
    """

    debounce_ms = max(0, _get_int_env("INTELLIGENCE_DEBOUNCE_MS", 100))
    return DispatcherSettings(debounce_seconds=debounce_ms / 1000.0)


@lru_cache(maxsize=1)
def get_comparison_settings() -> ComparisonSettings:
    """
    Return the previous-period comparison policy.

    Unknown values fall back to ``shift``.
    """

    policy = _get_str_env("COMPARISON_PERIOD_POLICY", "shift").lower()
    if policy not in _COMPARISON_POLICIES:
        policy = "shift"
    return ComparisonSettings(policy=policy)


def get_log_level() -> str:
    """
    Return the configured root log level name.
    """

    return _get_str_env("LOG_LEVEL", "INFO").upper()
