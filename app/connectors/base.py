"""
app/connectors/base.py

Base connector abstraction and shared HTTP mechanics.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, TypeVar

import requests

from app.config import AnalyticsBackendSettings
from app.errors import FetchError, ShapeError
from app.normalization.response_normalizer import is_not_found_message

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

T = TypeVar("T")


def _upstream_message(response: requests.Response | None) -> str:
    """
    Best-effort extraction of the service-reported error text.
    """

    if response is None:
        return ""
    try:
        body = response.json()
    except ValueError:
        return (response.text or "").strip()[:500]
    if isinstance(body, dict):
        for key in ("error", "message", "msg"):
            value = body.get(key)
            if value:
                return str(value)
    return ""


class BaseConnector(ABC):
    """
    Connector interface with shared request/retry mechanics.

    Every operation runs through :meth:`_call_with_retry`: at most
    ``max_retries`` further attempts after the first, waiting
    ``backoff_initial * multiplier**attempt`` seconds capped at
    ``backoff_max_seconds``. ``ShapeError`` and non-retriable
    ``FetchError`` (4xx, not-found) propagate immediately.
    """

    source: str

    def __init__(
        self,
        *,
        source: str,
        http_settings: AnalyticsBackendSettings,
        session: requests.Session | None = None,
    ) -> None:
        self.source = source
        self._session = session or requests.Session()
        self._timeout_seconds = http_settings.timeout_seconds
        self._max_retries = http_settings.max_retries
        self._backoff_initial_seconds = http_settings.backoff_initial_seconds
        self._backoff_multiplier = http_settings.backoff_multiplier
        self._backoff_max_seconds = http_settings.backoff_max_seconds

    @abstractmethod
    def fetch(self, *args: Any, **kwargs: Any) -> Any:
        """
        Fetch and normalize data from the backing service.
        """

    def _backoff_seconds(self, attempt: int) -> float:
        return min(
            self._backoff_max_seconds,
            self._backoff_initial_seconds * (self._backoff_multiplier**attempt),
        )

    def _sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    def _post_json(
        self,
        *,
        url: str,
        body: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Single POST attempt returning parsed JSON.
        """

        response = self._send(method="POST", url=url, json_body=body, headers=headers)
        try:
            return response.json()
        except ValueError as exc:
            raise ShapeError(f"{self.source}: response was not valid JSON.") from exc

    def _send(
        self,
        *,
        method: str,
        url: str,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        """
        Execute one HTTP request, translating failures into FetchError.
        """

        try:
            response = self._session.request(
                method=method,
                url=url,
                json=json_body,
                headers=headers,
                timeout=self._timeout_seconds,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise FetchError(f"{self.source}: {exc}", retriable=True) from exc

        if response.status_code >= 400:
            upstream = _upstream_message(response) or f"HTTP status code: {response.status_code}"
            raise FetchError(
                f"{self.source}: {upstream}",
                status_code=response.status_code,
                retriable=(
                    response.status_code in RETRYABLE_STATUS_CODES
                    and not is_not_found_message(upstream)
                ),
            )
        return response

    def _call_with_retry(self, operation: Callable[[], T], *, url: str) -> T:
        """
        Run *operation* with bounded exponential backoff.
        """

        for attempt in range(self._max_retries + 1):
            try:
                return operation()
            except ShapeError:
                raise
            except FetchError as exc:
                if not exc.retriable or attempt >= self._max_retries:
                    logger.error(
                        "Connector request failed source=%s status=%s attempts=%s url=%s error=%s",
                        self.source,
                        exc.status_code,
                        attempt + 1,
                        url,
                        exc.message,
                    )
                    raise

                backoff_seconds = self._backoff_seconds(attempt)
                logger.warning(
                    "Connector request retry source=%s attempt=%s/%s wait_seconds=%.2f url=%s",
                    self.source,
                    attempt + 1,
                    self._max_retries,
                    backoff_seconds,
                    url,
                )
                self._sleep(backoff_seconds)

        raise FetchError(f"{self.source}: request was not attempted.", retriable=False)
