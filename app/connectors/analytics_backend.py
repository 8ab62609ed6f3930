"""
app/connectors/analytics_backend.py

Connector for the analytics edge function that serves App Store metrics.

The request never carries a traffic-source dimension: the backend always
returns every source for the range, and narrowing happens client-side in
``app.services.traffic_filter``.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Sequence

import requests

from app.config import AnalyticsBackendSettings, get_analytics_backend_settings
from app.connectors.base import BaseConnector
from app.domain.metrics import DateRange, FetchResult
from app.errors import FetchError, ShapeError, ValidationError
from app.logging_utils import log_event, timed_event
from app.normalization.response_normalizer import normalize_backend_response
from app.schemas.analytics_backend import AnalyticsBackendRequest, AnalyticsRequestDateRange

logger = logging.getLogger(__name__)


def validate_fetch_request(organization_id: str | None, date_range: DateRange | None) -> None:
    """
    Reject incomplete fetch requests before any I/O happens.

    Raises
    ------
    ValidationError
        When the organization id is blank, either date is missing or not
        ISO formatted, or ``start`` falls after ``end``.
    """

    if not organization_id or not str(organization_id).strip():
        raise ValidationError("organization_id is required.")
    if date_range is None or not date_range.start or not date_range.end:
        raise ValidationError("date_range.start and date_range.end are required.")
    try:
        start = date.fromisoformat(date_range.start)
        end = date.fromisoformat(date_range.end)
    except ValueError as exc:
        raise ValidationError(f"date_range must use YYYY-MM-DD dates: {exc}") from exc
    if start > end:
        raise ValidationError(
            f"date_range.start ({date_range.start}) is after date_range.end ({date_range.end})."
        )


def build_request_body(
    organization_id: str,
    date_range: DateRange,
    app_ids: Sequence[str] | None = None,
) -> dict[str, Any]:
    """
    Serialize the edge function request. Empty ``app_ids`` is omitted so the
    backend auto-discovers the organization's apps.
    """

    request = AnalyticsBackendRequest(
        org_id=organization_id,
        date_range=AnalyticsRequestDateRange(start=date_range.start, end=date_range.end),
        app_ids=list(app_ids) if app_ids else None,
    )
    return request.model_dump(exclude_none=True)


class AnalyticsBackendConnector(BaseConnector):
    """
    Fetches raw daily metric rows for an organization and date range.
    """

    def __init__(
        self,
        *,
        settings: AnalyticsBackendSettings | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._settings = settings or get_analytics_backend_settings()
        super().__init__(source="analytics_backend", http_settings=self._settings, session=session)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._settings.api_key:
            headers["Authorization"] = f"Bearer {self._settings.api_key}"
            headers["apikey"] = self._settings.api_key
        return headers

    def fetch(
        self,
        organization_id: str,
        date_range: DateRange,
        app_ids: Sequence[str] | None = None,
    ) -> FetchResult:
        """
        Fetch every traffic source for *organization_id* over *date_range*.

        Raises
        ------
        ValidationError
            Incomplete request; nothing was sent.
        ShapeError
            The response could not be unwrapped into a row array.
        FetchError
            Transport failure, non-2xx response or ``success: false``.
        """

        validate_fetch_request(organization_id, date_range)
        url = self._settings.function_url
        body = build_request_body(organization_id, date_range, app_ids)

        def _attempt() -> FetchResult:
            payload = self._post_json(url=url, body=body, headers=self._headers())
            return normalize_backend_response(
                payload,
                organization_id=organization_id,
                date_range=date_range,
                app_ids=app_ids,
            )

        with timed_event(
            logger,
            "analytics_fetch",
            level=logging.INFO,
            organization_id=organization_id,
            start=date_range.start,
            end=date_range.end,
            app_ids=len(app_ids or ()),
        ) as extra:
            try:
                result = self._call_with_retry(_attempt, url=url)
            except ShapeError as exc:
                extra["outcome"] = "shape_error"
                log_event(
                    logger,
                    logging.ERROR,
                    "analytics_shape_error",
                    organization_id=organization_id,
                    error=exc.message,
                )
                raise
            except FetchError as exc:
                extra["outcome"] = "fetch_error"
                log_event(
                    logger,
                    logging.ERROR,
                    "analytics_fetch_error",
                    organization_id=organization_id,
                    status_code=exc.status_code,
                    retriable=exc.retriable,
                    error=exc.message,
                )
                raise
            extra["outcome"] = "ok"
            extra["rows"] = len(result.rows)
            extra["request_id"] = result.metadata.request_id

        return result
