"""
app/normalization/response_normalizer.py

Normalizes analytics backend envelopes into FetchResult objects.

Accepted shapes
---------------
1. Direct::

       {"success": true?, "data": [row, ...], "meta": {...}, "scope": {...}}

2. Wrapped (the function gateway nests the direct body under ``data``)::

       {"success": true, "data": {"data": [row, ...], "meta": {...}, "scope": {...}}}

Anything else raises :class:`ShapeError`. An explicit ``success: false``
raises :class:`FetchError` with the service-reported message.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Sequence

from pydantic import ValidationError as PydanticValidationError

from app.domain.metrics import DateRange, FetchMetadata, FetchResult, PeriodTotals, RawMetricRow
from app.errors import FetchError, ShapeError
from app.logging_utils import log_event
from app.schemas.analytics_backend import AnalyticsBackendMeta

logger = logging.getLogger(__name__)

_NOT_FOUND_MARKERS = ("not found", "not_found", "no such")


@dataclass(frozen=True)
class UnwrappedResponse:
    rows: list[Any]
    meta: Mapping[str, Any]
    scope: Mapping[str, Any]
    wrapped: bool


def is_not_found_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _NOT_FOUND_MARKERS)


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def unwrap_envelope(payload: Any) -> UnwrappedResponse:
    """
    Detect the envelope shape and return its row array, meta and scope.
    """

    if not isinstance(payload, Mapping):
        raise ShapeError(f"Expected a JSON object from analytics service, got {type(payload).__name__}.")

    if payload.get("success") is False:
        message = str(payload.get("error") or "Analytics service returned an error")
        raise FetchError(message, retriable=not is_not_found_message(message))

    if "data" not in payload or payload.get("data") is None:
        raise ShapeError("No data in response from analytics service.")

    data = payload["data"]
    if isinstance(data, list):
        return UnwrappedResponse(
            rows=data,
            meta=_as_mapping(payload.get("meta")),
            scope=_as_mapping(payload.get("scope")),
            wrapped=False,
        )

    if isinstance(data, Mapping):
        inner = data.get("data")
        if isinstance(inner, list):
            return UnwrappedResponse(
                rows=inner,
                meta=_as_mapping(data.get("meta") or payload.get("meta")),
                scope=_as_mapping(data.get("scope") or payload.get("scope")),
                wrapped=True,
            )
        raise ShapeError("Invalid response structure from analytics service - cannot find data array.")

    raise ShapeError("Invalid response structure from analytics service - expected data array.")


def _parse_rows(raw_rows: Sequence[Any]) -> tuple[RawMetricRow, ...]:
    rows: list[RawMetricRow] = []
    for index, raw in enumerate(raw_rows):
        if not isinstance(raw, Mapping):
            raise ShapeError(f"Row {index} is not an object ({type(raw).__name__}).")
        rows.append(RawMetricRow.from_mapping(raw))
    return tuple(rows)


def merge_traffic_sources(declared: Iterable[str], rows: Iterable[RawMetricRow]) -> tuple[str, ...]:
    """
    Declared sources in backend order, then any observed-only sources sorted.

    Guarantees the result is a superset of every source present in *rows*.
    """

    merged = list(dict.fromkeys(declared))
    known = set(merged)
    observed = sorted({row.traffic_source for row in rows} - known)
    return tuple(merged + observed)


def _previous_totals(period_comparison: Mapping[str, Any] | None) -> PeriodTotals | None:
    if not period_comparison:
        return None
    previous = period_comparison.get("previous")
    if not isinstance(previous, Mapping):
        return None
    return PeriodTotals.from_mapping(previous)


def normalize_backend_response(
    payload: Any,
    *,
    organization_id: str,
    date_range: DateRange,
    app_ids: Sequence[str] | None = None,
) -> FetchResult:
    """
    Turn a raw backend payload into an immutable FetchResult.

    Missing ``request_id`` / ``timestamp`` are generated so every
    successful fetch carries a distinct identity.
    """

    unwrapped = unwrap_envelope(payload)
    rows = _parse_rows(unwrapped.rows)

    try:
        meta = AnalyticsBackendMeta.model_validate(dict(unwrapped.meta))
    except PydanticValidationError as exc:
        raise ShapeError(f"Malformed meta block in analytics response: {exc}") from exc

    metadata = FetchMetadata(
        request_id=meta.request_id or uuid.uuid4().hex,
        timestamp=meta.timestamp or datetime.now(tz=timezone.utc).isoformat(),
        organization_id=organization_id,
        date_range=date_range,
        available_traffic_sources=merge_traffic_sources(meta.available_traffic_sources, rows),
        app_ids=tuple(meta.app_ids or (app_ids or ())),
        app_count=meta.app_count,
        row_count=meta.row_count if meta.row_count is not None else len(rows),
        query_duration_ms=meta.query_duration_ms,
        data_source=meta.data_source or "",
        previous_totals=_previous_totals(meta.period_comparison),
    )

    log_event(
        logger,
        logging.INFO,
        "analytics_response_normalized",
        organization_id=organization_id,
        wrapped=unwrapped.wrapped,
        rows=len(rows),
        reported_rows=metadata.row_count,
        app_count=metadata.app_count,
        query_duration_ms=metadata.query_duration_ms,
        data_source=metadata.data_source,
        traffic_sources=len(metadata.available_traffic_sources),
    )
    return FetchResult(rows=rows, metadata=metadata)
