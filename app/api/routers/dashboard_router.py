"""
app/api/routers/dashboard_router.py

Dashboard endpoints.

POST /dashboard/load          fetch and hydrate one organization / date range
GET  /dashboard/view          aggregates for a traffic-source selection (no fetch)
GET  /dashboard/intelligence  latest background intelligence result and progress
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.dependencies import get_dashboard_service
from app.domain.metrics import DateRange
from app.errors import FetchError, ValidationError
from app.schemas.dashboard import (
    ComputationProgressResponse,
    DashboardLoadRequest,
    DashboardLoadResponse,
    DashboardViewResponse,
    IntelligenceResponse,
    MetricValueResponse,
    SummaryResponse,
    TwoPathResponse,
)
from app.services.dashboard_service import DashboardService, DashboardView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


def _view_response(view: DashboardView) -> DashboardViewResponse:
    summary = view.summary
    return DashboardViewResponse(
        summary=SummaryResponse(
            impressions=MetricValueResponse(value=summary.impressions.value, delta=summary.impressions.delta),
            downloads=MetricValueResponse(value=summary.downloads.value, delta=summary.downloads.delta),
            product_page_views=MetricValueResponse(
                value=summary.product_page_views.value,
                delta=summary.product_page_views.delta,
            ),
            conversion_rate=MetricValueResponse(
                value=summary.conversion_rate.value,
                delta=summary.conversion_rate.delta,
            ),
        ),
        time_series=[point.as_dict() for point in view.time_series],
        traffic_sources=[item.as_dict() for item in view.traffic_sources],
        two_path=TwoPathResponse(
            search=view.two_path.search.as_dict(),
            browse=view.two_path.browse.as_dict(),
        ),
        derived_kpis=view.derived.as_dict(),
        warnings=view.warnings,
        selected_traffic_sources=list(view.selected_traffic_sources),
        available_traffic_sources=list(view.available_traffic_sources),
        request_id=view.metadata.request_id if view.metadata else None,
        data_source=view.metadata.data_source if view.metadata else None,
    )


@router.post(
    "/load",
    response_model=DashboardLoadResponse,
    status_code=status.HTTP_200_OK,
)
def load_dashboard(
    body: DashboardLoadRequest,
    service: DashboardService = Depends(get_dashboard_service),
) -> DashboardLoadResponse:
    """
    Fetch every traffic source for the range and hydrate the store.

    Raises HTTP 400 for an incomplete request and HTTP 502 when the
    analytics backend fails or returns an unrecognised shape.
    """

    try:
        outcome = service.load(
            body.organization_id,
            DateRange(start=body.start, end=body.end),
            body.app_ids or None,
            compare=body.compare,
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except FetchError as exc:
        # ShapeError is a FetchError subclass.
        logger.warning(
            "Dashboard load failed organization_id=%r kind=%s error=%s",
            body.organization_id,
            type(exc).__name__,
            exc,
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Analytics backend error: {exc}",
        ) from exc

    return DashboardLoadResponse(
        request_key=outcome.request_key,
        applied=outcome.applied,
        hydrated=outcome.hydrated,
        row_count=outcome.row_count,
        available_traffic_sources=list(service.store.available_traffic_sources),
    )


@router.get("/view", response_model=DashboardViewResponse)
def get_dashboard_view(
    traffic_source: list[str] | None = Query(default=None),
    service: DashboardService = Depends(get_dashboard_service),
) -> DashboardViewResponse:
    """
    Apply the traffic-source selection (when given) and return aggregates.

    An omitted ``traffic_source`` keeps the current selection; an empty
    value clears it.
    """

    if traffic_source is None:
        view = service.view()
    else:
        view = service.select_traffic_sources([source for source in traffic_source if source])
    return _view_response(view)


@router.get("/intelligence", response_model=IntelligenceResponse)
def get_dashboard_intelligence(
    service: DashboardService = Depends(get_dashboard_service),
) -> IntelligenceResponse:
    status_snapshot = service.intelligence()
    return IntelligenceResponse(
        result=status_snapshot.result.as_dict() if status_snapshot.result else None,
        is_computing=status_snapshot.is_computing,
        is_pending=status_snapshot.is_pending,
        is_current=status_snapshot.is_current,
        progress=ComputationProgressResponse(
            step=status_snapshot.progress.step,
            fraction=status_snapshot.progress.fraction,
        ),
        last_error=status_snapshot.last_error,
    )
