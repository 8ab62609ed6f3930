"""
Schemas for the dashboard load, view and intelligence endpoints.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator


class DashboardLoadRequest(BaseModel):
    organization_id: str = Field(min_length=1)
    start: str = Field(min_length=1, description="Inclusive start date, YYYY-MM-DD.")
    end: str = Field(min_length=1, description="Inclusive end date, YYYY-MM-DD.")
    app_ids: list[str] = Field(default_factory=list)
    compare: bool = False

    @model_validator(mode="after")
    def _strip_app_ids(self) -> "DashboardLoadRequest":
        self.app_ids = [app_id.strip() for app_id in self.app_ids if app_id and app_id.strip()]
        return self


class DashboardLoadResponse(BaseModel):
    request_key: int
    applied: bool
    hydrated: bool
    row_count: int
    available_traffic_sources: list[str] = Field(default_factory=list)


class MetricValueResponse(BaseModel):
    value: float
    delta: float


class SummaryResponse(BaseModel):
    impressions: MetricValueResponse
    downloads: MetricValueResponse
    product_page_views: MetricValueResponse
    conversion_rate: MetricValueResponse


class TwoPathResponse(BaseModel):
    search: dict[str, float]
    browse: dict[str, float]


class DashboardViewResponse(BaseModel):
    summary: SummaryResponse
    time_series: list[dict[str, Any]] = Field(default_factory=list)
    traffic_sources: list[dict[str, Any]] = Field(default_factory=list)
    two_path: TwoPathResponse
    derived_kpis: dict[str, float]
    warnings: list[str] = Field(default_factory=list)
    selected_traffic_sources: list[str] = Field(default_factory=list)
    available_traffic_sources: list[str] = Field(default_factory=list)
    request_id: str | None = None
    data_source: str | None = None


class ComputationProgressResponse(BaseModel):
    step: str
    fraction: float


class IntelligenceResponse(BaseModel):
    result: dict[str, Any] | None = None
    is_computing: bool
    is_pending: bool
    is_current: bool
    progress: ComputationProgressResponse
    last_error: str | None = None


class HealthResponse(BaseModel):
    status: str
    hydrated: bool
    dispatcher_running: bool
