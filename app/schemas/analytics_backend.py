"""
app/schemas/analytics_backend.py

Request and metadata schemas for the analytics edge function contract.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class AnalyticsRequestDateRange(BaseModel):
    start: str = Field(min_length=1)
    end: str = Field(min_length=1)


class AnalyticsBackendRequest(BaseModel):
    """
    Body posted to the analytics edge function.

    Traffic sources are intentionally absent: the backend must return all
    of them so client-side filtering never loses picker options.
    """

    model_config = ConfigDict(extra="forbid")

    org_id: str = Field(min_length=1)
    date_range: AnalyticsRequestDateRange
    app_ids: list[str] | None = None
    metrics: list[str] = Field(default_factory=lambda: ["impressions", "installs", "cvr"])
    granularity: str = "daily"


class AnalyticsBackendMeta(BaseModel):
    """
    Metadata block of a backend response.

    Unknown keys are kept, malformed values fall back to defaults; only
    ``available_traffic_sources`` feeds computation, everything else is
    diagnostic.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    request_id: str | None = None
    timestamp: str | None = None
    available_traffic_sources: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("available_traffic_sources", "availableTrafficSources"),
    )
    app_count: int = 0
    app_ids: list[str] = Field(default_factory=list)
    row_count: int | None = Field(
        default=None,
        validation_alias=AliasChoices("raw_rows", "row_count", "rowCount"),
    )
    query_duration_ms: float = Field(
        default=0.0,
        validation_alias=AliasChoices("query_duration_ms", "executionTimeMs"),
    )
    data_source: str | None = None
    period_comparison: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("period_comparison", "periodComparison"),
    )

    @field_validator("available_traffic_sources", "app_ids", mode="before")
    @classmethod
    def _as_string_list(cls, value: Any) -> list[str]:
        if not isinstance(value, (list, tuple)):
            return []
        return [str(item) for item in value if item is not None and str(item).strip()]

    @field_validator("app_count", mode="before")
    @classmethod
    def _as_count(cls, value: Any) -> int:
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            return 0

    @field_validator("row_count", mode="before")
    @classmethod
    def _as_optional_count(cls, value: Any) -> int | None:
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            return None

    @field_validator("query_duration_ms", mode="before")
    @classmethod
    def _as_duration(cls, value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @field_validator("request_id", "timestamp", "data_source", mode="before")
    @classmethod
    def _as_optional_string(cls, value: Any) -> Any:
        if value is None:
            return value
        return str(value)

    @field_validator("period_comparison", mode="before")
    @classmethod
    def _as_optional_mapping(cls, value: Any) -> dict[str, Any] | None:
        return value if isinstance(value, dict) else None
