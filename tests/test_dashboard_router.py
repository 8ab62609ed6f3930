"""
tests/test_dashboard_router.py

HTTP tests for the dashboard endpoints through FastAPI's TestClient.

The application is built with ``create_app(service=...)`` around a fake
connector, so no analytics backend is contacted.

Coverage
--------
- POST /dashboard/load success, 400 on invalid range, 422 on missing
  fields, 502 on backend and shape errors
- GET /dashboard/view unfiltered, filtered and before hydration
- GET /dashboard/intelligence shape
- GET /health
"""

from __future__ import annotations

from typing import Iterator, Sequence

import pytest
from fastapi.testclient import TestClient

from app.domain.metrics import DateRange, FetchMetadata, FetchResult, RawMetricRow
from app.errors import FetchError, ShapeError
from app.main import create_app
from app.scheduler.dispatcher import IntelligenceDispatcher
from app.services.dashboard_service import DashboardService
from app.services.data_store import DashboardDataStore

SOURCES = ("App_Store_Search", "App_Store_Browse", "Web_Referrer")

LOAD_BODY = {"organization_id": "org-1", "start": "2024-01-01", "end": "2024-01-07"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


class _FakeConnector:
    def __init__(self) -> None:
        self.error: Exception | None = None

    def fetch(self, organization_id: str, date_range: DateRange, app_ids: Sequence[str] | None = None) -> FetchResult:
        if self.error is not None:
            raise self.error
        rows = []
        for day in range(1, date_range.days + 1):
            stamp = f"2024-01-{day:02d}"
            rows.append(RawMetricRow(stamp, "app-1", "App_Store_Search", 1000, 50, 200))
            rows.append(RawMetricRow(stamp, "app-1", "App_Store_Browse", 500, 20, 100))
        return FetchResult(
            rows=tuple(rows),
            metadata=FetchMetadata(
                request_id=f"req-{organization_id}",
                timestamp="2024-01-08T00:00:00Z",
                organization_id=organization_id,
                date_range=date_range,
                available_traffic_sources=SOURCES,
                data_source="bigquery",
            ),
        )


@pytest.fixture()
def connector() -> _FakeConnector:
    return _FakeConnector()


@pytest.fixture()
def client(connector: _FakeConnector) -> Iterator[TestClient]:
    service = DashboardService(
        connector=connector,  # type: ignore[arg-type]
        store=DashboardDataStore(),
        dispatcher=IntelligenceDispatcher(debounce_seconds=0.0),
        comparison_policy="shift",
    )
    with TestClient(create_app(service=service)) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# POST /dashboard/load
# ---------------------------------------------------------------------------


class TestLoadEndpoint:
    def test_success(self, client: TestClient) -> None:
        response = client.post("/dashboard/load", json=LOAD_BODY)
        assert response.status_code == 200
        body = response.json()
        assert body["applied"] is True
        assert body["hydrated"] is True
        assert body["row_count"] == 14
        assert body["available_traffic_sources"] == list(SOURCES)

    def test_inverted_range_is_400(self, client: TestClient) -> None:
        response = client.post(
            "/dashboard/load",
            json={"organization_id": "org-1", "start": "2024-01-07", "end": "2024-01-01"},
        )
        assert response.status_code == 400

    def test_missing_fields_is_422(self, client: TestClient) -> None:
        response = client.post("/dashboard/load", json={"start": "2024-01-01"})
        assert response.status_code == 422

    def test_backend_error_is_502(self, client: TestClient, connector: _FakeConnector) -> None:
        connector.error = FetchError("analytics_backend: busy", status_code=503)
        response = client.post("/dashboard/load", json=LOAD_BODY)
        assert response.status_code == 502
        assert response.json()["detail"].startswith("Analytics backend error")

    def test_shape_error_is_502(self, client: TestClient, connector: _FakeConnector) -> None:
        connector.error = ShapeError("No data in response from analytics service.")
        assert client.post("/dashboard/load", json=LOAD_BODY).status_code == 502


# ---------------------------------------------------------------------------
# GET /dashboard/view
# ---------------------------------------------------------------------------


class TestViewEndpoint:
    def test_before_hydration(self, client: TestClient) -> None:
        response = client.get("/dashboard/view")
        assert response.status_code == 200
        body = response.json()
        assert body["summary"]["impressions"]["value"] == 0
        assert body["available_traffic_sources"] == []

    def test_unfiltered(self, client: TestClient) -> None:
        client.post("/dashboard/load", json=LOAD_BODY)
        body = client.get("/dashboard/view").json()
        assert body["summary"]["impressions"]["value"] == 10500
        assert len(body["time_series"]) == 7
        assert body["two_path"]["search"]["impressions"] == 7000
        assert body["derived_kpis"]["search_browse_ratio"] == pytest.approx(2.0)
        assert body["request_id"] == "req-org-1"
        assert body["data_source"] == "bigquery"

    def test_filtered(self, client: TestClient) -> None:
        client.post("/dashboard/load", json=LOAD_BODY)
        body = client.get("/dashboard/view", params={"traffic_source": "App_Store_Browse"}).json()
        assert body["summary"]["impressions"]["value"] == 3500
        assert body["selected_traffic_sources"] == ["App_Store_Browse"]
        assert body["available_traffic_sources"] == list(SOURCES)

    def test_selection_persists(self, client: TestClient) -> None:
        client.post("/dashboard/load", json=LOAD_BODY)
        client.get("/dashboard/view", params={"traffic_source": "App_Store_Browse"})
        body = client.get("/dashboard/view").json()
        assert body["selected_traffic_sources"] == ["App_Store_Browse"]


# ---------------------------------------------------------------------------
# GET /dashboard/intelligence and /health
# ---------------------------------------------------------------------------


class TestIntelligenceEndpoint:
    def test_shape(self, client: TestClient) -> None:
        client.post("/dashboard/load", json=LOAD_BODY)
        body = client.get("/dashboard/intelligence").json()
        assert set(body) == {"result", "is_computing", "is_pending", "is_current", "progress", "last_error"}
        assert set(body["progress"]) == {"step", "fraction"}

    def test_result_after_computation(self, client: TestClient) -> None:
        client.post("/dashboard/load", json=LOAD_BODY)
        service: DashboardService = client.app.state.dashboard_service
        assert service.dispatcher.wait(5.0)

        body = client.get("/dashboard/intelligence").json()
        assert body["is_current"] is True
        assert body["result"]["stability"]["data_points"] == 7


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        body = client.get("/health").json()
        assert body == {"status": "ok", "hydrated": False, "dispatcher_running": True}
