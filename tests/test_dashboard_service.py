"""
tests/test_dashboard_service.py

Pytest tests for DashboardService: fetch, hydration, client-side
filtering, comparison periods and the intelligence hand-off.

The connector is a fake returning scripted FetchResults; no network.

Coverage
--------
- Load validates, fetches once and hydrates the store
- Selection changes never fetch and never shrink the picker
- Stale responses from superseded loads are discarded
- Comparison via backend totals (unfiltered only) or a shifted-window fetch
- Comparison disabled with the ``none`` policy
- Intelligence computed in the background for the current selection
- A reload that only adds comparison data recomputes intelligence
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Callable, Sequence

import pytest

from app.domain.metrics import DateRange, FetchMetadata, FetchResult, PeriodTotals, RawMetricRow
from app.errors import FetchError, ValidationError
from app.scheduler.dispatcher import IntelligenceDispatcher
from app.services.dashboard_service import DashboardService, build_view, previous_period
from app.services.data_store import DashboardDataStore

SOURCES = ("App_Store_Search", "App_Store_Browse", "Web_Referrer")
CURRENT = DateRange("2024-01-08", "2024-01-17")
PREVIOUS = DateRange("2023-12-29", "2024-01-07")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def _result(
    request_id: str,
    date_range: DateRange = CURRENT,
    *,
    scale: int = 1,
    browse_scale: int | None = None,
    previous_totals: PeriodTotals | None = None,
) -> FetchResult:
    browse = scale if browse_scale is None else browse_scale
    first_day = date.fromisoformat(date_range.start)
    rows = []
    for day in range(date_range.days):
        stamp = (first_day + timedelta(days=day)).isoformat()
        rows.extend(
            [
                RawMetricRow(stamp, "app-1", "App_Store_Search", 1000 * scale, 50 * scale, 200 * scale),
                RawMetricRow(stamp, "app-1", "App_Store_Browse", 500 * browse, 20 * browse, 100 * browse),
                RawMetricRow(stamp, "app-1", "Web_Referrer", 0, 10 * scale, 30 * scale),
            ]
        )
    return FetchResult(
        rows=tuple(rows),
        metadata=FetchMetadata(
            request_id=request_id,
            timestamp="2024-01-18T00:00:00Z",
            organization_id="org-1",
            date_range=date_range,
            available_traffic_sources=SOURCES,
            previous_totals=previous_totals,
        ),
    )


class _FakeConnector:
    def __init__(self, *results: FetchResult | Exception) -> None:
        self._results = list(results)
        self.calls: list[tuple[str, DateRange, Sequence[str] | None]] = []
        self.before_return: Callable[[], None] | None = None

    def fetch(self, organization_id: str, date_range: DateRange, app_ids: Sequence[str] | None = None) -> FetchResult:
        self.calls.append((organization_id, date_range, app_ids))
        outcome = self._results.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        hook, self.before_return = self.before_return, None
        if hook is not None:
            hook()
        return outcome


def _service(connector: _FakeConnector, **kwargs) -> DashboardService:
    return DashboardService(
        connector=connector,  # type: ignore[arg-type]
        store=DashboardDataStore(),
        dispatcher=IntelligenceDispatcher(debounce_seconds=0.0),
        comparison_policy=kwargs.pop("comparison_policy", "shift"),
    )


# ---------------------------------------------------------------------------
# previous_period
# ---------------------------------------------------------------------------


class TestPreviousPeriod:
    def test_shift(self) -> None:
        assert previous_period(CURRENT, "shift") == PREVIOUS

    def test_none(self) -> None:
        assert previous_period(CURRENT, "none") is None

    def test_unknown_policy(self) -> None:
        with pytest.raises(ValueError):
            previous_period(CURRENT, "yoy")

    def test_service_rejects_unknown_policy(self) -> None:
        with pytest.raises(ValueError):
            _service(_FakeConnector(), comparison_policy="yoy")


# ---------------------------------------------------------------------------
# Load and hydration
# ---------------------------------------------------------------------------


class TestLoad:
    def test_load_hydrates_store(self) -> None:
        connector = _FakeConnector(_result("req-1"))
        service = _service(connector)

        outcome = service.load("org-1", CURRENT)

        assert outcome.applied and outcome.hydrated
        assert outcome.row_count == 30
        assert service.store.is_hydrated
        assert service.store.available_traffic_sources == SOURCES
        assert len(connector.calls) == 1

    def test_validation_happens_before_fetch(self) -> None:
        connector = _FakeConnector()
        service = _service(connector)
        with pytest.raises(ValidationError):
            service.load("org-1", DateRange("2024-01-10", "2024-01-01"))
        assert connector.calls == []

    def test_fetch_error_leaves_store_untouched(self) -> None:
        connector = _FakeConnector(_result("req-1"), FetchError("boom", status_code=503))
        service = _service(connector)
        service.load("org-1", CURRENT)

        with pytest.raises(FetchError):
            service.load("org-1", CURRENT)
        assert service.store.identity == ("req-1", "2024-01-18T00:00:00Z")

    def test_same_payload_hydrates_once(self) -> None:
        connector = _FakeConnector(_result("req-1"), _result("req-1"))
        service = _service(connector)
        service.load("org-1", CURRENT)

        outcome = service.load("org-1", CURRENT)

        assert outcome.applied
        assert not outcome.hydrated
        assert service.store.hydration_count == 1

    def test_stale_response_is_discarded(self) -> None:
        connector = _FakeConnector(_result("req-old"), _result("req-new", scale=2))
        service = _service(connector)
        connector.before_return = lambda: service.load("org-1", CURRENT)

        outcome = service.load("org-1", CURRENT)

        assert not outcome.applied
        assert service.store.metadata.request_id == "req-new"
        assert service.view().summary.impressions.value == 30000


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestSelection:
    @pytest.fixture()
    def service(self) -> DashboardService:
        service = _service(_FakeConnector(_result("req-1")))
        service.load("org-1", CURRENT)
        return service

    def test_unfiltered_view(self, service: DashboardService) -> None:
        view = service.view()
        assert view.summary.impressions.value == 15000
        assert view.summary.downloads.value == 800
        assert len(view.time_series) == 10
        assert view.time_series[0].date == "2024-01-08"
        assert view.time_series[-1].date == "2024-01-17"
        assert view.two_path.search.impressions == 10000

    def test_selection_filters_without_fetching(self, service: DashboardService) -> None:
        view = service.select_traffic_sources(["App_Store_Search"])

        assert view.summary.impressions.value == 10000
        assert view.summary.downloads.value == 500
        assert view.two_path.browse.impressions == 0
        assert view.available_traffic_sources == SOURCES
        assert service.selected_traffic_sources == ("App_Store_Search",)
        assert len(service._connector.calls) == 1

    def test_breakdown_follows_selection(self, service: DashboardService) -> None:
        view = service.select_traffic_sources(["Web_Referrer", "App_Store_Browse"])
        assert [item.traffic_source for item in view.traffic_sources] == ["Web_Referrer", "App_Store_Browse"]

    def test_clearing_selection(self, service: DashboardService) -> None:
        service.select_traffic_sources(["App_Store_Search"])
        view = service.select_traffic_sources([])
        assert view.summary.impressions.value == 15000
        assert view.selected_traffic_sources == ()

    def test_explicit_sources_do_not_change_selection(self, service: DashboardService) -> None:
        view = service.view(["App_Store_Browse"])
        assert view.summary.impressions.value == 5000
        assert service.selected_traffic_sources == ()

    def test_empty_store_view(self) -> None:
        view = build_view(None)
        assert view.summary.impressions.value == 0
        assert view.time_series == []
        assert view.traffic_sources == []
        assert view.metadata is None


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


class TestComparison:
    def test_backend_totals_apply_unfiltered(self) -> None:
        totals = PeriodTotals(impressions=7500, downloads=400, product_page_views=1650)
        service = _service(_FakeConnector(_result("req-1", previous_totals=totals)))
        service.load("org-1", CURRENT)

        assert service.view().summary.impressions.delta == pytest.approx(100.0)
        assert service.view(["App_Store_Search"]).summary.impressions.delta == 0.0

    def test_compare_fetches_shifted_window(self) -> None:
        connector = _FakeConnector(_result("req-1", scale=2), _result("req-prev", PREVIOUS))
        service = _service(connector)

        service.load("org-1", CURRENT, compare=True)

        assert [call[1] for call in connector.calls] == [CURRENT, PREVIOUS]
        view = service.view()
        assert view.summary.impressions.delta == pytest.approx(100.0)
        assert view.previous_two_path is not None
        filtered = service.view(["App_Store_Search"])
        assert filtered.summary.downloads.delta == pytest.approx(100.0)

    def test_compare_skipped_when_backend_supplies_totals(self) -> None:
        totals = PeriodTotals(impressions=7500, downloads=400, product_page_views=1650)
        connector = _FakeConnector(_result("req-1", previous_totals=totals))
        service = _service(connector)

        service.load("org-1", CURRENT, compare=True)

        assert len(connector.calls) == 1

    def test_none_policy_disables_deltas(self) -> None:
        totals = PeriodTotals(impressions=7500, downloads=400, product_page_views=1650)
        connector = _FakeConnector(_result("req-1", previous_totals=totals))
        service = _service(connector, comparison_policy="none")

        service.load("org-1", CURRENT, compare=True)

        assert len(connector.calls) == 1
        assert service.view().summary.impressions.delta == 0.0


# ---------------------------------------------------------------------------
# Intelligence
# ---------------------------------------------------------------------------


class TestIntelligence:
    def test_hydration_triggers_background_computation(self) -> None:
        service = _service(_FakeConnector(_result("req-1")))
        service.dispatcher.start()
        try:
            service.load("org-1", CURRENT)
            assert service.dispatcher.wait(5.0)
            status = service.intelligence()
        finally:
            service.dispatcher.shutdown(wait=True)
            service.close()

        assert status.result is not None
        assert status.is_current
        assert not status.is_computing
        assert status.result.stability is not None

    def test_selection_change_recomputes_for_filtered_rows(self) -> None:
        service = _service(_FakeConnector(_result("req-1")))
        service.dispatcher.start()
        try:
            service.load("org-1", CURRENT)
            service.dispatcher.wait(5.0)
            service.select_traffic_sources(["App_Store_Search"])
            assert service.dispatcher.wait(5.0)
            status = service.intelligence()
        finally:
            service.dispatcher.shutdown(wait=True)

        assert status.is_current
        assert service.dispatcher.dispatch_count == 2

    def test_no_submission_before_hydration(self) -> None:
        service = _service(_FakeConnector())
        service.select_traffic_sources(["App_Store_Search"])
        assert not service.dispatcher.is_pending
        assert not service.intelligence().is_current

    def test_compare_reload_recomputes_with_comparison(self) -> None:
        connector = _FakeConnector(
            _result("req-1"),
            _result("req-1"),
            _result("req-prev", PREVIOUS, browse_scale=2),
        )
        service = _service(connector)
        service.dispatcher.start()
        try:
            service.load("org-1", CURRENT)
            assert service.dispatcher.wait(5.0)
            assert service.intelligence().result.attributions == []

            outcome = service.load("org-1", CURRENT, compare=True)
            assert service.dispatcher.wait(5.0)
            status = service.intelligence()
        finally:
            service.dispatcher.shutdown(wait=True)

        assert not outcome.hydrated
        assert service.dispatcher.dispatch_count == 2
        assert status.is_current
        assert {item.category for item in status.result.attributions} >= {"featuring"}
