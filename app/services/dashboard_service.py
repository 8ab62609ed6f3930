"""
app/services/dashboard_service.py

Coordinates fetch → hydration → filtered aggregation → background intelligence.

Network I/O happens only in :meth:`DashboardService.load`. Changing the
traffic-source selection recomputes every aggregate synchronously from the
hydrated rows and never fetches.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Sequence

from app.config import get_comparison_settings
from app.connectors.analytics_backend import AnalyticsBackendConnector, validate_fetch_request
from app.domain.metrics import DateRange, FetchMetadata, FetchResult, PeriodTotals, RawMetricRow
from app.logging_utils import log_event
from app.scheduler.dispatcher import ComputationProgress, IntelligenceDispatcher
from app.services.data_store import DashboardDataStore
from app.services.traffic_filter import FilteredView, filter_rows
from intelligence.orchestrator import IntelligencePayload, IntelligenceResult
from kpi.derived import DerivedKPIs, derive_kpis
from kpi.summary import Comparison, Summary, sum_rows, summarize
from kpi.timeseries import TimeSeriesPoint, to_time_series
from kpi.traffic_sources import TrafficSourceBreakdown, traffic_source_breakdown
from kpi.two_path import TwoPathResult, two_path, validate_two_path_metrics

logger = logging.getLogger(__name__)

COMPARISON_POLICIES = ("shift", "none")


def previous_period(date_range: DateRange, policy: str = "shift") -> DateRange | None:
    """
    Comparison window for *date_range* under *policy*.

    ``shift`` returns the equal-length window ending the day before
    ``date_range.start``; ``none`` disables comparison.
    """

    if policy == "none":
        return None
    if policy != "shift":
        raise ValueError(f"Unknown comparison policy {policy!r}; expected one of {COMPARISON_POLICIES}.")
    return date_range.shifted_back()


@dataclass(frozen=True)
class DashboardView:
    """
    Every synchronous aggregate for the current selection.
    """

    summary: Summary
    time_series: list[TimeSeriesPoint]
    traffic_sources: list[TrafficSourceBreakdown]
    two_path: TwoPathResult
    derived: DerivedKPIs
    warnings: list[str]
    selected_traffic_sources: tuple[str, ...]
    available_traffic_sources: tuple[str, ...]
    totals: PeriodTotals
    previous_two_path: TwoPathResult | None = None
    previous_derived: DerivedKPIs | None = None
    metadata: FetchMetadata | None = None

    def intelligence_payload(self) -> IntelligencePayload:
        return IntelligencePayload(
            time_series=tuple(self.time_series),
            two_path=self.two_path,
            derived=self.derived,
            totals=self.totals,
            previous_two_path=self.previous_two_path,
            previous_derived=self.previous_derived,
        )


@dataclass(frozen=True)
class LoadOutcome:
    request_key: int
    applied: bool
    hydrated: bool
    row_count: int = 0


@dataclass(frozen=True)
class IntelligenceStatus:
    result: IntelligenceResult | None
    is_computing: bool
    is_pending: bool
    is_current: bool
    progress: ComputationProgress
    last_error: str | None = None


@dataclass
class _ComparisonState:
    result: FetchResult | None = None
    totals: PeriodTotals | None = None
    date_range: DateRange | None = None


def build_view(
    fetch_result: FetchResult | None,
    selected_sources: Sequence[str] = (),
    *,
    previous_rows: Sequence[RawMetricRow] | None = None,
    previous_totals: PeriodTotals | None = None,
) -> DashboardView:
    """
    Aggregate the hydrated rows for *selected_sources*.

    ``previous_rows`` (a fetched comparison window, filtered the same way)
    take precedence over backend-supplied ``previous_totals``; without
    either, deltas are zero.
    """

    if fetch_result is None:
        filtered = FilteredView(rows=(), selected_sources=tuple(selected_sources), available_traffic_sources=())
        metadata = None
    else:
        filtered = filter_rows(fetch_result, selected_sources)
        metadata = fetch_result.metadata

    rows = filtered.rows
    comparison: Comparison | None = None
    previous_two_path: TwoPathResult | None = None
    previous_derived: DerivedKPIs | None = None
    if previous_rows is not None:
        comparison = summarize(previous_rows)
        previous_two_path = two_path(previous_rows)
        previous_derived = derive_kpis(previous_two_path.search, previous_two_path.browse)
    elif previous_totals is not None:
        comparison = previous_totals

    paths = two_path(rows)
    derived = derive_kpis(paths.search, paths.browse)
    warnings = validate_two_path_metrics(paths.search, "search") + validate_two_path_metrics(
        paths.browse, "browse"
    )
    breakdown_order = filtered.selected_sources or filtered.available_traffic_sources

    return DashboardView(
        summary=summarize(rows, comparison),
        time_series=to_time_series(rows),
        traffic_sources=traffic_source_breakdown(rows, breakdown_order or None),
        two_path=paths,
        derived=derived,
        warnings=warnings,
        selected_traffic_sources=filtered.selected_sources,
        available_traffic_sources=filtered.available_traffic_sources,
        totals=sum_rows(rows),
        previous_two_path=previous_two_path,
        previous_derived=previous_derived,
        metadata=metadata,
    )


class DashboardService:
    """
    Wires connector, data store and dispatcher for one dashboard session.

    Parameters
    ----------
    connector:
        Fetcher for the analytics backend.
    store:
        Hydration container; a fresh one is created when omitted.
    dispatcher:
        Background intelligence runner. The caller owns its lifecycle.
    comparison_policy:
        ``"shift"`` or ``"none"``; defaults to ``COMPARISON_PERIOD_POLICY``.
    """

    def __init__(
        self,
        *,
        connector: AnalyticsBackendConnector,
        store: DashboardDataStore | None = None,
        dispatcher: IntelligenceDispatcher | None = None,
        comparison_policy: str | None = None,
    ) -> None:
        self._connector = connector
        self._store = store or DashboardDataStore()
        self._dispatcher = dispatcher or IntelligenceDispatcher()
        self._comparison_policy = comparison_policy or get_comparison_settings().policy
        if self._comparison_policy not in COMPARISON_POLICIES:
            raise ValueError(f"Unknown comparison policy {self._comparison_policy!r}.")

        self._lock = threading.RLock()
        self._request_keys = itertools.count(1)
        self._latest_request_key = 0
        self._selected_sources: tuple[str, ...] = ()
        self._comparison = _ComparisonState()
        self._unsubscribe = self._store.subscribe(self._on_hydrated)

    @property
    def store(self) -> DashboardDataStore:
        return self._store

    @property
    def dispatcher(self) -> IntelligenceDispatcher:
        return self._dispatcher

    @property
    def selected_traffic_sources(self) -> tuple[str, ...]:
        with self._lock:
            return self._selected_sources

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def load(
        self,
        organization_id: str,
        date_range: DateRange,
        app_ids: Sequence[str] | None = None,
        *,
        compare: bool = False,
    ) -> LoadOutcome:
        """
        Fetch and hydrate unless a newer ``load`` started in the meantime.

        When *compare* is true and the backend did not supply
        ``period_comparison.previous``, the comparison window is fetched
        once as well. Any error leaves the store untouched and propagates.
        """

        validate_fetch_request(organization_id, date_range)
        with self._lock:
            request_key = next(self._request_keys)
            self._latest_request_key = request_key

        result = self._connector.fetch(organization_id, date_range, app_ids)

        comparison = _ComparisonState(totals=result.metadata.previous_totals)
        window = previous_period(date_range, self._comparison_policy)
        if window is None:
            comparison = _ComparisonState()
        elif compare and comparison.totals is None:
            comparison = _ComparisonState(
                result=self._connector.fetch(organization_id, window, app_ids),
                date_range=window,
            )

        with self._lock:
            if request_key != self._latest_request_key:
                log_event(
                    logger,
                    logging.INFO,
                    "dashboard_stale_response_discarded",
                    request_key=request_key,
                    latest_request_key=self._latest_request_key,
                    request_id=result.metadata.request_id,
                )
                return LoadOutcome(request_key=request_key, applied=False, hydrated=False)
            self._comparison = comparison
            hydrated = self._store.hydrate_from_fetch(result)

        if not hydrated:
            # Same rows, possibly new comparison data.
            self._submit_intelligence(self.view())

        return LoadOutcome(
            request_key=request_key,
            applied=True,
            hydrated=hydrated,
            row_count=len(result.rows),
        )

    # ------------------------------------------------------------------
    # Selection and views
    # ------------------------------------------------------------------

    def select_traffic_sources(self, sources: Sequence[str] | None) -> DashboardView:
        """
        Change the traffic-source filter and return the recomputed view.
        """

        with self._lock:
            self._selected_sources = tuple(dict.fromkeys(sources or ()))
        view = self.view()
        self._submit_intelligence(view)
        return view

    def view(self, sources: Sequence[str] | None = None) -> DashboardView:
        """
        Aggregates for *sources*, or for the current selection when omitted.
        """

        with self._lock:
            selection = self._selected_sources if sources is None else tuple(dict.fromkeys(sources))
            comparison = self._comparison
            fetch_result = self._store.fetch_result

        previous_rows: tuple[RawMetricRow, ...] | None = None
        if comparison.result is not None:
            previous_rows = filter_rows(comparison.result, selection).rows

        return build_view(
            fetch_result,
            selection,
            previous_rows=previous_rows,
            # Backend totals cover every source, so only apply them unfiltered.
            previous_totals=comparison.totals if not selection else None,
        )

    # ------------------------------------------------------------------
    # Intelligence
    # ------------------------------------------------------------------

    def intelligence(self) -> IntelligenceStatus:
        current = self.view().intelligence_payload().fingerprint()
        error = self._dispatcher.last_error
        return IntelligenceStatus(
            result=self._dispatcher.result,
            is_computing=self._dispatcher.is_computing,
            is_pending=self._dispatcher.is_pending,
            is_current=self._dispatcher.result_fingerprint == current,
            progress=self._dispatcher.progress,
            last_error=str(error) if error is not None else None,
        )

    def _submit_intelligence(self, view: DashboardView) -> bool:
        if view.metadata is None:
            return False
        return self._dispatcher.submit(view.intelligence_payload())

    def _on_hydrated(self, result: FetchResult) -> None:
        self._submit_intelligence(self.view())

    def close(self) -> None:
        self._unsubscribe()


def build_dashboard_service() -> DashboardService:
    """
    Build a dashboard service from environment settings.

    The returned dispatcher is not started; ``app.main`` starts it in the
    application lifespan.
    """

    return DashboardService(
        connector=AnalyticsBackendConnector(),
        store=DashboardDataStore(),
        dispatcher=IntelligenceDispatcher(),
    )
