"""
app/services/traffic_filter.py

Client-side traffic-source filtering over an already fetched row set.

The fetcher always returns every traffic source for the requested range;
narrowing to the user's selection happens here, synchronously, without
any network call. The picker's option list comes from the fetch metadata
and therefore never shrinks when a filter is applied.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from app.domain.metrics import FetchResult, RawMetricRow


@dataclass(frozen=True)
class FilteredView:
    rows: tuple[RawMetricRow, ...]
    selected_sources: tuple[str, ...]
    available_traffic_sources: tuple[str, ...]

    @property
    def is_filtered(self) -> bool:
        return bool(self.selected_sources)


def available_traffic_sources(fetch_result: FetchResult) -> tuple[str, ...]:
    """
    Full source list for the fetched range, independent of any filter.
    """
    return fetch_result.metadata.available_traffic_sources


def traffic_sources_present(rows: Iterable[RawMetricRow]) -> set[str]:
    return {row.traffic_source for row in rows}


def filter_rows(
    fetch_result: FetchResult,
    selected_sources: Sequence[str] | None,
) -> FilteredView:
    """
    Restrict *fetch_result* rows to *selected_sources*.

    An empty (or ``None``) selection means "no filter" and returns every
    row. The input is never mutated.
    """

    selection = tuple(dict.fromkeys(selected_sources or ()))
    if not selection:
        rows = fetch_result.rows
    else:
        wanted = frozenset(selection)
        rows = tuple(row for row in fetch_result.rows if row.traffic_source in wanted)

    return FilteredView(
        rows=rows,
        selected_sources=selection,
        available_traffic_sources=available_traffic_sources(fetch_result),
    )
