"""
app/services/data_store.py

Injectable hydration container for the most recent fetch.

States
------
Empty     initial; no rows, no metadata.
Hydrated  holds exactly one FetchResult.

``hydrate_from_fetch`` is the only transition. Re-hydrating with a result
whose (request id, timestamp) identity matches the stored one is a no-op,
so a payload delivered to several consumers is hydrated, and recomputed
downstream, exactly once. Filter changes never touch the store.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from app.domain.metrics import FetchMetadata, FetchResult, RawMetricRow
from app.logging_utils import log_event

logger = logging.getLogger(__name__)

HydrationListener = Callable[[FetchResult], None]


class DashboardDataStore:
    """
    Thread-safe holder of the hydrated rows and metadata.

    Instances are created explicitly and passed to whoever needs them;
    there is no module-level singleton.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._result: FetchResult | None = None
        self._hydration_count = 0
        self._listeners: list[HydrationListener] = []

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    @property
    def is_hydrated(self) -> bool:
        with self._lock:
            return self._result is not None

    @property
    def fetch_result(self) -> FetchResult | None:
        with self._lock:
            return self._result

    @property
    def rows(self) -> tuple[RawMetricRow, ...]:
        with self._lock:
            return self._result.rows if self._result is not None else ()

    @property
    def metadata(self) -> FetchMetadata | None:
        with self._lock:
            return self._result.metadata if self._result is not None else None

    @property
    def available_traffic_sources(self) -> tuple[str, ...]:
        with self._lock:
            return self._result.available_traffic_sources if self._result is not None else ()

    @property
    def identity(self) -> tuple[str, str] | None:
        with self._lock:
            return self._result.identity if self._result is not None else None

    @property
    def hydration_count(self) -> int:
        with self._lock:
            return self._hydration_count

    # ------------------------------------------------------------------
    # Write API
    # ------------------------------------------------------------------

    def hydrate_from_fetch(self, result: FetchResult) -> bool:
        """
        Replace the stored content with *result* unless it is already hydrated.

        Returns
        -------
        bool
            ``True`` when the store changed, ``False`` for a duplicate.
        """

        with self._lock:
            if self._result is not None and self._result.identity == result.identity:
                log_event(
                    logger,
                    logging.DEBUG,
                    "data_store_hydration_skipped",
                    request_id=result.metadata.request_id,
                )
                return False

            self._result = result
            self._hydration_count += 1
            listeners = list(self._listeners)
            count = self._hydration_count

        log_event(
            logger,
            logging.INFO,
            "data_store_hydrated",
            request_id=result.metadata.request_id,
            timestamp=result.metadata.timestamp,
            rows=len(result.rows),
            traffic_sources=len(result.available_traffic_sources),
            hydration_count=count,
        )

        for listener in listeners:
            try:
                listener(result)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Hydration listener failed request_id=%s",
                    result.metadata.request_id,
                )
        return True

    def subscribe(self, listener: HydrationListener) -> Callable[[], None]:
        """
        Register *listener* for future hydrations; returns an unsubscribe callable.
        """

        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe
