"""
app/scheduler/dispatcher.py

Debounced background dispatcher for the intelligence pipeline.

A burst of ``submit`` calls (hydration, then a couple of filter clicks)
settles into a single computation. The first accepted payload schedules
one APScheduler ``date`` job under a fixed id; later payloads only replace
the pending payload and push its due time back. The job runs on a
single-worker thread pool, waits until the pending payload has been quiet
for ``debounce_seconds``, computes it, and keeps draining until nothing is
pending. At most one job is ever queued, however slow the computation.

Dedup
-----
Each payload is reduced to a fingerprint (series length, first/last
date, Search/Browse impressions, Search/Browse downloads, comparison
marker). A payload whose fingerprint equals the pending one, or the last
dispatched one when nothing is pending, is skipped. Re-submitting the
last dispatched fingerprint while another payload is pending cancels that
pending run.

Lifecycle
---------
Call ``start()`` on app boot and ``shutdown()`` on exit; the FastAPI
lifespan in ``app.main`` does both. ``shutdown`` drops whatever is still
pending.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from app.config import get_dispatcher_settings
from app.logging_utils import log_event
from intelligence.orchestrator import (
    Fingerprint,
    IntelligencePayload,
    IntelligenceResult,
    ProgressCallback,
    compute_intelligence,
)

logger = logging.getLogger(__name__)

JOB_ID = "intelligence_compute"

ComputeFn = Callable[[IntelligencePayload, ProgressCallback], IntelligenceResult]


@dataclass(frozen=True)
class ComputationProgress:
    step: str
    fraction: float


def build_dispatch_scheduler() -> BackgroundScheduler:
    """
    Return a configured but *not yet started* scheduler with one worker.
    """

    return BackgroundScheduler(
        timezone="UTC",
        executors={"default": ThreadPoolExecutor(max_workers=1)},
        job_defaults={
            "coalesce": True,
            # A drain loop that is returning may briefly overlap its successor.
            "max_instances": 2,
            "misfire_grace_time": None,
        },
    )


class IntelligenceDispatcher:
    """
    Non-blocking, fingerprint-deduplicated runner for ``compute_intelligence``.
    """

    def __init__(
        self,
        compute: ComputeFn = compute_intelligence,
        *,
        debounce_seconds: float | None = None,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        self._compute = compute
        self._debounce_seconds = (
            get_dispatcher_settings().debounce_seconds if debounce_seconds is None else max(0.0, debounce_seconds)
        )
        self._scheduler = scheduler or build_dispatch_scheduler()
        self._cond = threading.Condition(threading.RLock())

        self._generation = 0
        self._job_in_flight = False
        self._pending_payload: IntelligencePayload | None = None
        self._pending_fingerprint: Fingerprint | None = None
        self._pending_generation = 0
        self._pending_due = 0.0
        self._last_dispatched_fingerprint: Fingerprint | None = None
        self._target_fingerprint: Fingerprint | None = None

        self._result: IntelligenceResult | None = None
        self._result_fingerprint: Fingerprint | None = None
        self._is_computing = False
        self._progress = ComputationProgress(step="idle", fraction=0.0)
        self._last_error: Exception | None = None
        self._dispatch_count = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Intelligence dispatcher started debounce_seconds=%.3f", self._debounce_seconds)

    def shutdown(self, wait: bool = True) -> None:
        with self._cond:
            if self._pending_fingerprint is not None:
                self._cancel_pending_locked()
            self._cond.notify_all()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Intelligence dispatcher shut down")
        with self._cond:
            self._cond.notify_all()

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def result(self) -> IntelligenceResult | None:
        with self._cond:
            return self._result

    @property
    def result_fingerprint(self) -> Fingerprint | None:
        with self._cond:
            return self._result_fingerprint

    @property
    def is_computing(self) -> bool:
        with self._cond:
            return self._is_computing

    @property
    def is_pending(self) -> bool:
        with self._cond:
            return self._pending_fingerprint is not None

    @property
    def progress(self) -> ComputationProgress:
        with self._cond:
            return self._progress

    @property
    def last_error(self) -> Exception | None:
        with self._cond:
            return self._last_error

    @property
    def dispatch_count(self) -> int:
        """Number of computations actually started."""
        with self._cond:
            return self._dispatch_count

    def _is_idle(self) -> bool:
        return self._pending_fingerprint is None and not self._is_computing

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until nothing is pending or computing; ``False`` on timeout.
        """

        with self._cond:
            return self._cond.wait_for(self._is_idle, timeout=timeout)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def submit(self, payload: IntelligencePayload) -> bool:
        """
        Schedule a debounced computation for *payload*.

        Returns
        -------
        bool
            ``True`` when a computation was (re)scheduled, ``False`` when the
            payload was recognised as already pending or already dispatched.
        """

        fingerprint = payload.fingerprint()
        with self._cond:
            if self._pending_fingerprint is not None:
                if fingerprint == self._pending_fingerprint:
                    log_event(logger, logging.DEBUG, "intelligence_dispatch_skipped", reason="pending")
                    return False
                if fingerprint == self._last_dispatched_fingerprint:
                    self._cancel_pending_locked()
                    self._target_fingerprint = fingerprint
                    log_event(
                        logger,
                        logging.DEBUG,
                        "intelligence_dispatch_skipped",
                        reason="reverted_to_dispatched",
                    )
                    self._cond.notify_all()
                    return False
            elif fingerprint == self._last_dispatched_fingerprint:
                log_event(logger, logging.DEBUG, "intelligence_dispatch_skipped", reason="dispatched")
                return False

            self._generation += 1
            generation = self._generation
            self._pending_payload = payload
            self._pending_fingerprint = fingerprint
            self._pending_generation = generation
            self._pending_due = time.monotonic() + self._debounce_seconds
            self._target_fingerprint = fingerprint
            self._schedule_locked()
            self._cond.notify_all()

        log_event(
            logger,
            logging.DEBUG,
            "intelligence_dispatch_scheduled",
            generation=generation,
            fingerprint=list(fingerprint),
            debounce_seconds=self._debounce_seconds,
        )
        return True

    def _schedule_locked(self) -> None:
        """
        Make sure exactly one job will drain the pending payload.
        """

        run_date = datetime.now(tz=timezone.utc) + timedelta(seconds=self._debounce_seconds)
        if not self._job_in_flight:
            self._scheduler.add_job(
                self._drain,
                trigger="date",
                run_date=run_date,
                id=JOB_ID,
                name="Intelligence computation",
                replace_existing=True,
            )
            self._job_in_flight = True
            return
        if self._is_computing:
            # The running drain loop picks the payload up when it finishes.
            return
        try:
            self._scheduler.reschedule_job(JOB_ID, trigger="date", run_date=run_date)
        except JobLookupError:
            # Already fired; the drain loop honours ``_pending_due``.
            pass

    def _cancel_pending_locked(self) -> None:
        self._pending_payload = None
        self._pending_fingerprint = None
        if self._job_in_flight and not self._is_computing:
            try:
                self._scheduler.remove_job(JOB_ID)
            except JobLookupError:
                # Already fired; the drain loop finds nothing pending and exits.
                return
            self._job_in_flight = False

    def _report_progress(self, step: str, fraction: float) -> None:
        with self._cond:
            if self._is_computing:
                self._progress = ComputationProgress(step=step, fraction=fraction)

    def _take_settled_locked(self) -> tuple[IntelligencePayload, Fingerprint, int] | None:
        while self._pending_fingerprint is not None:
            remaining = self._pending_due - time.monotonic()
            if remaining <= 0:
                break
            self._cond.wait(remaining)
        if self._pending_payload is None or self._pending_fingerprint is None:
            return None
        taken = (self._pending_payload, self._pending_fingerprint, self._pending_generation)
        self._pending_payload = None
        self._pending_fingerprint = None
        return taken

    def _drain(self) -> None:
        while True:
            with self._cond:
                taken = self._take_settled_locked()
                if taken is None:
                    self._job_in_flight = False
                    self._cond.notify_all()
                    return
                payload, fingerprint, generation = taken
                self._last_dispatched_fingerprint = fingerprint
                self._is_computing = True
                self._last_error = None
                self._dispatch_count += 1
                self._progress = ComputationProgress(step="starting", fraction=0.0)
            self._run(payload, fingerprint, generation)

    def _run(self, payload: IntelligencePayload, fingerprint: Fingerprint, generation: int) -> None:
        log_event(logger, logging.INFO, "intelligence_computation_started", generation=generation)
        try:
            result = self._compute(payload, self._report_progress)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Intelligence computation failed generation=%s", generation)
            with self._cond:
                self._last_error = exc
                # Allow the same payload to be retried.
                self._last_dispatched_fingerprint = None
                self._is_computing = False
                self._progress = ComputationProgress(step="failed", fraction=1.0)
                self._cond.notify_all()
            return

        with self._cond:
            applied = fingerprint == self._target_fingerprint
            if applied:
                self._result = result
                self._result_fingerprint = fingerprint
            self._is_computing = False
            self._progress = ComputationProgress(step="complete", fraction=1.0)
            self._cond.notify_all()

        log_event(
            logger,
            logging.INFO,
            "intelligence_computation_finished",
            generation=generation,
            applied=applied,
        )
