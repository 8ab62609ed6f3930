"""
tests/test_dispatcher.py

Pytest tests for the debounced background IntelligenceDispatcher.

The dispatcher runs a real APScheduler BackgroundScheduler; compute
functions are fakes that record their payloads, and tests synchronise
with ``dispatcher.wait``.

Coverage
--------
- Submission is non-blocking and produces one result
- Identical pending / dispatched fingerprints are skipped
- A burst of submissions within the debounce window runs once, last wins
- Reverting to the dispatched fingerprint cancels the pending run
- Results of superseded runs are discarded
- Failures are recorded and the payload can be retried
- Progress reporting with the real pipeline
- Many payloads settling behind a slow run compute only the latest
- Shutdown drops a pending run
"""

from __future__ import annotations

import threading
import time
from typing import Iterator

import pytest

from app.domain.metrics import PeriodTotals
from app.scheduler.dispatcher import IntelligenceDispatcher
from intelligence.orchestrator import IntelligencePayload, IntelligenceResult, ProgressCallback
from kpi.derived import derive_kpis
from kpi.timeseries import TimeSeriesPoint
from kpi.two_path import TwoPathResult, calculate_two_path_metrics

WAIT_TIMEOUT = 5.0


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _payload(search_downloads: int = 500) -> IntelligencePayload:
    paths = TwoPathResult(
        search=calculate_two_path_metrics(10000, 2000, search_downloads),
        browse=calculate_two_path_metrics(5000, 1000, 200),
    )
    series = tuple(
        TimeSeriesPoint(f"2024-01-{day:02d}", 1500, 70, 300, 70 / 1500 * 100) for day in range(1, 11)
    )
    return IntelligencePayload(
        time_series=series,
        two_path=paths,
        derived=derive_kpis(paths.search, paths.browse),
        totals=PeriodTotals(15000, search_downloads + 200, 3000),
    )


class _RecordingCompute:
    def __init__(self, *, block: bool = False, fail: bool = False) -> None:
        self.payloads: list[IntelligencePayload] = []
        self.started = threading.Event()
        self.release = threading.Event()
        self._block = block
        self._fail = fail
        if not block:
            self.release.set()

    def __call__(self, payload: IntelligencePayload, progress: ProgressCallback) -> IntelligenceResult:
        self.payloads.append(payload)
        self.started.set()
        self.release.wait(WAIT_TIMEOUT)
        if self._fail:
            raise RuntimeError("pipeline exploded")
        progress("complete", 1.0)
        return IntelligenceResult(stability=None, computed_at=str(len(self.payloads)))


@pytest.fixture()
def compute() -> _RecordingCompute:
    return _RecordingCompute()


@pytest.fixture()
def dispatcher(compute: _RecordingCompute) -> Iterator[IntelligenceDispatcher]:
    instance = IntelligenceDispatcher(compute, debounce_seconds=0.05)
    instance.start()
    yield instance
    instance.shutdown(wait=True)


# ---------------------------------------------------------------------------
# Basic dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_submit_runs_once(self, dispatcher: IntelligenceDispatcher, compute: _RecordingCompute) -> None:
        payload = _payload()
        assert dispatcher.submit(payload)
        assert dispatcher.wait(WAIT_TIMEOUT)

        assert dispatcher.dispatch_count == 1
        assert dispatcher.result is not None
        assert dispatcher.result_fingerprint == payload.fingerprint()
        assert compute.payloads == [payload]

    def test_dispatched_fingerprint_is_skipped(self, dispatcher: IntelligenceDispatcher) -> None:
        dispatcher.submit(_payload())
        dispatcher.wait(WAIT_TIMEOUT)

        assert not dispatcher.submit(_payload())
        assert dispatcher.wait(WAIT_TIMEOUT)
        assert dispatcher.dispatch_count == 1

    def test_pending_fingerprint_is_skipped(self) -> None:
        dispatcher = IntelligenceDispatcher(_RecordingCompute(), debounce_seconds=10.0)
        dispatcher.start()
        try:
            assert dispatcher.submit(_payload())
            assert not dispatcher.submit(_payload())
            assert dispatcher.is_pending
        finally:
            dispatcher.shutdown(wait=False)

    def test_submit_does_not_block(self) -> None:
        compute = _RecordingCompute(block=True)
        dispatcher = IntelligenceDispatcher(compute, debounce_seconds=0.0)
        dispatcher.start()
        try:
            assert dispatcher.submit(_payload())
            assert compute.started.wait(WAIT_TIMEOUT)
            assert dispatcher.is_computing
            assert dispatcher.result is None
        finally:
            compute.release.set()
            assert dispatcher.wait(WAIT_TIMEOUT)
            dispatcher.shutdown(wait=True)
        assert dispatcher.result is not None


# ---------------------------------------------------------------------------
# Debounce and supersession
# ---------------------------------------------------------------------------


class TestDebounce:
    def test_burst_runs_last_payload_once(self) -> None:
        compute = _RecordingCompute()
        dispatcher = IntelligenceDispatcher(compute, debounce_seconds=0.3)
        dispatcher.start()
        try:
            first, second, third = _payload(500), _payload(510), _payload(520)
            assert dispatcher.submit(first)
            assert dispatcher.submit(second)
            assert dispatcher.submit(third)
            assert dispatcher.wait(WAIT_TIMEOUT)
        finally:
            dispatcher.shutdown(wait=True)

        assert compute.payloads == [third]
        assert dispatcher.dispatch_count == 1
        assert dispatcher.result_fingerprint == third.fingerprint()

    def test_revert_to_dispatched_cancels_pending(self) -> None:
        compute = _RecordingCompute()
        dispatcher = IntelligenceDispatcher(compute, debounce_seconds=0.3)
        dispatcher.start()
        try:
            original, changed = _payload(500), _payload(510)
            dispatcher.submit(original)
            assert dispatcher.wait(WAIT_TIMEOUT)

            assert dispatcher.submit(changed)
            assert not dispatcher.submit(original)
            assert not dispatcher.is_pending
            assert dispatcher.wait(WAIT_TIMEOUT)
        finally:
            dispatcher.shutdown(wait=True)

        assert compute.payloads == [original]
        assert dispatcher.result_fingerprint == original.fingerprint()

    def test_superseded_result_is_discarded(self) -> None:
        compute = _RecordingCompute(block=True)
        dispatcher = IntelligenceDispatcher(compute, debounce_seconds=0.0)
        dispatcher.start()
        try:
            first, second = _payload(500), _payload(510)
            dispatcher.submit(first)
            assert compute.started.wait(WAIT_TIMEOUT)

            assert dispatcher.submit(second)
            compute.release.set()
            assert dispatcher.wait(WAIT_TIMEOUT)
        finally:
            compute.release.set()
            dispatcher.shutdown(wait=True)

        assert compute.payloads == [first, second]
        assert dispatcher.dispatch_count == 2
        assert dispatcher.result_fingerprint == second.fingerprint()
        assert dispatcher.result.computed_at == "2"


# ---------------------------------------------------------------------------
# Failures and progress
# ---------------------------------------------------------------------------


class TestFailures:
    def test_failure_is_recorded_and_retriable(self) -> None:
        dispatcher = IntelligenceDispatcher(_RecordingCompute(fail=True), debounce_seconds=0.0)
        dispatcher.start()
        try:
            dispatcher.submit(_payload())
            assert dispatcher.wait(WAIT_TIMEOUT)

            assert isinstance(dispatcher.last_error, RuntimeError)
            assert dispatcher.result is None
            assert dispatcher.progress.step == "failed"
            assert dispatcher.submit(_payload())
            assert dispatcher.wait(WAIT_TIMEOUT)
        finally:
            dispatcher.shutdown(wait=True)
        assert dispatcher.dispatch_count == 2


class TestProgress:
    def test_idle_before_first_run(self) -> None:
        dispatcher = IntelligenceDispatcher(debounce_seconds=0.0)
        assert dispatcher.progress.step == "idle"
        assert not dispatcher.running

    def test_real_pipeline_completes(self) -> None:
        dispatcher = IntelligenceDispatcher(debounce_seconds=0.0)
        dispatcher.start()
        try:
            dispatcher.submit(_payload())
            assert dispatcher.wait(WAIT_TIMEOUT)
        finally:
            dispatcher.shutdown(wait=True)

        assert dispatcher.last_error is None
        assert dispatcher.progress.step == "complete"
        assert dispatcher.progress.fraction == 1.0
        assert dispatcher.result.stability is not None


# ---------------------------------------------------------------------------
# Slow computations and shutdown
# ---------------------------------------------------------------------------


class TestSlowComputation:
    def test_many_payloads_during_slow_run_compute_latest_once(self) -> None:
        compute = _RecordingCompute(block=True)
        dispatcher = IntelligenceDispatcher(compute, debounce_seconds=0.01)
        dispatcher.start()
        try:
            first = _payload(1000)
            dispatcher.submit(first)
            assert compute.started.wait(WAIT_TIMEOUT)

            latest = first
            for offset in range(1, 21):
                latest = _payload(1000 + offset)
                assert dispatcher.submit(latest)
                time.sleep(0.02)
            assert dispatcher.is_pending

            compute.release.set()
            assert dispatcher.wait(WAIT_TIMEOUT)
        finally:
            compute.release.set()
            dispatcher.shutdown(wait=True)

        assert compute.payloads == [first, latest]
        assert dispatcher.dispatch_count == 2
        assert dispatcher.result_fingerprint == latest.fingerprint()
        assert not dispatcher.is_pending

    def test_submit_after_slow_run_is_dispatched(self) -> None:
        compute = _RecordingCompute(block=True)
        dispatcher = IntelligenceDispatcher(compute, debounce_seconds=0.0)
        dispatcher.start()
        try:
            dispatcher.submit(_payload(500))
            assert compute.started.wait(WAIT_TIMEOUT)
            compute.release.set()
            assert dispatcher.wait(WAIT_TIMEOUT)

            assert dispatcher.submit(_payload(510))
            assert dispatcher.wait(WAIT_TIMEOUT)
        finally:
            dispatcher.shutdown(wait=True)

        assert dispatcher.dispatch_count == 2
        assert dispatcher.result_fingerprint == _payload(510).fingerprint()


class TestShutdown:
    def test_shutdown_drops_pending_run(self, compute: _RecordingCompute) -> None:
        dispatcher = IntelligenceDispatcher(compute, debounce_seconds=10.0)
        dispatcher.start()
        assert dispatcher.submit(_payload())
        assert dispatcher.is_pending

        dispatcher.shutdown(wait=True)

        assert not dispatcher.is_pending
        assert dispatcher.wait(0.1)
        assert compute.payloads == []
        assert dispatcher.dispatch_count == 0
