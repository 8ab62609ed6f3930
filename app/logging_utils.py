"""
app/logging_utils.py

Structured logging helpers shared by the fetcher, data store and dispatcher.

Every line is a compact JSON object with an ``event`` key so diagnostics
(row counts, query durations, fingerprints) can be grepped or shipped to a
log pipeline without regex parsing.
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """
    Emit one structured log line as compact JSON.
    """

    if not logger.isEnabledFor(level):
        return
    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, default=str, sort_keys=True))


@contextmanager
def timed_event(
    logger: logging.Logger,
    event: str,
    *,
    level: int = logging.DEBUG,
    **fields: Any,
) -> Iterator[dict[str, Any]]:
    """
    Log *event* with an ``elapsed_ms`` field once the block exits.

    The yielded dict may be updated inside the block to attach fields
    that are only known after the work is done.
    """

    extra: dict[str, Any] = {}
    started = time.perf_counter()
    try:
        yield extra
    finally:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 3)
        log_event(logger, level, event, elapsed_ms=elapsed_ms, **fields, **extra)
