"""
app/errors.py

Exception taxonomy for the analytics fetch and derivation layers.
"""

from __future__ import annotations


class AnalyticsError(Exception):
    """Base exception for analytics pipeline failures."""


class ValidationError(AnalyticsError):
    """
    Raised before any fetch is attempted when the request is incomplete
    (missing organization id, missing or inverted date range).
    """


class FetchError(AnalyticsError):
    """
    Raised when the analytics backend call fails.

    Covers transport errors, non-2xx responses and explicit
    ``success: false`` service replies.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retriable = retriable


class ShapeError(FetchError):
    """
    Raised when a backend response cannot be unwrapped into a row array.

    Indicates a contract change on the backend, never retried.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, retriable=False)


class InsufficientDataError(AnalyticsError):
    """Raised when a derivation is invoked below its minimum input length."""
