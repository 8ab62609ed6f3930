"""
app/normalization package marker.
"""

from app.normalization.response_normalizer import (
    UnwrappedResponse,
    merge_traffic_sources,
    normalize_backend_response,
    unwrap_envelope,
)

__all__ = [
    "UnwrappedResponse",
    "merge_traffic_sources",
    "normalize_backend_response",
    "unwrap_envelope",
]
