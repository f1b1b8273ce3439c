"""Utility modules for the idempotency gate."""

from .headers import (
    VOLATILE_HEADERS,
    add_replay_headers,
    filter_response_headers,
    fold_headers,
    get_header_value,
    unfold_headers,
)

__all__ = [
    "filter_response_headers",
    "add_replay_headers",
    "get_header_value",
    "fold_headers",
    "unfold_headers",
    "VOLATILE_HEADERS",
]
