"""Observability utilities for the idempotency gate.

- Prometheus metrics for claim outcomes, execution time and sweeps
- Structured logging with contextual information
"""

from idempotency_gate.observability.logging import configure_logging, get_logger
from idempotency_gate.observability.metrics import (
    record_completion_failure,
    record_execution_time,
    record_request,
    record_sweep,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "record_request",
    "record_execution_time",
    "record_completion_failure",
    "record_sweep",
]
