"""Prometheus metrics for the idempotency gate.

Metrics include:

- Guarded request counters by claim outcome (new, replay, conflict, ...)
- Handler execution time for new executions
- Keys currently claimed by this process
- Completion writes that could not be persisted
- Reaper sweeps and the number of records they removed

Examples:
    >>> record_request("replay", 201)
    >>> record_sweep(records_removed=42)
"""

from prometheus_client import Counter, Gauge, Histogram

# Labels: result (new, replay, conflict, mismatch, invalid, bypass, error), status_code
requests_total = Counter(
    "idempotency_requests_total",
    "Total number of requests seen by the idempotency gate",
    ["result", "status_code"],
)

# New executions only
execution_time_ms = Histogram(
    "idempotency_execution_time_ms",
    "Downstream handler execution time in milliseconds (new executions only)",
    buckets=[10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

active_keys = Gauge(
    "idempotency_active_keys",
    "Number of idempotency keys this process has claimed and not yet completed",
)

completion_failures = Counter(
    "idempotency_completion_failures_total",
    "Outcomes that could not be written back to the record store",
)

reaper_runs = Counter(
    "idempotency_reaper_runs_total",
    "Total number of expiry sweeps performed",
)

reaper_records_removed = Counter(
    "idempotency_reaper_records_removed_total",
    "Total number of expired records removed by the reaper",
)


def record_request(result: str, status_code: int) -> None:
    """Record a request handled by the gate.

    Args:
        result: new, replay, conflict, mismatch, invalid, bypass or error
        status_code: HTTP status code of the response (0 when none was produced)
    """
    requests_total.labels(result=result, status_code=str(status_code)).inc()


def record_execution_time(exec_time_ms: int) -> None:
    """Record downstream handler execution time for a new execution."""
    execution_time_ms.observe(exec_time_ms)


def increment_active_keys() -> None:
    active_keys.inc()


def decrement_active_keys() -> None:
    active_keys.dec()


def record_completion_failure() -> None:
    completion_failures.inc()


def record_sweep(records_removed: int) -> None:
    """Record an expiry sweep.

    Args:
        records_removed: Number of expired records removed
    """
    reaper_runs.inc()
    reaper_records_removed.inc(records_removed)
