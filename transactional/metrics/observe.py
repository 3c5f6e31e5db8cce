from __future__ import annotations

from .registry import (
    OPERATION_CALLBACK_ERRORS_TOTAL,
    OPERATIONS_BUFFERED_TOTAL,
    OPERATIONS_RESOLVED_TOTAL,
    SWEEP_LATENCY_SECONDS,
    TRANSACTIONS_TOTAL,
)


def observe_transaction(action: str) -> None:
    """Count a start, commit or rollback call."""
    TRANSACTIONS_TOTAL.labels(action=action).inc()


def observe_buffered() -> None:
    OPERATIONS_BUFFERED_TOTAL.inc()


def observe_resolution(outcome: str, count: int, latency_s: float | None = None) -> None:
    """
    Record resolved operations.

    Latency is only recorded for sweeps that actually resolved something;
    immediate execution outside a transaction passes no latency.
    """
    if count <= 0:
        return
    OPERATIONS_RESOLVED_TOTAL.labels(outcome=outcome).inc(count)
    if latency_s is not None:
        SWEEP_LATENCY_SECONDS.labels(outcome=outcome).observe(latency_s)


def observe_callback_error(event: str) -> None:
    OPERATION_CALLBACK_ERRORS_TOTAL.labels(event=event).inc()
