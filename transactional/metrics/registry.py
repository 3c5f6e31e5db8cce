from prometheus_client import Counter, Histogram

TRANSACTIONS_TOTAL = Counter(
    "transactional_transactions_total",
    "Transaction control calls, by action",
    ["action"],
)

OPERATIONS_BUFFERED_TOTAL = Counter(
    "transactional_operations_buffered_total",
    "Operations placed in a transaction buffer",
)

OPERATIONS_RESOLVED_TOTAL = Counter(
    "transactional_operations_resolved_total",
    "Operations resolved, by outcome (immediate, commit, rollback)",
    ["outcome"],
)

OPERATION_CALLBACK_ERRORS_TOTAL = Counter(
    "transactional_operation_callback_errors_total",
    "Callbacks that raised during a commit or rollback sweep",
    ["event"],
)

SWEEP_LATENCY_SECONDS = Histogram(
    "transactional_sweep_latency_seconds",
    "Time spent resolving the operations of one commit or rollback",
    ["outcome"],
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)
