from __future__ import annotations

from prometheus_client import Counter, Histogram

RECONCILE_TOTAL = Counter(
    "scheduler_operator_reconcile_total",
    "Number of reconciliations",
    labelnames=("kind", "result"),
)

RECONCILE_DURATION = Histogram(
    "scheduler_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    labelnames=("kind",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)

CHILD_OPERATIONS_TOTAL = Counter(
    "scheduler_operator_child_operations_total",
    "Create/update/delete/skip decisions on managed CronJobs",
    labelnames=("operation", "result"),
)
