"""Prometheus metrics definitions for chaldeploy.

Tracks Kubernetes API calls and the number of instance records per
lifecycle state.
"""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Histogram Buckets
# =============================================================================
# Control plane calls: ~10ms for reads, seconds for foreground deletes
_BUCKETS_CLUSTER = (
    0.01, 0.025, 0.05, 0.1, 0.25,
    0.5, 1, 2.5, 5, 10,
    30, 60, 120,
)

CLUSTER_OPERATIONS = (
    "namespace_create",
    "namespace_read",
    "namespace_delete",
    "deployment_create",
    "service_create",
    "service_read",
)

# =============================================================================
# Cluster Operation Metrics
# =============================================================================

CLUSTER_DURATION = Histogram(
    "chaldeploy_cluster_duration_seconds",
    "Duration of Kubernetes API calls",
    ["operation"],
    buckets=_BUCKETS_CLUSTER,
)

CLUSTER_ERRORS = Counter(
    "chaldeploy_cluster_errors_total",
    "Total Kubernetes API call errors",
    ["operation", "error_type"],  # error_type: api_error, timeout, transport
)

# =============================================================================
# Instance Metrics
# =============================================================================

INSTANCES = Gauge(
    "chaldeploy_instances",
    "Instance records per lifecycle state",
    ["state"],
)


def _init_metrics() -> None:
    """Initialize labeled metrics with zero values."""
    for op in CLUSTER_OPERATIONS:
        CLUSTER_DURATION.labels(operation=op)
        for error_type in ("api_error", "timeout", "transport"):
            CLUSTER_ERRORS.labels(operation=op, error_type=error_type)

    for state in ("running", "destroying", "destroyed"):
        INSTANCES.labels(state=state)


_init_metrics()
