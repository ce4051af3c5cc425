"""Prometheus metrics."""

from chaldeploy.metrics.collector import (
    CLUSTER_DURATION,
    CLUSTER_ERRORS,
    INSTANCES,
)

__all__ = [
    "CLUSTER_DURATION",
    "CLUSTER_ERRORS",
    "INSTANCES",
]
