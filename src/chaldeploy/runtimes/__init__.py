"""Runtimes."""

from chaldeploy.runtimes.kubernetes import KubernetesRuntime

__all__ = ["KubernetesRuntime"]
