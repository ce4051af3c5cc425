"""API dependencies for dependency injection."""

from chaldeploy.runtimes import KubernetesRuntime

# Runtime for the lifetime of the app; owns the instance registry
_runtime: KubernetesRuntime | None = None


def init_runtime() -> None:
    """Initialize runtime singleton.

    Resolves cluster credentials; raises KubeConfigError if none are found,
    which aborts startup. Must be called during app startup.
    """
    global _runtime
    _runtime = KubernetesRuntime()


def close_runtime() -> None:
    """Close runtime and release resources."""
    global _runtime
    if _runtime:
        _runtime.close()
        _runtime = None


def get_runtime() -> KubernetesRuntime:
    """Get runtime singleton.

    Raises:
        RuntimeError: If called before init_runtime().
    """
    if _runtime is None:
        raise RuntimeError("Runtime not initialized. Call init_runtime() first.")
    return _runtime


def reset_runtime() -> None:
    """Reset runtime singleton (for testing)."""
    global _runtime
    _runtime = None
