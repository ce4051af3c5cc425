"""Per-team challenge instance deployer."""

__version__ = "0.1.0"
