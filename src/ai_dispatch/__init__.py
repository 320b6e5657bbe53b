"""ai-dispatch: unified AI provider dispatch with role failover."""

__version__ = "0.1.0"
