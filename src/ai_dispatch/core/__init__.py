"""Core dispatch layer: provider registry, role resolution, retry and failover."""
