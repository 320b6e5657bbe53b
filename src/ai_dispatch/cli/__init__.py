"""Command-line interface for ai-dispatch."""
