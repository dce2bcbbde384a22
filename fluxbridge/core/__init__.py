"""Core reconciliation engine: artifacts, polling, apply, diff and delete."""
