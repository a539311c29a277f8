"""Checklist-driven document review with an async per-credential task queue."""

__version__ = "0.1.0"
