"""Resilience and coordination layer for issue-driven coding workers."""

__version__ = "0.1.0"
