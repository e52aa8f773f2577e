"""Facility record crawler and multi-source reconciliation engine."""

__version__ = "1.0.0"
