"""Cardboom multi-source trading card price reconciliation engine."""

__version__ = "1.0.0"
