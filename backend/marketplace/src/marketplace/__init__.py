"""Marketplace payment reconciliation core."""

__version__ = "0.1.0"
