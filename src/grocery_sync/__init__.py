"""Offline-first synchronization engine for shopping lists, items and stores."""

__version__ = "0.4.0"
