"""Offline-first sync engine for appointment-tagged audio recordings."""

__version__ = "0.1.0"
