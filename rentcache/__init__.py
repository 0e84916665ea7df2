"""Offline-first local cache and synchronization core for a car rental client."""

__version__ = "0.1.0"
