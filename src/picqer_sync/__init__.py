"""Picqer warehouse data sync to SQLite with watermarks and run tracking."""

from picqer_sync.scripts.sync import run_sync

__version__ = "0.1.0"

__all__ = ["__version__", "run_sync"]
