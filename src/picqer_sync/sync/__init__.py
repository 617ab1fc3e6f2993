"""Sync engine components: schema guard, fetcher, writer, state and progress tracking."""
