"""Exception types raised by the sync engine."""


class SyncError(Exception):
    """Base class for sync engine errors."""


class SchemaError(SyncError):
    """Storage shape could not be created or verified. Fatal to a run."""


class RecordError(SyncError):
    """A single upstream record could not be merged into storage."""


class UnknownEntityError(SyncError, KeyError):
    """Entity type has no manifest."""

    def __str__(self):
        return str(self.args[0]) if self.args else "Unknown entity type"


class ProgressError(SyncError):
    """Progress record bookkeeping failed."""


class RunNotFoundError(ProgressError):
    """No progress record exists for the given run id."""


class RunAlreadyFinishedError(ProgressError):
    """The run already reached a terminal status."""


class PicqerAPIError(SyncError, RuntimeError):
    """Upstream request failed (transport error, bad status or undecodable body)."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status
