"""Run-level progress records for sync auditing."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..errors import RunAlreadyFinishedError, RunNotFoundError
from ..timestamps import format_timestamp, parse_timestamp, utc_now
from .database import DatabaseManager
from .schema_guard import SYNC_PROGRESS_TABLE

logger = logging.getLogger(__name__)

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

MAX_ERROR_LENGTH = 4000


@dataclass
class ProgressRecord:
    """One sync run as stored in _sync_progress."""

    run_id: str
    entity_type: str
    status: str
    started_at: Optional[datetime]
    ended_at: Optional[datetime] = None
    item_count: int = 0
    items_failed: int = 0
    degraded: bool = False
    window_start: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (STATUS_COMPLETED, STATUS_FAILED)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    @classmethod
    def from_row(cls, row) -> "ProgressRecord":
        return cls(
            run_id=row["run_id"],
            entity_type=row["entity_type"],
            status=row["status"],
            started_at=parse_timestamp(row["started_at"]),
            ended_at=parse_timestamp(row["ended_at"]),
            item_count=row["item_count"] or 0,
            items_failed=row["items_failed"] or 0,
            degraded=bool(row["degraded"]),
            window_start=parse_timestamp(row["window_start"]),
            error_message=row["error_message"],
        )


class ProgressTracker:
    """
    Records the lifecycle of every sync run.

    A run starts as in_progress and moves exactly once to completed or
    failed. Terminal records are never updated again.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def start(self, entity_type: str, window_start: Optional[datetime] = None) -> str:
        """Create an in_progress record and return its run id."""
        run_id = uuid.uuid4().hex
        self.db.execute(
            f"""
            INSERT INTO {SYNC_PROGRESS_TABLE}
            (run_id, entity_type, status, started_at, window_start)
            VALUES (?, ?, ?, ?, ?)
            """,  # noqa: S608 - constant table name
            (
                run_id,
                entity_type,
                STATUS_IN_PROGRESS,
                format_timestamp(utc_now()),
                format_timestamp(window_start) if window_start else None,
            ),
        )
        logger.debug("Started run %s for %s", run_id, entity_type)
        return run_id

    def set_window(self, run_id: str, window_start: datetime):
        """Record the lower bound of an in_progress run's fetch window."""
        cursor = self.db.execute(
            f"UPDATE {SYNC_PROGRESS_TABLE} SET window_start = ? WHERE run_id = ? AND status = ?",  # noqa: S608 - constant table name
            (format_timestamp(window_start), run_id, STATUS_IN_PROGRESS),
        )
        if cursor.rowcount != 1:
            msg = f"No in_progress sync run with id {run_id}"
            raise RunNotFoundError(msg)

    def complete(self, run_id: str, item_count: int, items_failed: int = 0, degraded: bool = False):
        """
        Mark a run completed.

        Raises:
            RunNotFoundError: If no run has this id
            RunAlreadyFinishedError: If the run already completed or failed
        """
        self._finish(
            run_id,
            STATUS_COMPLETED,
            "item_count = ?, items_failed = ?, degraded = ?",
            (item_count, items_failed, 1 if degraded else 0),
        )

    def fail(self, run_id: str, error: str):
        """
        Mark a run failed, keeping at most MAX_ERROR_LENGTH characters of the error.

        Raises:
            RunNotFoundError: If no run has this id
            RunAlreadyFinishedError: If the run already completed or failed
        """
        message = str(error)[:MAX_ERROR_LENGTH]
        self._finish(run_id, STATUS_FAILED, "error_message = ?", (message,))

    def _finish(self, run_id: str, status: str, assignments: str, params: tuple):
        # Conditional on in_progress so two terminal calls cannot both win
        cursor = self.db.execute(
            f"""
            UPDATE {SYNC_PROGRESS_TABLE}
            SET status = ?, ended_at = ?, {assignments}
            WHERE run_id = ? AND status = ?
            """,  # noqa: S608 - constant table name and fixed assignments
            (status, format_timestamp(utc_now()), *params, run_id, STATUS_IN_PROGRESS),
        )
        if cursor.rowcount == 1:
            return

        record = self.get_run(run_id)
        if record is None:
            msg = f"No sync run with id {run_id}"
            raise RunNotFoundError(msg)
        msg = f"Sync run {run_id} already {record.status}"
        raise RunAlreadyFinishedError(msg)

    def get_run(self, run_id: str) -> Optional[ProgressRecord]:
        rows = self.db.query(
            f"SELECT * FROM {SYNC_PROGRESS_TABLE} WHERE run_id = ?",  # noqa: S608 - constant table name
            (run_id,),
        )
        return ProgressRecord.from_row(rows[0]) if rows else None

    def list_runs(
        self,
        entity_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> list[ProgressRecord]:
        """Runs newest first, optionally filtered by entity type and status."""
        clauses = []
        params: list = []
        if entity_type:
            clauses.append("entity_type = ?")
            params.append(entity_type)
        if status:
            clauses.append("status = ?")
            params.append(status)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        rows = self.db.query(
            f"SELECT * FROM {SYNC_PROGRESS_TABLE} {where} ORDER BY started_at DESC, id DESC LIMIT ?",  # noqa: S608 - filters parameterized
            tuple(params),
        )
        return [ProgressRecord.from_row(row) for row in rows]

    def latest_run(self, entity_type: str) -> Optional[ProgressRecord]:
        runs = self.list_runs(entity_type=entity_type, limit=1)
        return runs[0] if runs else None
