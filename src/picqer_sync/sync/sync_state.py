"""Per-entity watermark persistence."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..timestamps import format_timestamp, parse_timestamp, utc_now
from .database import DatabaseManager
from .schema_guard import SYNC_STATE_TABLE

logger = logging.getLogger(__name__)


@dataclass
class SyncStatus:
    """Last known sync outcome for one entity type."""

    last_sync: Optional[datetime] = None
    last_count: int = 0
    last_status: Optional[str] = None


class SyncStateStore:
    """
    Stores the last successful sync watermark per entity type.

    The watermark never moves backwards: advancing to an earlier timestamp
    is ignored.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def get_watermark(self, entity_type: str) -> Optional[datetime]:
        """Watermark for entity, None if it has never been synced."""
        rows = self.db.query(
            f"SELECT watermark FROM {SYNC_STATE_TABLE} WHERE entity_type = ?",  # noqa: S608 - constant table name
            (entity_type,),
        )
        if not rows:
            return None
        return parse_timestamp(rows[0]["watermark"])

    def advance_watermark(
        self,
        entity_type: str,
        timestamp: datetime,
        item_count: int = 0,
        status: str = "completed",
    ) -> bool:
        """
        Move the watermark forward to timestamp.

        The sync bookkeeping (last_sync_time, last_count, last_status) is
        refreshed on every call; the watermark itself only when timestamp
        is not earlier than the stored value.

        Returns:
            True if the stored watermark changed
        """
        new_value = format_timestamp(timestamp)
        now = format_timestamp(utc_now())

        with self.db.transaction() as cursor:
            cursor.execute(
                f"SELECT watermark FROM {SYNC_STATE_TABLE} WHERE entity_type = ?",  # noqa: S608 - constant table name
                (entity_type,),
            )
            row = cursor.fetchone()

            if row is None:
                cursor.execute(
                    f"""
                    INSERT INTO {SYNC_STATE_TABLE}
                    (entity_type, watermark, last_sync_time, last_count, last_status)
                    VALUES (?, ?, ?, ?, ?)
                    """,  # noqa: S608 - constant table name
                    (entity_type, new_value, now, item_count, status),
                )
                return True

            current = parse_timestamp(row["watermark"])
            requested = parse_timestamp(new_value)
            moved = current is None or requested > current
            if current is not None and requested < current:
                logger.warning(
                    "Ignoring watermark regression for %s: %s is earlier than %s",
                    entity_type,
                    new_value,
                    row["watermark"],
                )

            cursor.execute(
                f"""
                UPDATE {SYNC_STATE_TABLE}
                SET watermark = ?, last_sync_time = ?, last_count = ?, last_status = ?
                WHERE entity_type = ?
                """,  # noqa: S608 - constant table name
                (new_value if moved else row["watermark"], now, item_count, status, entity_type),
            )
            return moved

    def get_status(self, entity_type: str) -> SyncStatus:
        rows = self.db.query(
            f"SELECT watermark, last_count, last_status FROM {SYNC_STATE_TABLE} WHERE entity_type = ?",  # noqa: S608 - constant table name
            (entity_type,),
        )
        if not rows:
            return SyncStatus()
        row = rows[0]
        return SyncStatus(
            last_sync=parse_timestamp(row["watermark"]),
            last_count=row["last_count"] or 0,
            last_status=row["last_status"],
        )
