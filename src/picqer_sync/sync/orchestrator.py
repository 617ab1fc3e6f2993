"""Coordinates one sync run per entity type."""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from ..config import DEFAULT_LOOKBACK_DAYS
from ..errors import RecordError, UnknownEntityError
from ..timestamps import utc_now
from ..type_mapping import EntityManifest
from .fetcher import PaginatedFetcher
from .progress import ProgressTracker
from .schema_guard import SchemaGuard
from .sync_state import SyncStateStore, SyncStatus
from .upsert import UpsertWriter

logger = logging.getLogger(__name__)


class SyncPhase(Enum):
    IDLE = "idle"
    DETERMINING_WINDOW = "determining_window"
    FETCHING = "fetching"
    WRITING = "writing"
    ADVANCING = "advancing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Outcome of one sync run."""

    success: bool
    items_processed: int = 0
    duration_ms: int = 0
    error: Optional[str] = None
    run_id: Optional[str] = None
    items_failed: int = 0
    children_processed: int = 0
    children_failed: int = 0
    degraded: bool = False
    window_start: Optional[datetime] = None
    phase: SyncPhase = SyncPhase.IDLE


class SyncOrchestrator:
    """
    Runs the sync pipeline for an entity type.

    determine window -> fetch pages -> upsert records -> advance watermark,
    with every run recorded in the progress table. Runs of the same entity
    type are serialized; different entity types may run concurrently.
    """

    def __init__(
        self,
        manifests: dict[str, EntityManifest],
        schema_guard: SchemaGuard,
        state_store: SyncStateStore,
        progress: ProgressTracker,
        fetcher: PaginatedFetcher,
        writer: UpsertWriter,
        default_lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    ):
        self.manifests = manifests
        self.schema_guard = schema_guard
        self.state_store = state_store
        self.progress = progress
        self.fetcher = fetcher
        self.writer = writer
        self.default_lookback_days = default_lookback_days
        self._locks: dict[str, asyncio.Lock] = {}

    def get_manifest(self, entity_type: str) -> EntityManifest:
        try:
            return self.manifests[entity_type]
        except KeyError:
            known = ", ".join(sorted(self.manifests))
            msg = f"Unknown entity type '{entity_type}' (known: {known})"
            raise UnknownEntityError(msg) from None

    def _lock_for(self, entity_type: str) -> asyncio.Lock:
        if entity_type not in self._locks:
            self._locks[entity_type] = asyncio.Lock()
        return self._locks[entity_type]

    def determine_window(self, entity_type: str, full: bool = False, days: Optional[int] = None) -> Optional[datetime]:
        """
        Lower bound of the fetch window.

        full ignores the watermark entirely; days looks back that many days
        from now; otherwise the stored watermark is used, falling back to the
        default lookback for entities never synced.
        """
        if full:
            return None
        now = utc_now()
        if days is not None:
            return now - timedelta(days=days)
        watermark = self.state_store.get_watermark(entity_type)
        if watermark is not None:
            return watermark
        return now - timedelta(days=self.default_lookback_days)

    async def run_sync(self, entity_type: str, full: bool = False, days: Optional[int] = None) -> SyncResult:
        """
        Sync one entity type.

        Returns:
            SyncResult describing the run

        Raises:
            UnknownEntityError: If entity_type has no manifest (nothing is recorded)
            SchemaError: If the storage shape could not be ensured (run recorded as failed)
            Exception: Any error escaping the fetch (run recorded as failed)
        """
        manifest = self.get_manifest(entity_type)

        async with self._lock_for(entity_type):
            return await self._run(manifest, full, days)

    async def _run(self, manifest: EntityManifest, full: bool, days: Optional[int]) -> SyncResult:
        started = time.monotonic()
        entity_type = manifest.name
        phase = SyncPhase.DETERMINING_WINDOW

        self.schema_guard.ensure_sync_tables()
        run_id = self.progress.start(entity_type)
        result = SyncResult(success=False, run_id=run_id, phase=phase)

        try:
            window_start = self.determine_window(entity_type, full=full, days=days)
            result.window_start = window_start
            if window_start is not None:
                self.progress.set_window(run_id, window_start)

            logger.info(
                "Syncing %s (run %s) since %s",
                entity_type,
                run_id,
                window_start.isoformat() if window_start else "the beginning",
            )

            self.schema_guard.ensure(manifest)

            phase = SyncPhase.FETCHING
            fetch_started_at = utc_now()
            stream = self.fetcher.fetch_all(manifest, window_start)
            records = [record async for record in stream]
            result.degraded = stream.degraded

            phase = SyncPhase.WRITING
            for record in records:
                try:
                    write = self.writer.save_record(manifest, record)
                except RecordError as e:
                    result.items_failed += 1
                    logger.warning("Failed to save %s record: %s", entity_type, e)
                    continue
                result.items_processed += 1
                result.children_processed += write.children_saved
                result.children_failed += write.children_failed

            phase = SyncPhase.ADVANCING
            self.state_store.advance_watermark(
                entity_type,
                fetch_started_at,
                item_count=result.items_processed,
                status="completed",
            )
            self.progress.complete(
                run_id,
                result.items_processed,
                items_failed=result.items_failed,
                degraded=result.degraded,
            )

        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.error("Sync of %s failed during %s: %s", entity_type, phase.value, error)
            try:
                self.progress.fail(run_id, error)
            except Exception as bookkeeping_error:
                logger.error("Could not record failure of run %s: %s", run_id, bookkeeping_error)
            result.error = error
            result.phase = SyncPhase.FAILED
            result.duration_ms = int((time.monotonic() - started) * 1000)
            raise

        result.success = True
        result.phase = SyncPhase.COMPLETED
        result.duration_ms = int((time.monotonic() - started) * 1000)

        logger.info(
            "Synced %s: %d records (%d failed), %d children (%d failed)%s in %dms",
            entity_type,
            result.items_processed,
            result.items_failed,
            result.children_processed,
            result.children_failed,
            ", degraded" if result.degraded else "",
            result.duration_ms,
        )
        return result

    async def sync_all(
        self,
        entity_types: Optional[list[str]] = None,
        full: bool = False,
        days: Optional[int] = None,
    ) -> dict[str, SyncResult]:
        """
        Sync several entity types concurrently.

        Unknown entity types raise UnknownEntityError before anything runs.
        A run-level failure of one entity is returned as a failed SyncResult
        and does not stop the others.
        """
        names = list(entity_types) if entity_types else list(self.manifests)
        for name in names:
            self.get_manifest(name)

        outcomes = await asyncio.gather(
            *(self.run_sync(name, full=full, days=days) for name in names),
            return_exceptions=True,
        )

        results = {}
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, Exception):
                results[name] = SyncResult(
                    success=False,
                    error=f"{type(outcome).__name__}: {outcome}",
                    phase=SyncPhase.FAILED,
                )
            else:
                results[name] = outcome
        return results

    def get_status(self, entity_type: str) -> SyncStatus:
        """
        Last watermark and item count for an entity type.

        last_status is the status of the most recent run, so a failed run
        shows up even though it left the watermark untouched.
        """
        self.get_manifest(entity_type)
        self.schema_guard.ensure_sync_tables()
        status = self.state_store.get_status(entity_type)
        latest = self.progress.latest_run(entity_type)
        if latest is not None:
            status.last_status = latest.status
        return status
