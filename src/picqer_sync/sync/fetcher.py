"""Offset/limit pagination over Picqer list endpoints."""

import logging
from datetime import datetime
from typing import Any, AsyncIterator, Optional

from ..config import DEFAULT_PAGE_SIZE, DEFAULT_SAFETY_CEILING
from ..errors import PicqerAPIError
from ..timestamps import format_picqer_filter
from ..type_mapping import EntityManifest

logger = logging.getLogger(__name__)


class RecordStream:
    """
    Lazy, single-use stream of upstream records for one entity.

    Pages are requested one at a time as the stream is consumed. Fetch
    diagnostics are available on the stream once it has been iterated.
    """

    def __init__(
        self,
        client,
        entity: EntityManifest,
        params: dict[str, Any],
        page_size: int,
        safety_ceiling: int,
    ):
        self.client = client
        self.entity = entity
        self.params = params
        self.page_size = page_size
        self.safety_ceiling = safety_ceiling

        self.pages_requested = 0
        self.pages_failed = 0
        self.records_scanned = 0
        self.duplicates_skipped = 0
        self.ceiling_reached = False
        self.exhausted = False
        self._started = False

    @property
    def degraded(self) -> bool:
        """True if the stream may have missed records (failed pages or ceiling hit)."""
        return self.pages_failed > 0 or self.ceiling_reached

    def __aiter__(self) -> AsyncIterator[dict]:
        if self._started:
            msg = f"Record stream for {self.entity.name} has already been consumed"
            raise RuntimeError(msg)
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict]:
        endpoint = self.entity.endpoint
        natural_key = self.entity.natural_key
        seen = set()
        offset = 0

        while True:
            if offset >= self.safety_ceiling:
                self.ceiling_reached = True
                logger.warning(
                    "Safety ceiling of %d records reached for %s, stopping pagination",
                    self.safety_ceiling,
                    self.entity.name,
                )
                break

            self.pages_requested += 1
            try:
                page = await self.client.get_page(endpoint, offset, self.page_size, self.params)
            except PicqerAPIError as e:
                # Skip the page and keep going; the run is marked degraded
                self.pages_failed += 1
                logger.warning("Failed to fetch %s at offset %d: %s", endpoint, offset, e)
                offset += self.page_size
                continue

            if not isinstance(page, list):
                logger.warning(
                    "Unexpected %s response from %s at offset %d, stopping",
                    type(page).__name__,
                    endpoint,
                    offset,
                )
                break

            if not page:
                break

            self.records_scanned += len(page)
            for record in page:
                key = record.get(natural_key) if isinstance(record, dict) else None
                if isinstance(key, (int, str)):
                    if key in seen:
                        self.duplicates_skipped += 1
                        continue
                    seen.add(key)
                yield record

            if len(page) < self.page_size:
                break
            offset += self.page_size

        self.exhausted = True
        logger.debug(
            "Fetched %s: %d pages (%d failed), %d records scanned",
            self.entity.name,
            self.pages_requested,
            self.pages_failed,
            self.records_scanned,
        )


class PaginatedFetcher:
    """Builds record streams over Picqer list endpoints."""

    def __init__(
        self,
        client,
        page_size: int = DEFAULT_PAGE_SIZE,
        safety_ceiling: int = DEFAULT_SAFETY_CEILING,
    ):
        """
        Args:
            client: Object with an async get_page(endpoint, offset, limit, params)
            page_size: Records requested per page
            safety_ceiling: Offset at which pagination stops regardless of the response
        """
        if page_size <= 0:
            msg = "page_size must be positive"
            raise ValueError(msg)
        self.client = client
        self.page_size = page_size
        self.safety_ceiling = safety_ceiling

    def build_params(self, entity: EntityManifest, since: Optional[datetime]) -> dict[str, Any]:
        params = {}
        if since is not None:
            if entity.supports_incremental:
                params[entity.updated_filter] = format_picqer_filter(since)
            else:
                logger.debug("%s has no incremental filter, fetching everything", entity.name)
        return params

    def fetch_all(self, entity: EntityManifest, since: Optional[datetime] = None) -> RecordStream:
        """
        Stream every record of an entity, optionally only those updated after since.

        Nothing is requested until the returned stream is iterated.
        """
        return RecordStream(
            self.client,
            entity,
            self.build_params(entity, since),
            self.page_size,
            self.safety_ceiling,
        )
