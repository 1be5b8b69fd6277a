"""
Lazy pagination over a source adapter.

The extractor never reads the whole collection into memory: records are
yielded page by page and the next page is only requested once the consumer
has drained the current one.
"""

import logging
import threading
from collections.abc import Iterator
from typing import Optional

from .base import SourceAdapter, SourceRecord

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500
PAGINATION_CURSOR = "cursor"
PAGINATION_OFFSET = "offset"


class ExtractionError(Exception):
    """Raised when the source cannot be paged."""
    pass


class SourceExtractor:
    """
    Yields every record of the source collection in pages of `page_size`.

    Two pagination modes are supported:
    - cursor: each request asks for documents after the last id seen
    - offset: each request skips the number of documents already read

    Termination does not trust the total reported by the source: paging stops
    when a page comes back shorter than requested (or empty).

    Example:
        >>> extractor = SourceExtractor(MockAdapter(num_documents=1200), page_size=500)
        >>> sum(1 for _ in extractor.extract())
        1200
    """

    def __init__(
        self,
        adapter: SourceAdapter,
        page_size: int = DEFAULT_PAGE_SIZE,
        pagination: str = PAGINATION_CURSOR,
    ):
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        if pagination not in (PAGINATION_CURSOR, PAGINATION_OFFSET):
            raise ValueError(f"Unknown pagination mode: {pagination}")

        self.adapter = adapter
        self.page_size = page_size
        self.pagination = pagination
        self.pages_fetched = 0

    def extract(
        self,
        limit: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[SourceRecord]:
        """
        Yield source records lazily.

        Each call starts again from the first page.

        Args:
            limit: Stop after this many records (None for all)
            cancel_event: When set, no further page is requested

        Yields:
            SourceRecord objects in source order

        Raises:
            ExtractionError: If a page cannot be fetched after the adapter's retries
        """
        yielded = 0
        offset = 0
        cursor: Optional[str] = None
        page_number = 0

        logger.info(
            "Starting extraction",
            extra={
                "source": self.adapter.source_name,
                "page_size": self.page_size,
                "pagination": self.pagination,
                "limit": limit,
            },
        )

        while limit is None or yielded < limit:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Extraction cancelled", extra={"records_yielded": yielded})
                return

            request_size = self.page_size
            if limit is not None:
                request_size = min(request_size, limit - yielded)

            page_number += 1
            try:
                if self.pagination == PAGINATION_CURSOR:
                    page = self.adapter.fetch_page(request_size, cursor_after=cursor)
                else:
                    page = self.adapter.fetch_page(request_size, offset=offset)
            except Exception as e:
                logger.error(
                    "Failed to fetch source page",
                    extra={"page": page_number, "offset": offset, "cursor": cursor, "error": str(e)},
                )
                raise ExtractionError(f"Failed to fetch page {page_number}: {e}") from e

            self.pages_fetched += 1
            records = page.records

            logger.debug(
                "Fetched source page",
                extra={
                    "page": page_number,
                    "records": len(records),
                    "reported_total": page.total,
                },
            )

            if not records:
                break

            for record in records:
                yield record
                yielded += 1
                if limit is not None and yielded >= limit:
                    break

            offset += len(records)
            cursor = records[-1].external_id

            if len(records) < request_size:
                break

            if self.pagination == PAGINATION_CURSOR and cursor is None:
                raise ExtractionError(
                    f"Cannot continue cursor pagination: last record on page {page_number} has no id"
                )

        logger.info(
            "Extraction finished",
            extra={"records_yielded": yielded, "pages": page_number},
        )
