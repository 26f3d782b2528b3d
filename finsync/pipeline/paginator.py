"""Page-walking over Qonto list endpoints.

Pages are streamed to the caller one at a time so a large sync never holds
more than one page in memory.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from finsync.pipeline.types import Page

logger = logging.getLogger(__name__)

FetchPage = Callable[[int, int], Awaitable[Page]]


async def paginate(
    fetch_page: FetchPage,
    per_page: int = 100,
    entity: str = "records",
    cancel_event: asyncio.Event | None = None,
    max_pages: int | None = None,
) -> AsyncIterator[Page]:
    """Yield pages starting at 1 until ``meta.next_page`` is empty.

    A fetch failure propagates out of the generator and ends the walk for
    this entity; pages already yielded stay yielded.

    Args:
        fetch_page: ``(page, per_page) -> Page``
        per_page: Page size requested from the API
        entity: Name used in log lines
        cancel_event: Checked between pages; set it to stop after the current page
        max_pages: Stop after this many pages even if more are advertised
    """
    page_number: int | None = 1
    fetched = 0

    while page_number is not None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Pagination of %s cancelled before page %d", entity, page_number)
            return
        if max_pages is not None and fetched >= max_pages:
            logger.warning("Pagination of %s stopped at max_pages=%d", entity, max_pages)
            return

        page = await fetch_page(page_number, per_page)
        fetched += 1

        meta = page.meta
        total_pages = meta.total_pages if meta.total_pages is not None else "?"
        total_count = meta.total_count if meta.total_count is not None else "?"
        logger.info(
            "Fetched %s page %d/%s (%d items, %s total)",
            entity,
            page_number,
            total_pages,
            len(page.items),
            total_count,
        )

        yield page

        next_page = meta.next_page
        if next_page is not None and next_page <= page_number:
            logger.warning(
                "Ignoring non-advancing next_page=%s for %s after page %d",
                next_page,
                entity,
                page_number,
            )
            next_page = None
        page_number = next_page
