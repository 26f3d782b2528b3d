"""Tests for the Qonto page walker."""

from __future__ import annotations

import asyncio
import logging

import pytest

from finsync.pipeline.paginator import paginate
from finsync.pipeline.types import Page, PageMeta


def _fetcher(pages: dict[int, Page], calls: list, fail_on: int | None = None):
    async def fetch(page: int, per_page: int) -> Page:
        calls.append((page, per_page))
        if page == fail_on:
            raise RuntimeError(f"page {page} exploded")
        return pages[page]

    return fetch


def _page(number: int, next_page: int | None, total_pages=3, total_count=5, n_items=2) -> Page:
    return Page(
        items=[{"id": f"{number}-{i}"} for i in range(n_items)],
        meta=PageMeta(
            current_page=number,
            next_page=next_page,
            total_pages=total_pages,
            total_count=total_count,
        ),
    )


async def _collect(gen) -> list[Page]:
    return [page async for page in gen]


@pytest.mark.asyncio
async def test_follows_next_page_until_none():
    pages = {1: _page(1, 2), 2: _page(2, 3), 3: _page(3, None, n_items=1)}
    calls: list = []

    result = await _collect(paginate(_fetcher(pages, calls), per_page=2, entity="clients"))

    assert [p.meta.current_page for p in result] == [1, 2, 3]
    assert calls == [(1, 2), (2, 2), (3, 2)]


@pytest.mark.asyncio
async def test_fetch_failure_propagates_after_earlier_pages():
    pages = {1: _page(1, 2), 2: _page(2, 3), 3: _page(3, None)}
    calls: list = []
    seen: list[Page] = []

    with pytest.raises(RuntimeError, match="page 2 exploded"):
        async for page in paginate(_fetcher(pages, calls, fail_on=2)):
            seen.append(page)

    assert len(seen) == 1
    assert [c[0] for c in calls] == [1, 2]  # page 3 never fetched


@pytest.mark.asyncio
async def test_missing_totals_logged_as_question_mark(caplog):
    pages = {1: _page(1, None, total_pages=None, total_count=None)}

    with caplog.at_level(logging.INFO, logger="finsync.pipeline.paginator"):
        await _collect(paginate(_fetcher(pages, []), entity="supplier_invoices"))

    assert "Fetched supplier_invoices page 1/? (2 items, ? total)" in caplog.text


@pytest.mark.asyncio
async def test_non_advancing_next_page_stops():
    pages = {1: _page(1, 2), 2: _page(2, 2)}
    calls: list = []

    result = await _collect(paginate(_fetcher(pages, calls)))

    assert len(result) == 2
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_cancel_event_stops_between_pages():
    pages = {1: _page(1, 2), 2: _page(2, 3), 3: _page(3, None)}
    calls: list = []
    cancel = asyncio.Event()

    seen = []
    async for page in paginate(_fetcher(pages, calls), cancel_event=cancel):
        seen.append(page)
        cancel.set()

    assert len(seen) == 1
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_max_pages_guard():
    pages = {n: _page(n, n + 1) for n in range(1, 10)}
    calls: list = []

    result = await _collect(paginate(_fetcher(pages, calls), max_pages=3))

    assert len(result) == 3
    assert len(calls) == 3
