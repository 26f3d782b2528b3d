"""Type definitions for sync pipeline operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID


@dataclass
class PageMeta:
    """Pagination metadata returned with every list page."""

    current_page: int
    next_page: Optional[int] = None
    prev_page: Optional[int] = None
    total_pages: Optional[int] = None
    total_count: Optional[int] = None
    per_page: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, requested_page: int) -> PageMeta:
        data = data or {}
        return cls(
            current_page=data.get("current_page") or requested_page,
            next_page=data.get("next_page"),
            prev_page=data.get("prev_page"),
            total_pages=data.get("total_pages"),
            total_count=data.get("total_count"),
            per_page=data.get("per_page"),
        )


@dataclass
class Page:
    """One page of raw external records."""

    items: list[dict[str, Any]]
    meta: PageMeta


@dataclass
class MappedRecord:
    """External record mapped to local column values.

    ``insert_only`` fields are written when the row is created and never
    overwritten by a later reconcile.
    """

    external_id: str
    fields: dict[str, Any]
    insert_only: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReconcileResult:
    """Outcome of reconciling one external record."""

    local_id: UUID
    was_created: bool


@dataclass
class EntitySyncStats:
    """Counters for one entity type within a sync run."""

    entity: str
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    classifications_scheduled: int = 0

    def record(self, result: ReconcileResult) -> None:
        if result.was_created:
            self.created += 1
        else:
            self.updated += 1
