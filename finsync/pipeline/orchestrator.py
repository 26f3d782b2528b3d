"""Sync orchestrator - drives one Qonto or ClickUp sync run end to end.

Key features:
- Auditable: every run is recorded in external_sync_runs, failures included
- Resilient: a bad record is logged and counted, siblings carry on
- Staggered: new supplier invoices are classified N * min_delay apart
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from finsync.db.models import (
    ClientInvoiceModel,
    ClientModel,
    ExternalSyncRunModel,
    ProjectModel,
    SupplierInvoiceModel,
)
from finsync.models import SyncRunStatus, SyncRunSummary, SyncScope
from finsync.pipeline.mappers import (
    map_client,
    map_client_invoice,
    map_project,
    map_supplier_invoice,
)
from finsync.pipeline.paginator import paginate
from finsync.pipeline.reconciler import RecordReconciler
from finsync.pipeline.types import EntitySyncStats, Page

if TYPE_CHECKING:
    from finsync.core.services import Services

logger = logging.getLogger(__name__)


@dataclass
class _PendingClassification:
    invoice_id: UUID
    attachment_id: str


@dataclass
class SyncRunState:
    """Counters accumulated across all entities of one run."""

    sync_id: UUID
    entities: dict[str, EntitySyncStats] = field(default_factory=dict)
    scheduled: int = 0

    def stats_for(self, entity: SyncScope) -> EntitySyncStats:
        return self.entities.setdefault(entity.value, EntitySyncStats(entity=entity.value))

    @property
    def processed(self) -> int:
        return sum(s.processed for s in self.entities.values())

    @property
    def created(self) -> int:
        return sum(s.created for s in self.entities.values())

    @property
    def updated(self) -> int:
        return sum(s.updated for s in self.entities.values())

    @property
    def skipped(self) -> int:
        return sum(s.skipped for s in self.entities.values())


class SyncOrchestrator:
    """Run paginated syncs for the requested entity types.

    Entity types run sequentially in the order clients, client invoices,
    supplier invoices, so client invoices can link to freshly synced clients.
    The projects scope reads ClickUp folders instead of Qonto.
    Each page is committed on its own; within a page every record runs in a
    savepoint so one failure does not roll back its siblings.
    """

    def __init__(self, services: Services):
        self.services = services
        self.min_delay = services.call_queue.min_delay
        self.per_page = services.config.qonto.per_page

    async def run(self, scope: SyncScope = SyncScope.ALL, force_full_sync: bool = False) -> SyncRunSummary:
        """Execute one sync run.

        Raises:
            ConfigurationError: Qonto or ClickUp credentials missing, before a run is recorded
        """
        fetchers = {entity: self._fetcher(entity) for entity in scope.entities()}
        sync_id = await self._start_run(scope, force_full_sync)
        state = SyncRunState(sync_id=sync_id)

        structlog.contextvars.bind_contextvars(sync_id=str(sync_id))
        logger.info("Starting sync run %s (scope=%s, force_full_sync=%s)", sync_id, scope.value, force_full_sync)

        try:
            for entity in scope.entities():
                await self._sync_entity(entity, fetchers[entity], state)
        except Exception as exc:
            logger.exception("Sync run %s failed", sync_id)
            summary = self._summary(state, SyncRunStatus.FAILED, str(exc) or type(exc).__name__)
        else:
            summary = self._summary(state, SyncRunStatus.COMPLETED)
            logger.info(
                "Sync run %s completed: %d processed, %d created, %d updated, %d skipped, %d classifications",
                sync_id,
                summary.records_processed,
                summary.records_created,
                summary.records_updated,
                summary.records_skipped,
                summary.classifications_scheduled,
            )
        finally:
            structlog.contextvars.unbind_contextvars("sync_id")

        await self._finish_run(summary)
        return summary

    def _fetcher(self, entity: SyncScope) -> Callable[[int, int], Awaitable[Page]]:
        if entity is SyncScope.PROJECTS:
            return self.services.clickup.list_folders
        qonto = self.services.qonto
        return {
            SyncScope.CLIENTS: qonto.list_clients,
            SyncScope.CLIENT_INVOICES: qonto.list_client_invoices,
            SyncScope.SUPPLIER_INVOICES: qonto.list_supplier_invoices,
        }[entity]

    async def _start_run(self, scope: SyncScope, force_full_sync: bool) -> UUID:
        async with self.services.session_scope() as session:
            run = ExternalSyncRunModel(
                entity_scope=scope.value,
                status=SyncRunStatus.STARTED.value,
                force_full_sync=force_full_sync,
                started_at=datetime.now(timezone.utc),
            )
            session.add(run)
            await session.flush()
            return run.id

    async def _finish_run(self, summary: SyncRunSummary) -> None:
        async with self.services.session_scope() as session:
            run = await session.get(ExternalSyncRunModel, summary.sync_id)
            run.status = summary.status.value
            run.records_processed = summary.records_processed
            run.records_created = summary.records_created
            run.records_updated = summary.records_updated
            run.records_skipped = summary.records_skipped
            run.classifications_scheduled = summary.classifications_scheduled
            run.error_message = summary.error_message
            run.completed_at = datetime.now(timezone.utc)

    async def _sync_entity(
        self,
        entity: SyncScope,
        fetch_page: Callable[[int, int], Awaitable[Page]],
        state: SyncRunState,
    ) -> None:
        stats = state.stats_for(entity)
        logger.info("Syncing %s", entity.value)

        async for page in paginate(fetch_page, per_page=self.per_page, entity=entity.value):
            stats.processed += len(page.items)
            synced_at = datetime.now(timezone.utc)
            new_documents: list[_PendingClassification] = []

            async with self.services.session_scope() as session:
                reconciler = RecordReconciler(session)
                for record in page.items:
                    try:
                        async with session.begin_nested():
                            pending = await self._reconcile_one(
                                entity, reconciler, record, synced_at, stats
                            )
                    except Exception as exc:
                        stats.failed += 1
                        logger.error(
                            "Failed to reconcile %s record %s: %s",
                            entity.value,
                            record.get("id"),
                            exc,
                        )
                        continue
                    if pending is not None:
                        new_documents.append(pending)

            # Scheduled after commit so the job can read the row
            for pending in new_documents:
                await self._schedule(pending, state, stats)

        logger.info(
            "Synced %s: %d processed, %d created, %d updated, %d skipped, %d failed",
            entity.value,
            stats.processed,
            stats.created,
            stats.updated,
            stats.skipped,
            stats.failed,
        )

    async def _reconcile_one(
        self,
        entity: SyncScope,
        reconciler: RecordReconciler,
        record: dict[str, Any],
        synced_at: datetime,
        stats: EntitySyncStats,
    ) -> _PendingClassification | None:
        if entity is SyncScope.PROJECTS:
            project = map_project(record, synced_at)
            if project is None:
                stats.skipped += 1
                logger.debug("Skipping hidden or unnamed ClickUp folder %s", record.get("id"))
            else:
                stats.record(await reconciler.reconcile_project(project))
            return None

        if entity is SyncScope.CLIENTS:
            stats.record(await reconciler.reconcile_client(map_client(record, synced_at)))
            return None

        if entity is SyncScope.CLIENT_INVOICES:
            stats.record(await reconciler.reconcile_client_invoice(map_client_invoice(record, synced_at)))
            return None

        mapped = map_supplier_invoice(record, synced_at)
        if mapped is None:
            stats.skipped += 1
            logger.debug("Skipping supplier invoice %s without IBAN", record.get("id"))
            return None

        result = await reconciler.reconcile_supplier_invoice(mapped)
        stats.record(result)
        attachment_id = mapped.fields.get("document_attachment_id")
        if result.was_created and attachment_id:
            return _PendingClassification(result.local_id, attachment_id)
        return None

    async def _schedule(
        self, pending: _PendingClassification, state: SyncRunState, stats: EntitySyncStats
    ) -> None:
        delay = state.scheduled * self.min_delay
        await self.services.scheduler.schedule(pending.invoice_id, pending.attachment_id, delay)
        state.scheduled += 1
        stats.classifications_scheduled += 1

    @staticmethod
    def _summary(
        state: SyncRunState, status: SyncRunStatus, error_message: str | None = None
    ) -> SyncRunSummary:
        return SyncRunSummary(
            sync_id=state.sync_id,
            status=status,
            records_processed=state.processed,
            records_created=state.created,
            records_updated=state.updated,
            records_skipped=state.skipped,
            classifications_scheduled=state.scheduled,
            error_message=error_message,
        )


async def run_sync(
    services: Services, scope: SyncScope = SyncScope.ALL, force_full_sync: bool = False
) -> SyncRunSummary:
    """Convenience wrapper for one-off runs."""
    return await SyncOrchestrator(services).run(scope, force_full_sync)


async def sync_status(session: AsyncSession, limit: int = 10) -> dict[str, Any]:
    """Recent runs, last successful completion and local totals per entity."""
    runs = (
        await session.scalars(
            select(ExternalSyncRunModel)
            .order_by(ExternalSyncRunModel.started_at.desc())
            .limit(limit)
        )
    ).all()

    last_completed = await session.scalar(
        select(func.max(ExternalSyncRunModel.completed_at)).where(
            ExternalSyncRunModel.status == SyncRunStatus.COMPLETED.value
        )
    )

    totals = {}
    for entity, model in (
        (SyncScope.CLIENTS, ClientModel),
        (SyncScope.CLIENT_INVOICES, ClientInvoiceModel),
        (SyncScope.SUPPLIER_INVOICES, SupplierInvoiceModel),
        (SyncScope.PROJECTS, ProjectModel),
    ):
        totals[entity.value] = await session.scalar(
            select(func.count()).select_from(model).where(model.external_id.is_not(None))
        )

    return {
        "recent_runs": [
            {
                "sync_id": str(run.id),
                "entity_scope": run.entity_scope,
                "status": run.status,
                "force_full_sync": run.force_full_sync,
                "records_processed": run.records_processed,
                "records_created": run.records_created,
                "records_updated": run.records_updated,
                "records_skipped": run.records_skipped,
                "classifications_scheduled": run.classifications_scheduled,
                "started_at": run.started_at.isoformat() if run.started_at else None,
                "completed_at": run.completed_at.isoformat() if run.completed_at else None,
                "error_message": run.error_message,
            }
            for run in runs
        ],
        "last_successful_sync": last_completed.isoformat() if last_completed else None,
        "totals": totals,
    }
