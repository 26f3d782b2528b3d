"""Insert-or-update of external records keyed by external id.

Two reconciles of the same external id may race (a manual sync overlapping a
scheduled one), so inserts go through ``ON CONFLICT DO NOTHING`` where the
dialect supports it and fall back to an update when the other writer won.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import delete, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from finsync.db.models import (
    ClientInvoiceLineItemModel,
    ClientInvoiceModel,
    ClientModel,
    ProjectModel,
    SupplierInvoiceModel,
)
from finsync.pipeline.mappers import ClientInvoiceRecord
from finsync.pipeline.types import MappedRecord, ReconcileResult

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class RecordReconciler:
    """Reconcile mapped external records against local rows."""

    def __init__(self, session: AsyncSession):
        """Initialize reconciler with database session.

        Args:
            session: Active async SQLAlchemy session
        """
        self.session = session

    @property
    def dialect_name(self) -> str:
        return self.session.get_bind().dialect.name

    async def reconcile(self, model: Any, record: MappedRecord) -> ReconcileResult:
        """Insert ``record`` or update the row with the same external id.

        Only ``record.fields`` are written to an existing row;
        ``record.insert_only`` values are applied on creation.
        """
        existing_id = await self._find(model, record.external_id)
        if existing_id is not None:
            await self._update(model, existing_id, record)
            return ReconcileResult(local_id=existing_id, was_created=False)

        inserted_id = await self._insert(model, record)
        if inserted_id is not None:
            return ReconcileResult(local_id=inserted_id, was_created=True)

        # A concurrent reconcile inserted the same external id first
        existing_id = await self._find(model, record.external_id)
        if existing_id is None:
            raise RuntimeError(
                f"{model.__tablename__}: insert of {record.external_id} conflicted "
                "but no row was found"
            )
        logger.info(
            "Concurrent insert detected for %s %s, updating instead",
            model.__tablename__,
            record.external_id,
        )
        await self._update(model, existing_id, record)
        return ReconcileResult(local_id=existing_id, was_created=False)

    async def _find(self, model: Any, external_id: str) -> UUID | None:
        return await self.session.scalar(
            select(model.id).where(model.external_id == external_id)
        )

    async def _update(self, model: Any, local_id: UUID, record: MappedRecord) -> None:
        await self.session.execute(
            update(model)
            .where(model.id == local_id)
            .values(**record.fields)
            .execution_options(synchronize_session=False)
        )

    async def _insert(self, model: Any, record: MappedRecord) -> UUID | None:
        values = {
            "id": uuid4(),
            "external_id": record.external_id,
            **record.insert_only,
            **record.fields,
        }

        dialect_insert = _UPSERT_INSERTS.get(self.dialect_name)
        if dialect_insert is not None:
            stmt = (
                dialect_insert(model)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["external_id"])
                .returning(model.id)
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

        try:
            async with self.session.begin_nested():
                await self.session.execute(insert(model).values(**values))
        except IntegrityError:
            return None
        return values["id"]

    # Entity-specific entry points

    async def reconcile_client(self, record: MappedRecord) -> ReconcileResult:
        return await self.reconcile(ClientModel, record)

    async def reconcile_client_invoice(self, invoice: ClientInvoiceRecord) -> ReconcileResult:
        """Resolve client and project links, reconcile, then replace line items."""
        client_id = None
        project_id = None
        if invoice.client_external_id:
            client_id = await self._find(ClientModel, invoice.client_external_id)
        if client_id is not None and invoice.client_name:
            project_id = await self.session.scalar(
                select(ProjectModel.id)
                .where(ProjectModel.client_name == invoice.client_name)
                .order_by(ProjectModel.created_at)
                .limit(1)
            )
            if project_id is not None:
                logger.info(
                    "Auto-linking client invoice %s to project %s for client %r",
                    invoice.mapped.external_id,
                    project_id,
                    invoice.client_name,
                )

        record = MappedRecord(
            external_id=invoice.mapped.external_id,
            fields={**invoice.mapped.fields, "client_id": client_id, "project_id": project_id},
            insert_only=invoice.mapped.insert_only,
        )
        result = await self.reconcile(ClientInvoiceModel, record)

        if invoice.line_items is not None:
            await self._replace_line_items(result.local_id, invoice.line_items)

        return result

    async def _replace_line_items(self, invoice_id: UUID, lines: list[dict[str, Any]]) -> None:
        await self.session.execute(
            delete(ClientInvoiceLineItemModel).where(
                ClientInvoiceLineItemModel.client_invoice_id == invoice_id
            )
        )
        if lines:
            await self.session.execute(
                insert(ClientInvoiceLineItemModel),
                [{"id": uuid4(), "client_invoice_id": invoice_id, **line} for line in lines],
            )

    async def reconcile_supplier_invoice(self, record: MappedRecord) -> ReconcileResult:
        return await self.reconcile(SupplierInvoiceModel, record)

    async def reconcile_project(self, record: MappedRecord) -> ReconcileResult:
        """Reconcile a ClickUp folder, adopting a local project of the same name.

        A project created by hand before the first project sync gets the
        folder id attached instead of colliding on the unique name.
        """
        if await self._find(ProjectModel, record.external_id) is None:
            local_id = await self.session.scalar(
                select(ProjectModel.id).where(
                    ProjectModel.name == record.fields["name"],
                    ProjectModel.external_id.is_(None),
                )
            )
            if local_id is not None:
                logger.info(
                    "Linking local project %s to ClickUp folder %s",
                    local_id,
                    record.external_id,
                )
                await self.session.execute(
                    update(ProjectModel)
                    .where(ProjectModel.id == local_id)
                    .values(external_id=record.external_id)
                    .execution_options(synchronize_session=False)
                )
        return await self.reconcile(ProjectModel, record)
