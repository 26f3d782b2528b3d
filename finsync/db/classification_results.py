"""Persistence helpers for classification results."""

from __future__ import annotations

from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from finsync.db.models import ClassificationResultModel
from finsync.models import (
    VISION_PROJECT_MATCHING,
    ClassificationResult,
    InvoiceDetails,
    ProcessingStatus,
    ProjectMatch,
)

_UPDATABLE = (
    "extracted_text",
    "confidence_score",
    "project_matches",
    "invoice_details",
    "processing_status",
    "processing_time_ms",
    "error_message",
    "processed_at",
)


def _row_values(result: ClassificationResult) -> dict[str, Any]:
    return {
        "supplier_invoice_id": result.supplier_invoice_id,
        "processing_type": result.processing_type,
        "extracted_text": result.extracted_text,
        "confidence_score": result.confidence_score,
        "project_matches": [m.model_dump(by_alias=True) for m in result.project_matches],
        "invoice_details": result.invoice_details.model_dump(by_alias=True),
        "processing_status": result.processing_status.value,
        "processing_time_ms": result.processing_time_ms,
        "error_message": result.error_message,
        "processed_at": result.processed_at,
    }


async def upsert_classification_result(session: AsyncSession, result: ClassificationResult) -> None:
    """Insert or overwrite the result for (invoice, processing type)."""
    values = _row_values(result)
    dialect = session.get_bind().dialect.name

    if dialect in ("postgresql", "sqlite"):
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert_fn(ClassificationResultModel).values(id=uuid4(), **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["supplier_invoice_id", "processing_type"],
            set_={name: stmt.excluded[name] for name in _UPDATABLE},
        )
        await session.execute(stmt)
        return

    existing = await session.scalar(
        select(ClassificationResultModel.id).where(
            ClassificationResultModel.supplier_invoice_id == result.supplier_invoice_id,
            ClassificationResultModel.processing_type == result.processing_type,
        )
    )
    if existing is None:
        try:
            async with session.begin_nested():
                session.add(ClassificationResultModel(id=uuid4(), **values))
            return
        except IntegrityError:
            pass
    await session.execute(
        update(ClassificationResultModel)
        .where(
            ClassificationResultModel.supplier_invoice_id == result.supplier_invoice_id,
            ClassificationResultModel.processing_type == result.processing_type,
        )
        .values(**{name: values[name] for name in _UPDATABLE})
        .execution_options(synchronize_session=False)
    )


def to_domain(row: ClassificationResultModel) -> ClassificationResult:
    return ClassificationResult(
        supplier_invoice_id=row.supplier_invoice_id,
        processing_type=row.processing_type,
        extracted_text=row.extracted_text or "",
        confidence_score=row.confidence_score,
        project_matches=[ProjectMatch.model_validate(m) for m in row.project_matches or []],
        invoice_details=InvoiceDetails.model_validate(row.invoice_details or {}),
        processing_status=ProcessingStatus(row.processing_status),
        processing_time_ms=row.processing_time_ms,
        error_message=row.error_message,
        processed_at=row.processed_at,
    )


async def get_classification_result(
    session: AsyncSession,
    invoice_id: UUID,
    processing_type: str = VISION_PROJECT_MATCHING,
) -> ClassificationResult | None:
    row = await session.scalar(
        select(ClassificationResultModel).where(
            ClassificationResultModel.supplier_invoice_id == invoice_id,
            ClassificationResultModel.processing_type == processing_type,
        )
        .execution_options(populate_existing=True)
    )
    return to_domain(row) if row is not None else None
