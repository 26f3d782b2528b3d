"""Supplier invoice routes.

Routes:
- POST /invoices/{invoice_id}/classify       - On-demand classification
- GET  /invoices/{invoice_id}/classification - Latest stored result
- PUT  /invoices/{invoice_id}                - Manual status/assignment override
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from finsync.assignment.manual import apply_manual_update
from finsync.core.services import Services
from finsync.db.classification_results import get_classification_result
from finsync.db.models import SupplierInvoiceModel
from finsync.errors import AssignmentError, IllegalStatusTransition
from finsync.models import InvoiceUpdateRequest, ProcessingStatus
from finsync.pipeline.classification_task import classify_supplier_invoice
from finsync.web.dependencies import get_services

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post("/{invoice_id}/classify")
async def classify_invoice(
    invoice_id: UUID,
    force: bool = Query(default=False),
    services: Services = Depends(get_services),
):
    """Classify one invoice immediately, without stagger.

    An existing successful result is returned as-is unless ``force`` is set.
    """
    async with services.session_scope() as session:
        invoice = await session.get(SupplierInvoiceModel, invoice_id)
        if invoice is None:
            raise HTTPException(status_code=404, detail="Supplier invoice not found")
        if not invoice.document_attachment_id:
            raise HTTPException(status_code=400, detail="Supplier invoice has no document attachment")
        existing = await get_classification_result(session, invoice_id)

    if existing is not None and existing.processing_status is ProcessingStatus.SUCCESS and not force:
        return {"cached": True, "result": existing.model_dump(mode="json", by_alias=True)}

    result = await classify_supplier_invoice(services, invoice_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Supplier invoice not found")
    return {"cached": False, "result": result.model_dump(mode="json", by_alias=True)}


@router.get("/{invoice_id}/classification")
async def get_invoice_classification(
    invoice_id: UUID,
    services: Services = Depends(get_services),
):
    async with services.session_scope() as session:
        result = await get_classification_result(session, invoice_id)
    if result is None:
        raise HTTPException(status_code=404, detail="No classification result for this invoice")
    return result.model_dump(mode="json", by_alias=True)


@router.put("/{invoice_id}")
async def update_invoice(
    invoice_id: UUID,
    request: InvoiceUpdateRequest,
    services: Services = Depends(get_services),
):
    """Manually set status and/or replace project assignments."""
    async with services.session_scope() as session:
        try:
            outcome = await apply_manual_update(session, invoice_id, request)
        except IllegalStatusTransition as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except (AssignmentError, ValueError) as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        if outcome is None:
            raise HTTPException(status_code=404, detail="Supplier invoice not found")

        invoice = outcome.invoice
        return {
            "id": str(invoice.id),
            "status": invoice.status,
            "is_processed": invoice.is_processed,
            "ai_confidence": invoice.ai_confidence,
            "assignments": [
                {
                    "project_id": str(a.project_id),
                    "amount_assigned": str(a.amount_assigned),
                    "percentage": str(a.percentage) if a.percentage is not None else None,
                    "assignment_type": a.assignment_type,
                    "assigned_by": a.assigned_by,
                }
                for a in outcome.assignments
            ],
            "warnings": outcome.warnings,
        }
