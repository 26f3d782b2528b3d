"""Manual override of a supplier invoice's status and project assignments."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from finsync.db.models import ProjectAssignmentModel, ProjectModel, SupplierInvoiceModel
from finsync.errors import AssignmentError
from finsync.invoices.status import InvoiceStatus, parse_status, transition
from finsync.models import InvoiceUpdateRequest

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = Decimal("0.01")

# Leaving these states drops the project attribution
_CLEARS_ASSIGNMENTS = {InvoiceStatus.PENDING_ASSIGNMENT, InvoiceStatus.NON_PROJECT}


@dataclass
class ManualUpdateResult:
    invoice: SupplierInvoiceModel
    assignments: list[ProjectAssignmentModel] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


async def apply_manual_update(
    session: AsyncSession,
    invoice_id: UUID,
    request: InvoiceUpdateRequest,
    acting_user: str | None = None,
) -> ManualUpdateResult | None:
    """Apply a user's edit to a supplier invoice.

    Replaces all assignments when ``request.assignments`` is given. Providing
    assignments without a status marks the invoice assigned.

    Returns:
        None if the invoice does not exist

    Raises:
        IllegalStatusTransition: If the manual transition table forbids the move
        AssignmentError: If an assignment references an unknown project
        ValueError: If the status string is unknown
    """
    invoice = await session.get(SupplierInvoiceModel, invoice_id, populate_existing=True)
    if invoice is None:
        return None

    for name in (
        "description",
        "supplier_name",
        "amount_total",
        "amount_net",
        "amount_vat",
        "invoice_date",
    ):
        value = getattr(request, name)
        if value is not None:
            setattr(invoice, name, value)

    current = parse_status(invoice.status)
    target: InvoiceStatus | None = None
    if request.status is not None:
        target = parse_status(request.status)
    elif request.assignments:
        target = InvoiceStatus.ASSIGNED

    # Re-asserting the current state is a no-op except for assigned
    if target is not None and (target != current or current is InvoiceStatus.ASSIGNED):
        invoice.status = transition(current, target, manual=True).value

    result = ManualUpdateResult(invoice=invoice)
    new_status = parse_status(invoice.status)
    invoice.is_processed = new_status is not InvoiceStatus.PENDING_ASSIGNMENT

    if request.assignments is not None:
        result.assignments = await _replace_assignments(
            session, invoice, request, acting_user or request.user_email or "Unknown User"
        )
        result.warnings.extend(_check_total(invoice, result.assignments))
    elif new_status in _CLEARS_ASSIGNMENTS and new_status != current:
        await session.execute(
            delete(ProjectAssignmentModel).where(
                ProjectAssignmentModel.supplier_invoice_id == invoice.id
            )
        )

    await session.flush()
    logger.info(
        "Manual update of invoice %s by %s: %s -> %s",
        invoice.id,
        acting_user or request.user_email or "unknown",
        current.value,
        new_status.value,
    )
    return result


async def _replace_assignments(
    session: AsyncSession,
    invoice: SupplierInvoiceModel,
    request: InvoiceUpdateRequest,
    assigned_by: str,
) -> list[ProjectAssignmentModel]:
    project_ids = {a.project_id for a in request.assignments or []}
    if project_ids:
        known = set(
            (await session.scalars(select(ProjectModel.id).where(ProjectModel.id.in_(project_ids)))).all()
        )
        missing = project_ids - known
        if missing:
            raise AssignmentError(
                f"Unknown project id(s): {', '.join(sorted(str(m) for m in missing))}"
            )

    await session.execute(
        delete(ProjectAssignmentModel).where(ProjectAssignmentModel.supplier_invoice_id == invoice.id)
    )

    rows = [
        ProjectAssignmentModel(
            supplier_invoice_id=invoice.id,
            project_id=a.project_id,
            amount_assigned=a.amount_assigned,
            percentage=a.percentage,
            assignment_type=a.assignment_type.value,
            assigned_by=assigned_by,
        )
        for a in request.assignments or []
    ]
    session.add_all(rows)
    return rows


def _check_total(invoice: SupplierInvoiceModel, rows: list[ProjectAssignmentModel]) -> list[str]:
    if not rows:
        return []
    assigned = sum((Decimal(r.amount_assigned) for r in rows), Decimal("0"))
    total = Decimal(invoice.amount_total or 0)
    if abs(assigned - total) > AMOUNT_TOLERANCE:
        message = f"Assigned amount {assigned} differs from invoice total {total}"
        logger.warning("Invoice %s: %s", invoice.id, message)
        return [message]
    return []
