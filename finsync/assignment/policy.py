"""Assignment policy: turn a classification into invoice status and assignments.

Routes classified invoices to auto-assignment or review based on the best
project match's confidence:

| best match confidence         | status            | assignment                 |
|-------------------------------|-------------------|----------------------------|
| >= auto_assign_min_confidence | assigned          | 100% of total, ai_auto     |
| >= medium_confidence_min      | medium-confidence | none                       |
| below                         | low-confidence    | none                       |
| no matches                    | no-match          | none                       |
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from finsync.config import PolicyConfig
from finsync.db.connection import SessionScope
from finsync.db.models import ProjectAssignmentModel, ProjectModel, SupplierInvoiceModel
from finsync.invoices.status import InvoiceStatus, is_terminal_for_pipeline, transition
from finsync.models import AssignmentType, ClassificationResult, ProjectMatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyDecision:
    """Pure outcome of the decision table."""

    status: InvoiceStatus
    best_match: ProjectMatch | None
    reason: str

    @property
    def auto_assign(self) -> bool:
        return self.status is InvoiceStatus.ASSIGNED


@dataclass
class PolicyOutcome:
    """What ``apply`` actually wrote."""

    invoice_id: UUID
    decision: PolicyDecision | None
    applied: bool
    assignment_id: UUID | None = None
    message: str = ""


def decide(matches: list[ProjectMatch], policy: PolicyConfig | None = None) -> PolicyDecision:
    """Evaluate the decision table on the highest-confidence match."""
    policy = policy or PolicyConfig()
    if not matches:
        return PolicyDecision(InvoiceStatus.NO_MATCH, None, "no project matches")

    best = max(matches, key=lambda m: m.confidence)
    c = best.confidence
    if c >= policy.auto_assign_min_confidence:
        return PolicyDecision(
            InvoiceStatus.ASSIGNED,
            best,
            f"confidence {c}% >= {policy.auto_assign_min_confidence}% for {best.project_name!r}",
        )
    if c >= policy.medium_confidence_min:
        return PolicyDecision(
            InvoiceStatus.MEDIUM_CONFIDENCE,
            best,
            f"confidence {c}% between {policy.medium_confidence_min}% "
            f"and {policy.auto_assign_min_confidence}%",
        )
    return PolicyDecision(
        InvoiceStatus.LOW_CONFIDENCE,
        best,
        f"confidence {c}% < {policy.medium_confidence_min}%",
    )


class AssignmentPolicyEngine:
    """Apply policy decisions to stored invoices."""

    def __init__(
        self,
        session_scope: SessionScope,
        policy: PolicyConfig | None = None,
        assigned_by: str = "Claude Vision AI",
    ):
        self.session_scope = session_scope
        self.policy = policy or PolicyConfig()
        self.assigned_by = assigned_by

    async def apply(
        self,
        invoice_id: UUID,
        result: ClassificationResult,
        session: AsyncSession | None = None,
    ) -> PolicyOutcome:
        """Write the assignment (if any) and the status in one transaction.

        Safe to repeat: an existing ai_auto_assigned row for the same invoice
        and project is reused rather than duplicated.
        """
        if session is not None:
            async with session.begin_nested():
                return await self._apply(session, invoice_id, result)

        async with self.session_scope() as scoped:
            return await self._apply(scoped, invoice_id, result)

    async def _apply(
        self, session: AsyncSession, invoice_id: UUID, result: ClassificationResult
    ) -> PolicyOutcome:
        invoice = await session.get(SupplierInvoiceModel, invoice_id, populate_existing=True)
        if invoice is None:
            logger.warning("Cannot apply policy: supplier invoice %s not found", invoice_id)
            return PolicyOutcome(invoice_id, None, applied=False, message="invoice not found")

        if is_terminal_for_pipeline(invoice.status):
            logger.info(
                "Invoice %s is %s, leaving it untouched by the pipeline", invoice_id, invoice.status
            )
            return PolicyOutcome(
                invoice_id, None, applied=False, message=f"invoice already {invoice.status}"
            )

        decision = decide(result.project_matches, self.policy)
        new_status = transition(invoice.status, decision.status)

        assignment_id = None
        if decision.auto_assign:
            project = await self._resolve_project(session, decision.best_match.project_name)
            if project is None:
                logger.warning(
                    "Auto-assignment of invoice %s skipped: project %r not found",
                    invoice_id,
                    decision.best_match.project_name,
                )
                return PolicyOutcome(
                    invoice_id,
                    decision,
                    applied=False,
                    message=f"project {decision.best_match.project_name!r} not found",
                )
            assignment_id = await self._ensure_auto_assignment(session, invoice, project)

        invoice.status = new_status.value
        invoice.is_processed = True
        invoice.ai_confidence = result.confidence_score
        await session.flush()

        logger.info("Invoice %s -> %s (%s)", invoice_id, new_status.value, decision.reason)
        return PolicyOutcome(
            invoice_id, decision, applied=True, assignment_id=assignment_id, message=decision.reason
        )

    async def _resolve_project(self, session: AsyncSession, name: str) -> ProjectModel | None:
        project = await session.scalar(select(ProjectModel).where(ProjectModel.name == name))
        if project is None:
            project = await session.scalar(
                select(ProjectModel)
                .where(func.lower(ProjectModel.name) == name.strip().lower())
                .limit(1)
            )
        return project

    async def _ensure_auto_assignment(
        self, session: AsyncSession, invoice: SupplierInvoiceModel, project: ProjectModel
    ) -> UUID:
        existing = await session.scalar(
            select(ProjectAssignmentModel).where(
                ProjectAssignmentModel.supplier_invoice_id == invoice.id,
                ProjectAssignmentModel.project_id == project.id,
                ProjectAssignmentModel.assignment_type == AssignmentType.AI_AUTO_ASSIGNED.value,
            )
        )
        if existing is not None:
            logger.info("Reusing auto-assignment %s for invoice %s", existing.id, invoice.id)
            return existing.id

        assignment = ProjectAssignmentModel(
            supplier_invoice_id=invoice.id,
            project_id=project.id,
            amount_assigned=invoice.amount_total or Decimal("0"),
            percentage=Decimal("100"),
            assignment_type=AssignmentType.AI_AUTO_ASSIGNED.value,
            assigned_by=self.assigned_by,
        )
        session.add(assignment)
        await session.flush()
        return assignment.id
