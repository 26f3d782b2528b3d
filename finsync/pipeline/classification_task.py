"""Classify one supplier invoice end to end.

This is the unit of work behind every scheduled job and the on-demand
classify endpoint: resolve the document, classify, then apply the policy.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from finsync.classification.vision_client import DocumentSource
from finsync.db.models import ProjectModel, SupplierInvoiceModel
from finsync.errors import ExternalAPIError
from finsync.models import ClassificationResult, ProcessingStatus, ProjectCandidate

if TYPE_CHECKING:
    from finsync.core.services import Services

logger = logging.getLogger(__name__)

CANDIDATE_PROJECT_STATUSES = ("active", "archived")


async def load_candidate_projects(session: AsyncSession) -> list[ProjectCandidate]:
    rows = await session.scalars(
        select(ProjectModel)
        .where(ProjectModel.status.in_(CANDIDATE_PROJECT_STATUSES))
        .order_by(ProjectModel.name)
    )
    return [
        ProjectCandidate(
            id=p.id, name=p.name, description=p.description, client_name=p.client_name
        )
        for p in rows
    ]


async def classify_supplier_invoice(
    services: Services,
    invoice_id: UUID,
    attachment_id: str | None = None,
) -> ClassificationResult | None:
    """Classify an invoice and apply the assignment policy.

    Returns:
        The stored result, or None when the invoice or its attachment is missing

    Raises:
        ConfigurationError: Missing Qonto or model credentials, before any I/O
    """
    classifier = services.classifier
    classifier.ensure_configured()
    qonto = services.qonto

    async with services.session_scope() as session:
        invoice = await session.get(SupplierInvoiceModel, invoice_id)
        if invoice is None:
            logger.warning("Supplier invoice %s not found, skipping classification", invoice_id)
            return None
        attachment_id = attachment_id or invoice.document_attachment_id
        if not attachment_id:
            logger.info("Supplier invoice %s has no attachment, skipping classification", invoice_id)
            return None
        projects = await load_candidate_projects(session)

    logger.info(
        "Starting classification of invoice %s against %d projects", invoice_id, len(projects)
    )
    started = time.monotonic()
    try:
        link = await qonto.get_attachment_url(attachment_id)
        if services.config.vision.document_mode == "base64":
            document = DocumentSource(data=await qonto.download_document(link.url))
        else:
            document = DocumentSource(url=link.url)
    except ExternalAPIError as exc:
        logger.error("Could not fetch document for invoice %s: %s", invoice_id, exc)
        result = classifier.record_failure(invoice_id, str(exc), started)
        await classifier.save(result)
        return result

    result = await classifier.classify(invoice_id, document, projects)

    if result.processing_status in (ProcessingStatus.SUCCESS, ProcessingStatus.PARTIAL):
        async with services.session_scope() as session:
            await services.policy.apply(invoice_id, result, session=session)
            # Recorded even when the policy leaves a terminal invoice alone
            invoice = await session.get(SupplierInvoiceModel, invoice_id)
            if invoice is not None:
                invoice.ai_confidence = result.confidence_score

    return result
