"""Integration tests for the classify-one-invoice unit of work."""

from __future__ import annotations

from dataclasses import replace
from uuid import uuid4

import pytest
from sqlalchemy import select

from fakes import FakeQontoClient, FakeVisionClient, add_project, add_supplier_invoice, model_answer
from finsync.db.classification_results import get_classification_result
from finsync.db.models import ProjectAssignmentModel, SupplierInvoiceModel
from finsync.errors import ConfigurationError
from finsync.models import ProcessingStatus
from finsync.pipeline.classification_task import classify_supplier_invoice, load_candidate_projects

SIGNED_URL = "https://s3.example/att-1?sig=abc"

pytestmark = pytest.mark.integration


async def _seed(session_scope, **invoice_fields):
    async with session_scope() as session:
        await add_project(session, "Atlas Tower", client_name="Atlas Construction")
        return (await add_supplier_invoice(session, **invoice_fields)).id


@pytest.mark.asyncio
async def test_classifies_and_auto_assigns(make_services, session_scope):
    invoice_id = await _seed(session_scope)
    vision = FakeVisionClient({SIGNED_URL: model_answer([("Atlas Tower", 92)])})
    services = make_services(qonto=FakeQontoClient(attachments={"att-1": SIGNED_URL}), vision=vision)

    result = await classify_supplier_invoice(services, invoice_id)

    assert result.processing_status is ProcessingStatus.SUCCESS
    async with session_scope() as session:
        invoice = await session.get(SupplierInvoiceModel, invoice_id)
        assignments = (await session.scalars(select(ProjectAssignmentModel))).all()
    assert invoice.status == "assigned"
    assert invoice.is_processed is True
    assert invoice.ai_confidence == result.confidence_score
    assert len(assignments) == 1


@pytest.mark.asyncio
async def test_url_mode_sends_signed_url(make_services, session_scope):
    invoice_id = await _seed(session_scope)
    qonto = FakeQontoClient(attachments={"att-1": SIGNED_URL})
    vision = FakeVisionClient(default=model_answer([]))
    services = make_services(qonto=qonto, vision=vision)

    await classify_supplier_invoice(services, invoice_id)

    _, document = vision.calls[0]
    assert document.url == SIGNED_URL
    assert qonto.downloaded == []


@pytest.mark.asyncio
async def test_base64_mode_downloads_document(make_services, session_scope, app_config):
    invoice_id = await _seed(session_scope)
    config = replace(app_config, vision=replace(app_config.vision, document_mode="base64"))
    qonto = FakeQontoClient(attachments={"att-1": SIGNED_URL})
    vision = FakeVisionClient(default=model_answer([]))
    services = make_services(qonto=qonto, vision=vision, config=config)

    await classify_supplier_invoice(services, invoice_id)

    _, document = vision.calls[0]
    assert document.url is None
    assert document.data == b"%PDF-1.4 test"
    assert qonto.downloaded == [SIGNED_URL]


@pytest.mark.asyncio
async def test_attachment_failure_records_failed_result(make_services, session_scope):
    invoice_id = await _seed(session_scope, document_attachment_id="att-gone")
    vision = FakeVisionClient()
    services = make_services(qonto=FakeQontoClient(), vision=vision)

    result = await classify_supplier_invoice(services, invoice_id)

    assert result.processing_status is ProcessingStatus.FAILED
    assert "404" in result.error_message
    assert vision.calls == []
    async with session_scope() as session:
        stored = await get_classification_result(session, invoice_id)
        invoice = await session.get(SupplierInvoiceModel, invoice_id)
    assert stored.processing_status is ProcessingStatus.FAILED
    assert invoice.status == "pending-assignment"


@pytest.mark.asyncio
async def test_partial_result_marks_no_match(make_services, session_scope):
    invoice_id = await _seed(session_scope)
    services = make_services(
        qonto=FakeQontoClient(attachments={"att-1": SIGNED_URL}),
        vision=FakeVisionClient(default="The document is blurry."),
    )

    result = await classify_supplier_invoice(services, invoice_id)

    assert result.processing_status is ProcessingStatus.PARTIAL
    async with session_scope() as session:
        invoice = await session.get(SupplierInvoiceModel, invoice_id)
    assert invoice.status == "no-match"


@pytest.mark.asyncio
async def test_terminal_invoice_keeps_status_but_records_confidence(make_services, session_scope):
    invoice_id = await _seed(session_scope, status="non-project", is_processed=True)
    services = make_services(
        qonto=FakeQontoClient(attachments={"att-1": SIGNED_URL}),
        vision=FakeVisionClient(default=model_answer([("Atlas Tower", 95)])),
    )

    result = await classify_supplier_invoice(services, invoice_id)

    async with session_scope() as session:
        invoice = await session.get(SupplierInvoiceModel, invoice_id)
        assignments = (await session.scalars(select(ProjectAssignmentModel))).all()
    assert invoice.status == "non-project"
    assert invoice.ai_confidence == result.confidence_score
    assert assignments == []


@pytest.mark.asyncio
async def test_invoice_without_attachment_is_skipped(make_services, session_scope):
    invoice_id = await _seed(session_scope, document_attachment_id=None)
    vision = FakeVisionClient()

    assert await classify_supplier_invoice(make_services(vision=vision), invoice_id) is None
    assert vision.calls == []


@pytest.mark.asyncio
async def test_unknown_invoice_is_skipped(make_services):
    assert await classify_supplier_invoice(make_services(), uuid4()) is None


@pytest.mark.asyncio
async def test_missing_model_key_fails_fast(make_services, session_scope, app_config):
    invoice_id = await _seed(session_scope)
    config = replace(app_config, vision=replace(app_config.vision, api_key=None))
    services = make_services(config=config)
    # Force the classifier to build its client from config
    services.classifier._vision_client = None

    with pytest.raises(ConfigurationError):
        await classify_supplier_invoice(services, invoice_id)


@pytest.mark.asyncio
async def test_candidate_projects_exclude_cancelled(session_scope):
    async with session_scope() as session:
        await add_project(session, "Zephyr", status="archived")
        await add_project(session, "Atlas")
        await add_project(session, "Old Depot", status="cancelled")

    async with session_scope() as session:
        projects = await load_candidate_projects(session)

    assert [p.name for p in projects] == ["Atlas", "Zephyr"]
