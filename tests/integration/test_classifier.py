"""Integration tests for DocumentClassifier persistence and failure handling."""

from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from fakes import FakeSleep, FakeVisionClient, add_supplier_invoice, model_answer
from finsync.classification.classifier import DocumentClassifier
from finsync.classification.vision_client import DocumentSource
from finsync.config import VisionConfig
from finsync.core.rate_limit_queue import RateLimitedCallQueue
from finsync.db.classification_results import get_classification_result
from finsync.db.models import ClassificationResultModel
from finsync.errors import ConfigurationError, ModelRateLimitError
from finsync.models import ProcessingStatus, ProjectCandidate

DOC = DocumentSource(url="https://files.example/invoice.pdf")
PROJECTS = [ProjectCandidate(id=uuid4(), name="Atlas Tower", client_name="Atlas Construction")]

pytestmark = pytest.mark.integration


def _classifier(session_scope, vision, queue=None) -> DocumentClassifier:
    return DocumentClassifier(
        call_queue=queue or RateLimitedCallQueue(min_delay=15, sleep=FakeSleep()),
        session_scope=session_scope,
        vision_config=VisionConfig(api_key="test-key"),
        vision_client=vision,
    )


async def _invoice_id(session_scope):
    async with session_scope() as session:
        return (await add_supplier_invoice(session)).id


@pytest.mark.asyncio
async def test_successful_classification_is_stored(session_scope):
    invoice_id = await _invoice_id(session_scope)
    vision = FakeVisionClient(default=model_answer([("Atlas Tower", 92), ("Other", 20)]))

    result = await _classifier(session_scope, vision).classify(invoice_id, DOC, PROJECTS)

    assert result.processing_status is ProcessingStatus.SUCCESS
    assert [m.project_name for m in result.project_matches] == ["Atlas Tower", "Other"]
    assert result.error_message is None
    # text 40 + details 30 + best 27.6 + bonus 4
    assert result.confidence_score == 100

    prompt, document = vision.calls[0]
    assert "Atlas Tower" in prompt
    assert document is DOC

    async with session_scope() as session:
        stored = await get_classification_result(session, invoice_id)
    assert stored.processing_status is ProcessingStatus.SUCCESS
    assert stored.project_matches[0].confidence == 92
    assert stored.invoice_details.supplier_name == "Acme Supplies"


@pytest.mark.asyncio
async def test_malformed_answer_is_partial(session_scope):
    invoice_id = await _invoice_id(session_scope)
    vision = FakeVisionClient(default="I could not read this document, sorry.")

    result = await _classifier(session_scope, vision).classify(invoice_id, DOC, PROJECTS)

    assert result.processing_status is ProcessingStatus.PARTIAL
    assert result.project_matches == []
    assert result.extracted_text == "I could not read this document, sorry."
    assert result.error_message.startswith("Malformed model response")


@pytest.mark.asyncio
async def test_model_error_is_recorded_as_failed(session_scope):
    invoice_id = await _invoice_id(session_scope)
    vision = FakeVisionClient()
    vision.errors[DOC.url] = ModelRateLimitError("Model API rate limit exceeded (429)", status_code=429)

    result = await _classifier(session_scope, vision).classify(invoice_id, DOC, PROJECTS)

    assert result.processing_status is ProcessingStatus.FAILED
    assert result.confidence_score == 0
    assert "429" in result.error_message
    async with session_scope() as session:
        stored = await get_classification_result(session, invoice_id)
    assert stored.processing_status is ProcessingStatus.FAILED


@pytest.mark.asyncio
async def test_reclassification_overwrites_single_row(session_scope):
    invoice_id = await _invoice_id(session_scope)
    vision = FakeVisionClient(default="garbage")
    classifier = _classifier(session_scope, vision)

    await classifier.classify(invoice_id, DOC, PROJECTS)
    vision.default = model_answer([("Atlas Tower", 85)])
    await classifier.classify(invoice_id, DOC, PROJECTS)

    async with session_scope() as session:
        count = await session.scalar(select(func.count()).select_from(ClassificationResultModel))
        stored = await get_classification_result(session, invoice_id)
    assert count == 1
    assert stored.processing_status is ProcessingStatus.SUCCESS


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_queueing(session_scope):
    queue = RateLimitedCallQueue(min_delay=15, sleep=FakeSleep())
    classifier = DocumentClassifier(
        call_queue=queue, session_scope=session_scope, vision_config=VisionConfig(api_key=None)
    )

    with pytest.raises(ConfigurationError):
        await classifier.classify(uuid4(), DOC, PROJECTS)

    assert queue.pending == 0
    async with session_scope() as session:
        assert await session.scalar(select(func.count()).select_from(ClassificationResultModel)) == 0


@pytest.mark.asyncio
async def test_calls_go_through_the_shared_queue(session_scope):
    sleep = FakeSleep()
    queue = RateLimitedCallQueue(min_delay=15, sleep=sleep)
    vision = FakeVisionClient(default=model_answer([]))
    classifier = _classifier(session_scope, vision, queue)

    first = await _invoice_id(session_scope)
    async with session_scope() as session:
        second = (await add_supplier_invoice(session, document_attachment_id="att-2")).id

    await classifier.classify(first, DOC, PROJECTS)
    await classifier.classify(second, DOC, PROJECTS)

    assert len(vision.calls) == 2
    assert sleep.calls and sleep.calls[-1] > 0


@pytest.mark.asyncio
async def test_infinite_confidence_is_stored(session_scope):
    invoice_id = await _invoice_id(session_scope)
    vision = FakeVisionClient(
        default=(
            '{"extractedText": "Invoice for Atlas", '
            '"projectMatches": [{"projectName": "Atlas Tower", "confidence": "Infinity"}]}'
        )
    )

    result = await _classifier(session_scope, vision).classify(invoice_id, DOC, PROJECTS)

    assert result.processing_status is ProcessingStatus.SUCCESS
    assert result.project_matches[0].confidence == 100
    async with session_scope() as session:
        stored = await get_classification_result(session, invoice_id)
    assert stored.project_matches[0].confidence == 100


@pytest.mark.asyncio
async def test_unexpected_error_is_recorded_as_failed(session_scope):
    invoice_id = await _invoice_id(session_scope)
    vision = FakeVisionClient()
    vision.errors[DOC.url] = AttributeError("'list' object has no attribute 'get'")

    result = await _classifier(session_scope, vision).classify(invoice_id, DOC, PROJECTS)

    assert result.processing_status is ProcessingStatus.FAILED
    assert "no attribute" in result.error_message
    async with session_scope() as session:
        stored = await get_classification_result(session, invoice_id)
    assert stored.processing_status is ProcessingStatus.FAILED
