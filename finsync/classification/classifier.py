"""Document classifier: prompt, queued model call, decode, score, persist."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from datetime import datetime, timezone
from uuid import UUID

from finsync.classification.confidence import OverallConfidenceCalculator
from finsync.classification.parser import MalformedResponse, decode_model_response
from finsync.classification.prompt import build_analysis_prompt
from finsync.classification.vision_client import DocumentSource, VisionModelClient
from finsync.config import ConfidenceWeights, VisionConfig
from finsync.core.rate_limit_queue import RateLimitedCallQueue
from finsync.db.classification_results import upsert_classification_result
from finsync.db.connection import SessionScope
from finsync.errors import ConfigurationError, FinsyncError
from finsync.models import (
    VISION_PROJECT_MATCHING,
    ClassificationResult,
    InvoiceDetails,
    ProcessingStatus,
    ProjectCandidate,
)

logger = logging.getLogger(__name__)


class DocumentClassifier:
    """Classify supplier invoice documents against candidate projects.

    Every model call goes through the shared ``call_queue``. A result row is
    written for every attempt that gets past configuration checks, whether
    the model answered, answered garbage, or failed.
    """

    def __init__(
        self,
        call_queue: RateLimitedCallQueue,
        session_scope: SessionScope,
        vision_config: VisionConfig | None = None,
        vision_client: VisionModelClient | None = None,
        weights: ConfidenceWeights | None = None,
    ):
        self.call_queue = call_queue
        self.session_scope = session_scope
        self.vision_config = vision_config or VisionConfig()
        self._vision_client = vision_client
        self.calculator = OverallConfidenceCalculator(weights)

    def ensure_configured(self) -> VisionModelClient:
        """Return the model client, building it from config on first use.

        Raises:
            ConfigurationError: If the model API key is missing
        """
        if self._vision_client is None:
            self._vision_client = VisionModelClient.from_config(self.vision_config)
        return self._vision_client

    async def classify(
        self,
        invoice_id: UUID,
        document: DocumentSource,
        projects: Sequence[ProjectCandidate],
    ) -> ClassificationResult:
        """Classify one invoice document and persist the outcome.

        Raises:
            ConfigurationError: Before anything is queued, if credentials are missing
        """
        client = self.ensure_configured()
        prompt = build_analysis_prompt(projects)
        started = time.monotonic()

        try:
            raw_text = await self.call_queue.enqueue(lambda: client.analyze(prompt, document))
        except ConfigurationError:
            raise
        except FinsyncError as exc:
            logger.error("Classification of invoice %s failed: %s", invoice_id, exc)
            result = self._failed(invoice_id, str(exc), started)
        except Exception as exc:
            logger.exception("Unexpected error classifying invoice %s", invoice_id)
            result = self._failed(invoice_id, f"Unexpected error: {exc}", started)
        else:
            result = self._from_text(invoice_id, raw_text, started)

        await self.save(result)
        return result

    async def save(self, result: ClassificationResult) -> None:
        async with self.session_scope() as session:
            await upsert_classification_result(session, result)

    def record_failure(self, invoice_id: UUID, message: str, started: float) -> ClassificationResult:
        """Build a failed result for errors raised before the model call."""
        return self._failed(invoice_id, message, started)

    def _from_text(self, invoice_id: UUID, raw_text: str, started: float) -> ClassificationResult:
        decoded = decode_model_response(raw_text)

        if isinstance(decoded, MalformedResponse):
            extracted_text = decoded.raw_text
            details = InvoiceDetails()
            matches = []
            status = ProcessingStatus.PARTIAL
            error_message = f"Malformed model response: {decoded.reason}"
        else:
            extracted_text = decoded.response.extracted_text
            details = decoded.response.invoice_details
            matches = decoded.response.project_matches
            status = ProcessingStatus.SUCCESS
            error_message = None

        score = self.calculator.score(extracted_text, details, matches)
        logger.info(
            "Classified invoice %s: status=%s confidence=%d matches=%d",
            invoice_id,
            status.value,
            score,
            len(matches),
        )
        return ClassificationResult(
            supplier_invoice_id=invoice_id,
            processing_type=VISION_PROJECT_MATCHING,
            extracted_text=extracted_text,
            confidence_score=score,
            project_matches=matches,
            invoice_details=details,
            processing_status=status,
            processing_time_ms=self._elapsed_ms(started),
            error_message=error_message,
            processed_at=datetime.now(timezone.utc),
        )

    def _failed(self, invoice_id: UUID, message: str, started: float) -> ClassificationResult:
        return ClassificationResult(
            supplier_invoice_id=invoice_id,
            processing_type=VISION_PROJECT_MATCHING,
            confidence_score=0,
            processing_status=ProcessingStatus.FAILED,
            processing_time_ms=self._elapsed_ms(started),
            error_message=message,
            processed_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
