"""Composition root.

Builds the one RateLimitedCallQueue per process and every component that
needs it. Web app, CLI and arq worker each call ``build_services()`` once
and pass the result down; nothing else constructs a queue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from finsync.assignment.policy import AssignmentPolicyEngine
from finsync.classification.classifier import DocumentClassifier
from finsync.classification.vision_client import VisionModelClient
from finsync.clickup.client import ClickUpClient
from finsync.config import AppConfig, get_config
from finsync.core.rate_limit_queue import RateLimitedCallQueue
from finsync.core.scheduler import ArqScheduler, ClassificationScheduler, InProcessScheduler
from finsync.db.connection import SessionScope, get_session
from finsync.qonto.client import QontoClient

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived collaborators shared by one process."""

    config: AppConfig
    call_queue: RateLimitedCallQueue
    classifier: DocumentClassifier
    policy: AssignmentPolicyEngine
    scheduler: ClassificationScheduler
    session_scope: SessionScope = get_session
    _qonto: QontoClient | None = field(default=None, repr=False)
    _clickup: ClickUpClient | None = field(default=None, repr=False)

    @property
    def qonto(self) -> QontoClient:
        """Qonto client, built on first use.

        Raises:
            ConfigurationError: If QONTO_API_KEY is missing or malformed
        """
        if self._qonto is None:
            self._qonto = QontoClient.from_config(self.config.qonto)
        return self._qonto

    @property
    def clickup(self) -> ClickUpClient:
        """ClickUp client, built on first use.

        Raises:
            ConfigurationError: If CLICKUP_API_TOKEN or CLICKUP_SPACE_ID is missing
        """
        if self._clickup is None:
            self._clickup = ClickUpClient.from_config(self.config.clickup)
        return self._clickup

    async def close(self) -> None:
        await self.scheduler.close()
        if self._qonto is not None:
            await self._qonto.close()
            self._qonto = None
        if self._clickup is not None:
            await self._clickup.close()
            self._clickup = None
        vision = self.classifier._vision_client
        if vision is not None:
            await vision.close()


def build_services(
    config: AppConfig | None = None,
    *,
    session_scope: SessionScope = get_session,
    call_queue: RateLimitedCallQueue | None = None,
    qonto: QontoClient | None = None,
    clickup: ClickUpClient | None = None,
    vision_client: VisionModelClient | None = None,
    scheduler: ClassificationScheduler | None = None,
) -> Services:
    """Wire the process's collaborators.

    Overrides exist for tests (zero-delay queue, mock transports, a
    scheduler that does not run jobs).
    """
    config = config or get_config()
    call_queue = call_queue or RateLimitedCallQueue(min_delay=config.vision.min_delay_seconds)

    classifier = DocumentClassifier(
        call_queue=call_queue,
        session_scope=session_scope,
        vision_config=config.vision,
        vision_client=vision_client,
        weights=config.weights,
    )
    policy = AssignmentPolicyEngine(
        session_scope=session_scope,
        policy=config.policy,
        assigned_by=config.vision.assigned_by,
    )

    if scheduler is None:
        if config.sync.scheduler == "arq":
            scheduler = ArqScheduler(redis_url=config.sync.redis_url)
        else:
            scheduler = InProcessScheduler()

    services = Services(
        config=config,
        call_queue=call_queue,
        classifier=classifier,
        policy=policy,
        scheduler=scheduler,
        session_scope=session_scope,
        _qonto=qonto,
        _clickup=clickup,
    )

    if isinstance(scheduler, InProcessScheduler) and scheduler.runner is None:
        from finsync.pipeline.classification_task import classify_supplier_invoice

        async def run_job(invoice_id: UUID, attachment_id: str | None):
            return await classify_supplier_invoice(services, invoice_id, attachment_id)

        scheduler.runner = run_job

    logger.info(
        "Services built (scheduler=%s, model min delay=%.1fs)",
        type(scheduler).__name__,
        call_queue.min_delay,
    )
    return services
