"""arq worker for classification and sync jobs.

Each worker process builds its own services on startup, so it owns exactly
one model call queue. Run with ``arq finsync.worker.WorkerSettings``.
"""

from __future__ import annotations

import logging
import os
from typing import Any
from uuid import UUID

from arq.connections import RedisSettings

from finsync.config import get_config
from finsync.core.logging import configure_logging
from finsync.core.scheduler import ArqScheduler
from finsync.core.services import build_services
from finsync.db.connection import close_db
from finsync.models import SyncScope
from finsync.pipeline.classification_task import classify_supplier_invoice
from finsync.pipeline.orchestrator import run_sync

logger = logging.getLogger(__name__)


async def startup(ctx: dict[str, Any]) -> None:
    """Initialize resources when worker starts."""
    configure_logging()
    config = get_config()
    # Jobs scheduled from inside the worker go back through Redis
    ctx["services"] = build_services(
        config, scheduler=ArqScheduler(redis_url=config.sync.redis_url, pool=ctx.get("redis"))
    )
    logger.info("Worker started")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Cleanup resources when worker stops."""
    services = ctx.get("services")
    if services is not None:
        await services.close()
    await close_db()
    logger.info("Worker stopped")


async def classify_supplier_invoice_job(
    ctx: dict[str, Any], invoice_id: str, attachment_id: str | None = None
) -> dict[str, Any]:
    """Classify one supplier invoice.

    Configuration errors propagate so arq marks the job failed.
    """
    result = await classify_supplier_invoice(ctx["services"], UUID(invoice_id), attachment_id)
    if result is None:
        return {"status": "skipped", "invoice_id": invoice_id}
    return {
        "status": result.processing_status.value,
        "invoice_id": invoice_id,
        "confidence": result.confidence_score,
        "error": result.error_message,
    }


async def run_sync_job(
    ctx: dict[str, Any], scope: str = SyncScope.ALL.value, force_full_sync: bool = False
) -> dict[str, Any]:
    """Run a Qonto sync in the background."""
    summary = await run_sync(ctx["services"], SyncScope(scope), force_full_sync)
    return summary.model_dump(mode="json")


class WorkerSettings:
    functions = [
        classify_supplier_invoice_job,
        run_sync_job,
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(os.environ.get("REDIS_URL", "redis://localhost:6379"))
