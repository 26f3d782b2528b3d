"""Tests for the arq job functions, called directly with a prepared ctx."""

from __future__ import annotations

import importlib
from uuid import uuid4

import pytest

from fakes import FakeQontoClient, FakeVisionClient, add_project, add_supplier_invoice, model_answer

pytestmark = pytest.mark.integration


@pytest.fixture
def worker():
    import finsync.worker

    return finsync.worker


@pytest.mark.asyncio
async def test_classify_job_returns_status(worker, make_services, session_scope):
    async with session_scope() as session:
        await add_project(session, "Atlas Tower")
        invoice_id = (await add_supplier_invoice(session)).id
    services = make_services(
        qonto=FakeQontoClient(attachments={"att-1": "https://s3.example/att-1"}),
        vision=FakeVisionClient(default=model_answer([("Atlas Tower", 88)])),
    )

    outcome = await worker.classify_supplier_invoice_job({"services": services}, str(invoice_id), "att-1")

    assert outcome["status"] == "success"
    assert outcome["invoice_id"] == str(invoice_id)
    assert outcome["error"] is None


@pytest.mark.asyncio
async def test_classify_job_skips_unknown_invoice(worker, make_services):
    invoice_id = str(uuid4())

    outcome = await worker.classify_supplier_invoice_job({"services": make_services()}, invoice_id)

    assert outcome == {"status": "skipped", "invoice_id": invoice_id}


@pytest.mark.asyncio
async def test_sync_job_returns_json_summary(worker, make_services):
    services = make_services(qonto=FakeQontoClient(clients=[{"id": "c-1", "name": "Atlas"}]))

    summary = await worker.run_sync_job({"services": services}, "clients")

    assert summary["status"] == "completed"
    assert summary["records_created"] == 1
    assert isinstance(summary["sync_id"], str)


def test_worker_registers_jobs(worker):
    names = {f.__name__ for f in worker.WorkerSettings.functions}

    assert names == {"classify_supplier_invoice_job", "run_sync_job"}


def test_worker_imports_without_database_url(worker, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("REDIS_URL", "redis://queue.internal:6380")

    reloaded = importlib.reload(worker)

    assert reloaded.WorkerSettings.redis_settings.host == "queue.internal"
    assert reloaded.WorkerSettings.redis_settings.port == 6380
