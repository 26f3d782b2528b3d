"""Integration tests for SyncOrchestrator runs."""

from __future__ import annotations

from dataclasses import replace

import httpx
import pytest
from sqlalchemy import func, select

from fakes import FakeQontoClient, RecordingScheduler, supplier_invoice_record
from finsync.clickup.client import ClickUpClient
from finsync.db.models import ClientModel, ExternalSyncRunModel, SupplierInvoiceModel
from finsync.errors import ConfigurationError, ExternalAPIError
from finsync.models import SyncRunStatus, SyncScope
from finsync.pipeline.classification_task import load_candidate_projects
from finsync.pipeline.orchestrator import SyncOrchestrator, run_sync, sync_status

pytestmark = pytest.mark.integration


def _clients(n: int) -> list[dict]:
    return [{"id": f"c-{i}", "name": f"Client {i}"} for i in range(n)]


@pytest.mark.asyncio
async def test_full_run_counts_and_records(make_services, session_scope):
    qonto = FakeQontoClient(
        clients=_clients(3),
        client_invoices=[{"id": "ci-1", "total_amount": "10", "client": {"id": "c-0"}}],
        supplier_invoices=[
            supplier_invoice_record("si-1", attachment_id="att-1"),
            supplier_invoice_record("si-2", iban=None),
        ],
    )
    services = make_services(qonto=qonto)

    summary = await run_sync(services)

    assert summary.status is SyncRunStatus.COMPLETED
    assert summary.records_processed == 6
    assert summary.records_created == 5
    assert summary.records_skipped == 1
    assert summary.classifications_scheduled == 1
    assert [entity for entity, _ in qonto.fetched] == ["clients", "client_invoices", "supplier_invoices"]

    async with session_scope() as session:
        run = await session.get(ExternalSyncRunModel, summary.sync_id)
    assert run.status == "completed"
    assert run.completed_at is not None
    assert run.records_created == 5


@pytest.mark.asyncio
async def test_second_run_updates_without_scheduling(make_services):
    scheduler = RecordingScheduler()
    qonto = FakeQontoClient(supplier_invoices=[supplier_invoice_record("si-1", attachment_id="att-1")])
    services = make_services(qonto=qonto, scheduler=scheduler)

    await run_sync(services, SyncScope.SUPPLIER_INVOICES)
    again = await run_sync(services, SyncScope.SUPPLIER_INVOICES)

    assert again.records_created == 0
    assert again.records_updated == 1
    assert again.classifications_scheduled == 0
    assert len(scheduler.jobs) == 1


@pytest.mark.asyncio
async def test_classifications_are_staggered_across_pages(make_services, session_scope):
    scheduler = RecordingScheduler()
    qonto = FakeQontoClient(
        supplier_invoices=[
            supplier_invoice_record("si-1", attachment_id="att-1"),
            supplier_invoice_record("si-2"),
            supplier_invoice_record("si-3", attachment_id="att-3"),
            supplier_invoice_record("si-4", attachment_id="att-4"),
        ],
        per_page=2,
    )
    services = make_services(qonto=qonto, scheduler=scheduler)

    summary = await run_sync(services, SyncScope.SUPPLIER_INVOICES)

    assert summary.classifications_scheduled == 3
    assert [job.delay_seconds for job in scheduler.jobs] == [0, 15, 30]
    assert [job.attachment_id for job in scheduler.jobs] == ["att-1", "att-3", "att-4"]

    async with session_scope() as session:
        ids = set((await session.scalars(select(SupplierInvoiceModel.id))).all())
    assert {job.invoice_id for job in scheduler.jobs} <= ids


@pytest.mark.asyncio
async def test_page_failure_fails_run_with_partial_counts(make_services, session_scope):
    qonto = FakeQontoClient(clients=_clients(6), per_page=2)
    qonto.failures[("clients", 2)] = ExternalAPIError("Qonto API error: 500 Internal Server Error", 500)
    services = make_services(qonto=qonto)

    summary = await run_sync(services, SyncScope.CLIENTS)

    assert summary.status is SyncRunStatus.FAILED
    assert summary.records_processed == 2
    assert summary.records_created == 2
    assert "500" in summary.error_message
    assert ("clients", 3) not in qonto.fetched

    async with session_scope() as session:
        run = await session.get(ExternalSyncRunModel, summary.sync_id)
        stored = await session.scalar(select(func.count()).select_from(ClientModel))
    assert run.status == "failed"
    assert run.error_message == summary.error_message
    assert run.records_processed == 2
    assert stored == 2


@pytest.mark.asyncio
async def test_failure_stops_later_entities(make_services):
    qonto = FakeQontoClient(clients=_clients(1), supplier_invoices=[supplier_invoice_record("si-1")])
    qonto.failures[("client_invoices", 1)] = ExternalAPIError("Qonto API request failed: timeout")
    services = make_services(qonto=qonto)

    summary = await run_sync(services)

    assert summary.status is SyncRunStatus.FAILED
    assert ("supplier_invoices", 1) not in qonto.fetched


@pytest.mark.asyncio
async def test_bad_record_does_not_roll_back_siblings(make_services, session_scope):
    qonto = FakeQontoClient(
        clients=[{"id": "c-1", "name": "Good"}, {"name": "No id"}, {"id": "c-3", "name": "Also good"}]
    )
    services = make_services(qonto=qonto)
    orchestrator = SyncOrchestrator(services)

    summary = await orchestrator.run(SyncScope.CLIENTS)

    assert summary.status is SyncRunStatus.COMPLETED
    assert summary.records_processed == 3
    assert summary.records_created == 2
    async with session_scope() as session:
        assert await session.scalar(select(func.count()).select_from(ClientModel)) == 2


@pytest.mark.asyncio
async def test_missing_qonto_key_fails_before_recording(make_services, session_scope, app_config):
    config = replace(app_config, qonto=replace(app_config.qonto, api_key=None))
    services = make_services(config=config)
    services._qonto = None

    with pytest.raises(ConfigurationError):
        await run_sync(services)

    async with session_scope() as session:
        assert await session.scalar(select(func.count()).select_from(ExternalSyncRunModel)) == 0


@pytest.mark.asyncio
async def test_sync_status_reports_runs_and_totals(make_services, session_scope):
    qonto = FakeQontoClient(clients=_clients(2))
    services = make_services(qonto=qonto)
    await run_sync(services, SyncScope.CLIENTS, force_full_sync=True)
    qonto.failures[("clients", 1)] = ExternalAPIError("boom")
    await run_sync(services, SyncScope.CLIENTS)

    async with session_scope() as session:
        status = await sync_status(session)

    assert [run["status"] for run in status["recent_runs"]] == ["failed", "completed"]
    assert status["recent_runs"][1]["force_full_sync"] is True
    assert status["last_successful_sync"] is not None
    assert status["totals"] == {
        "clients": 2,
        "client_invoices": 0,
        "supplier_invoices": 0,
        "projects": 0,
    }


def _clickup(active: list[dict], archived: list[dict]) -> ClickUpClient:
    def handler(request: httpx.Request) -> httpx.Response:
        folders = archived if request.url.params.get("archived") == "true" else active
        return httpx.Response(200, json={"folders": folders})

    return ClickUpClient("pk_test", "space-9", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_project_sync_feeds_classification_candidates(make_services, session_scope):
    qonto = FakeQontoClient()
    clickup = _clickup(
        active=[
            {"id": "f-1", "name": "Atlas Construction - Tower B"},
            {"id": "f-2", "name": "Scratchpad", "hidden": True},
        ],
        archived=[{"id": "f-3", "name": "[Nordia] Old Depot"}],
    )
    services = make_services(qonto=qonto, clickup=clickup)

    summary = await run_sync(services, SyncScope.PROJECTS)
    again = await run_sync(services, SyncScope.PROJECTS)

    assert summary.status is SyncRunStatus.COMPLETED
    assert summary.records_processed == 3
    assert summary.records_created == 2
    assert summary.records_skipped == 1
    assert summary.classifications_scheduled == 0
    assert again.records_created == 0
    assert again.records_updated == 2
    assert qonto.fetched == []

    async with session_scope() as session:
        candidates = await load_candidate_projects(session)
        status = await sync_status(session)
    assert [(p.name, p.client_name) for p in candidates] == [
        ("Atlas Construction - Tower B", "Atlas Construction"),
        ("[Nordia] Old Depot", "Nordia"),
    ]
    assert status["totals"]["projects"] == 2
    assert status["recent_runs"][0]["entity_scope"] == "projects"


@pytest.mark.asyncio
async def test_missing_clickup_config_fails_before_recording(make_services, session_scope):
    services = make_services()

    with pytest.raises(ConfigurationError, match="ClickUp"):
        await run_sync(services, SyncScope.PROJECTS)

    async with session_scope() as session:
        assert await session.scalar(select(func.count()).select_from(ExternalSyncRunModel)) == 0
