"""
Tests for the sync and SLA API routes
"""
import httpx
import pytest
from fastapi import FastAPI

from src.core import ApplicationException
from src.shared.api.middleware import CorrelationIDMiddleware, application_exception_handler
from src.sla.interfaces import sla_router
from src.sync.interfaces import sync_router
from tests.conftest import SOURCE, make_record


def build_app(coordinator=None, escalation_service=None) -> FastAPI:
    app = FastAPI()
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.include_router(sync_router)
    app.include_router(sla_router)
    app.state.sync_source = SOURCE
    if coordinator is not None:
        app.state.sync_coordinator = coordinator
    if escalation_service is not None:
        app.state.sla_escalation_service = escalation_service
    return app


@pytest.fixture
async def client(coordinator, escalation_service):
    app = build_app(coordinator, escalation_service)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


class TestSyncRoutes:
    @pytest.mark.asyncio
    async def test_status(self, client):
        response = await client.get("/sync/status")

        assert response.status_code == 200
        data = response.json()
        assert data["source"] == SOURCE
        assert data["circuit_state"] == "closed"
        assert data["bulk_import"]["completed"] is False
        assert "X-Correlation-ID" in response.headers

    @pytest.mark.asyncio
    async def test_manual_poll(self, client, remote):
        remote.records = [make_record("INC1")]

        response = await client.post("/sync/poll")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["summary"]["saved"] == 1

    @pytest.mark.asyncio
    async def test_bulk_import_then_skip(self, client, remote):
        remote.records = [make_record("INC1")]

        first = await client.post("/sync/bulk-import")
        second = await client.post("/sync/bulk-import")
        forced = await client.post("/sync/bulk-import", params={"force": "true"})

        assert first.json()["success"] is True
        assert second.json()["skipped"] is True
        assert forced.json()["success"] is True

    @pytest.mark.asyncio
    async def test_health_check_and_circuit_reset(self, client):
        assert (await client.post("/sync/health-check")).json()["healthy"] is True
        assert (await client.post("/sync/circuit/reset")).json()["circuit_state"] == "closed"

    @pytest.mark.asyncio
    async def test_reset_requires_confirmation(self, client):
        response = await client.post("/sync/reset", json={"confirm": False})
        assert response.status_code == 400

        response = await client.post("/sync/reset", json={"confirm": True})
        assert response.status_code == 200
        assert response.json()["total_attempts"] == 0


class TestSLARoutes:
    @pytest.mark.asyncio
    async def test_list_and_get_records(self, client, ingestion):
        await ingestion.upsert(make_record("INC1"))
        await ingestion.upsert(make_record("INC2", priority="4 - Low"))

        response = await client.get("/sla/records", params={"priority": "p1"})
        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["records"][0]["external_id"] == "INC1"

        response = await client.get("/sla/records/INC2")
        assert response.status_code == 200
        assert response.json()["priority"] == "P3"
        assert response.json()["current"]["state"] == "safe"

    @pytest.mark.asyncio
    async def test_unknown_record_is_404(self, client):
        response = await client.get("/sla/records/INC404")

        assert response.status_code == 404
        assert "INC404" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_invalid_priority_is_422(self, client):
        response = await client.get("/sla/records", params={"priority": "P9"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_stats(self, client, ingestion):
        await ingestion.upsert(make_record("INC1"))
        await ingestion.upsert(make_record("INC2", state="Closed"))

        data = (await client.get("/sla/stats")).json()

        assert data["total"] == 2
        assert data["by_priority"] == {"P1": 2}
        assert data["by_state"]["completed"] == 1
        assert data["by_state"]["safe"] == 1

    @pytest.mark.asyncio
    async def test_manual_evaluation(self, client, ingestion, clock):
        await ingestion.upsert(make_record("INC1"))
        clock.advance(hours=1)

        data = (await client.post("/sla/evaluate")).json()

        assert data["evaluated"] == 1
        assert data["notified"] == 1
        assert data["by_state"] == {"warning": 1}


class TestUninitialized:
    @pytest.mark.asyncio
    async def test_missing_services_return_503(self):
        app = build_app()
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            assert (await client.get("/sync/status")).status_code == 503
            assert (await client.get("/sla/stats")).status_code == 503
