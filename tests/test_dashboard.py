"""
Tests for dashboard, health, readiness, metrics and members endpoints.
"""

from datetime import date, datetime, timedelta

import pytest

from rmswatch.db.models import SyncMetadata
from rmswatch.schemas.events import ProcessedEvent
from rmswatch.services.dashboard_service import TIMELINE_DAYS, DashboardService
from rmswatch.services.event_store import event_store
from tests.conftest import make_webhook_payload


def _event(event_id, opportunity_id=101, action_type="update", status="Provisional",
           processed=True, error=None, at=None, name="Spring Gala"):
    return ProcessedEvent(
        id=event_id,
        timestamp=at or datetime(2025, 3, 10, 12, 0),
        opportunity_id=opportunity_id,
        opportunity_name=name,
        customer_name="Acme Events",
        user_id=7,
        user_name="Sam",
        action_type=action_type,
        new_status=status,
        processed=processed,
        error=error,
    )


class TestDashboardService:
    @pytest.mark.asyncio
    async def test_empty_database(self, db):
        data = await DashboardService().get_dashboard(db, today=date(2025, 3, 10))
        assert data.overview.total_events == 0
        assert data.overview.success_rate == 0.0
        assert data.action_type_distribution == []
        assert len(data.timeline) == TIMELINE_DAYS
        assert all(p.count == 0 for p in data.timeline)
        assert data.sync_info is None

    @pytest.mark.asyncio
    async def test_aggregates(self, db):
        await event_store.add_event(db, _event("e1", action_type="update", at=datetime(2025, 3, 10, 9)))
        await event_store.add_event(db, _event("e2", action_type="update", status=None,
                                               at=datetime(2025, 3, 9, 9)))
        await event_store.add_event(db, _event("e3", opportunity_id=202, action_type="mark_as_lost",
                                               status="Lost", processed=False, error="boom",
                                               at=datetime(2025, 3, 10, 10)))
        await event_store.add_event(db, _event("e4", action_type="update", name="Spring Gala 2025",
                                               at=datetime(2025, 3, 10, 11)))
        db.add(SyncMetadata(sync_type="initial_sync", status="completed",
                            started_at=datetime(2025, 3, 1), completed_at=datetime(2025, 3, 1, 0, 5),
                            records_synced=12, records_failed=1))
        await db.flush()

        data = await DashboardService().get_dashboard(db, today=date(2025, 3, 10))

        assert data.overview.total_events == 4
        assert data.overview.total_opportunities == 2
        assert data.overview.failed_events == 1
        assert data.overview.success_rate == 75.0

        assert [(a.action_type, a.count) for a in data.action_type_distribution] == [
            ("update", 3),
            ("mark_as_lost", 1),
        ]
        statuses = {s.status: s.count for s in data.status_distribution}
        assert statuses == {"Provisional": 2, "unknown": 1, "Lost": 1}

        assert data.timeline[-1].date == "2025-03-10"
        assert data.timeline[-1].count == 3
        assert data.timeline[-2].count == 1
        assert data.timeline[0].date == str(date(2025, 3, 10) - timedelta(days=TIMELINE_DAYS - 1))

        top = data.top_opportunities[0]
        assert top.opportunity_id == 101
        assert top.event_count == 3
        assert top.opportunity_name == "Spring Gala 2025"

        assert [e.id for e in data.recent_activity] == ["e4", "e3", "e1", "e2"]
        assert data.sync_info.records_synced == 12


class TestDashboardEndpoint:
    @pytest.mark.asyncio
    async def test_camel_case_payload(self, client):
        await client.post("/api/webhook", json=make_webhook_payload(action_id=960))
        body = (await client.get("/api/dashboard")).json()
        assert body["success"] is True
        overview = body["data"]["overview"]
        assert overview["totalEvents"] == 1
        assert overview["successRate"] == 100.0
        assert body["data"]["actionTypeDistribution"] == [{"actionType": "update", "count": 1}]
        assert body["data"]["recentActivity"][0]["opportunityName"] == "Spring Gala"


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_metrics(self, client):
        await client.post("/api/webhook", json=make_webhook_payload(action_id=970))
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["metrics"]["totalEvents"] == 1
        assert body["metrics"]["successfulEvents"] == 1
        assert body["metrics"]["uptime"] >= 0

    @pytest.mark.asyncio
    async def test_ready(self, client):
        resp = await client.get("/ready")
        assert resp.status_code == 200
        body = resp.json()
        assert body["checks"]["database"] == "ok"
        assert body["checks"]["current_rms"] == "not_configured"

    @pytest.mark.asyncio
    async def test_request_id_header(self, client):
        resp = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"
        assert "X-Response-Time" in resp.headers


class TestMetrics:
    @pytest.mark.asyncio
    async def test_prometheus_format(self, client):
        await client.post("/api/webhook", json=make_webhook_payload(action_id=980))
        await client.post("/api/webhook", json={})

        resp = await client.get("/metrics")
        assert resp.status_code == 200
        lines = dict(line.split(" ", 1) for line in resp.text.strip().splitlines())
        assert lines["rmswatch_webhook_total_received"] == "2"
        assert lines["rmswatch_webhook_total_processed"] == "1"
        assert lines["rmswatch_webhook_total_rejected"] == "1"
        assert lines["rmswatch_database_up"] == "1"
        assert "rmswatch_uptime_seconds" in lines


class TestMembers:
    @pytest.mark.asyncio
    async def test_members_simplified(self, client, fake_rms):
        fake_rms.members = [
            {"id": 1, "name": "Sam", "email": "sam@example.com", "membership_type": "User", "active": True},
            {"id": 2, "name": "Alex", "membership_type": "User"},
            {"id": 3, "name": "Former", "membership_type": "User", "active": False},
        ]
        body = (await client.get("/api/members")).json()
        assert body["count"] == 3
        assert body["members"][1] == {
            "id": 2, "name": "Alex", "email": "", "membershipType": "User", "active": True,
        }
        assert body["members"][2]["active"] is False
        assert fake_rms.requests[0].url.params["q[membership_type_eq]"] == "User"

    @pytest.mark.asyncio
    async def test_members_not_configured(self, client, fake_rms):
        fake_rms.configured = False
        assert (await client.get("/api/members")).status_code == 503

    @pytest.mark.asyncio
    async def test_members_upstream_error(self, client, fake_rms):
        fake_rms.fail_with = (500, "boom")
        resp = await client.get("/api/members")
        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "Failed to fetch members"}
