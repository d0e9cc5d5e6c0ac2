"""
Test fixtures for rmswatch.

Provides:
- Async DB session fixture (SQLite in-memory, fresh schema per test)
- FakeCurrentRMS: a programmable Current RMS API behind httpx.MockTransport
- FastAPI test client with DB / Current RMS / risk settings cache overrides
- Sample data factories
"""

import json
import os
from datetime import datetime
from typing import AsyncGenerator, Optional

# Keep the app away from any local .env database or Current RMS account
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CURRENT_RMS_SUBDOMAIN"] = ""
os.environ["CURRENT_RMS_API_KEY"] = ""

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rmswatch.api.deps import get_db, get_optional_current_rms_client
from rmswatch.db.engine import Base
from rmswatch.db.models import (  # noqa: F401 — register all models
    AuditLog,
    ForecastMetadata,
    Opportunity,
    RiskSetting,
    SyncMetadata,
    WebhookEvent,
)
from rmswatch.engine.risk_settings_cache import RiskSettingsCache
from rmswatch.main import app
from rmswatch.services import webhook_service
from rmswatch.services.current_rms_client import CurrentRMSClient, CurrentRMSNotConfigured
from rmswatch.services.opportunity_sync import opportunity_sync
from rmswatch.services.risk_settings_store import make_settings_loader

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    """Test engine; StaticPool keeps the single in-memory database alive."""
    eng = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a clean DB session per test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def reset_webhook_metrics():
    for key in webhook_service._webhook_metrics:
        webhook_service._webhook_metrics[key] = 0
    yield


# ── Current RMS fake ─────────────────────────────────────────────────────


class FakeCurrentRMS:
    """In-memory Current RMS: opportunities, members and custom field writes."""

    def __init__(self):
        self.configured = True
        self.opportunities: dict[int, dict] = {}
        self.members: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.fail_with: Optional[tuple[int, str]] = None

    def add_opportunity(self, **fields) -> dict:
        opp = make_rms_opportunity(**fields)
        self.opportunities[opp["id"]] = opp
        return opp

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            status, body = self.fail_with
            return httpx.Response(status, text=body)

        path = request.url.path.removeprefix("/api/v1")
        if path == "/opportunities":
            return httpx.Response(
                200,
                json={"opportunities": list(self.opportunities.values()), "meta": {"total_pages": 1}},
            )
        if path.startswith("/opportunities/"):
            opp_id = int(path.rsplit("/", 1)[1])
            if request.method == "PATCH":
                fields = json.loads(request.content)["opportunity"]["custom_fields"]
                opp = self.opportunities.setdefault(opp_id, {"id": opp_id})
                opp.setdefault("custom_fields", {}).update(fields)
                return httpx.Response(200, json={"opportunity": opp})
            if opp_id not in self.opportunities:
                return httpx.Response(404, text='{"errors":["Not found"]}')
            return httpx.Response(200, json={"opportunity": self.opportunities[opp_id]})
        if path == "/members":
            return httpx.Response(200, json={"members": self.members, "meta": {"total_pages": 1}})
        return httpx.Response(404, text="unknown endpoint")

    def client(self) -> CurrentRMSClient:
        if not self.configured:
            raise CurrentRMSNotConfigured("Current RMS credentials not configured")
        return CurrentRMSClient(
            subdomain="acme",
            api_key="secret",
            base_url="https://rms.test/api/v1",
            page_delay=0,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def fake_rms() -> FakeCurrentRMS:
    return FakeCurrentRMS()


# ── App client ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(session_factory, fake_rms, monkeypatch):
    """Async test client with DB, Current RMS and settings cache overrides."""

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    def _override_rms_client():
        try:
            return fake_rms.client()
        except CurrentRMSNotConfigured:
            return None

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_optional_current_rms_client] = _override_rms_client
    monkeypatch.setattr(opportunity_sync, "client_factory", fake_rms.client)
    monkeypatch.setattr(
        app.state,
        "risk_settings_cache",
        RiskSettingsCache(make_settings_loader(lambda: session_factory)),
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


# ── Sample data ─────────────────────────────────────────────────────────


def make_rms_opportunity(
    id: int = 101,
    name: str = "Spring Gala",
    starts_at: str = "2025-03-10T09:00:00Z",
    charge_total: str = "10000.00",
    provisional_cost_total: str = "6000.00",
    owner_name: str = "Alice",
    organisation_name: str = "Acme Events",
    **extra,
) -> dict:
    """A Current RMS opportunity payload as the API returns it."""
    opp = {
        "id": id,
        "name": name,
        "subject": name,
        "starts_at": starts_at,
        "ends_at": starts_at,
        "opportunity_status": "Provisional",
        "created_at": "2025-01-01T10:00:00Z",
        "updated_at": "2025-01-02T10:00:00Z",
        "organisation_id": 55,
        "organisation_name": organisation_name,
        "owner_id": 7,
        "owner_name": owner_name,
        "charge_total": charge_total,
        "provisional_cost_total": provisional_cost_total,
        "predicted_cost_total": "0.0",
        "actual_cost_total": "0.0",
        "custom_fields": {},
    }
    opp.update(extra)
    return opp


def make_webhook_payload(
    action_id: int = 900,
    subject_id: Optional[int] = 101,
    action_type: str = "update",
    status: Optional[str] = "Provisional",
) -> dict:
    """A Current RMS webhook body."""
    return {
        "action": {
            "id": action_id,
            "subject_id": subject_id,
            "subject_type": "Opportunity",
            "member_id": 7,
            "action_type": action_type,
            "name": "Spring Gala",
            "created_at": "2025-01-02T10:00:00Z",
            "member": {"id": 7, "name": "Sam Planner", "email": "sam@example.com"},
            "subject": {
                "id": subject_id,
                "name": "Spring Gala",
                "opportunity_status": status,
                "organisation_name": "Acme Events",
            },
        }
    }


async def insert_opportunity(session: AsyncSession, **fields) -> Opportunity:
    """Write a mirrored opportunity row directly."""
    values = {
        "id": 101,
        "name": "Spring Gala",
        "starts_at": datetime(2025, 3, 10, 9, 0),
        "charge_total": "10000.00",
        "provisional_cost_total": "6000.00",
        "owner_name": "Alice",
        "organisation_name": "Acme Events",
        "opportunity_status": "Provisional",
        "data": {},
    }
    values.update(fields)
    row = Opportunity(**values)
    session.add(row)
    await session.flush()
    return row
