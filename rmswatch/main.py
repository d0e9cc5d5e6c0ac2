"""
rmswatch — FastAPI Application.

Current RMS webhook receiver, opportunity mirror, forecast and risk dashboard API.
Run: uvicorn rmswatch.main:app --host 0.0.0.0 --port 8000 --reload

  - POST /api/webhook            ← Current RMS pushes events here
  - POST /api/replay             ← re-run a stored event through the rules
  - GET  /api/forecast/summary
  - PATCH /api/opportunities/{id}/risk
  - GET  /health                 ← event metrics + liveness
  - GET  /ready                  ← database probe
  - GET  /metrics                ← Prometheus metrics
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text as sa_text
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.api.deps import get_db
from rmswatch.config import settings
from rmswatch.db.engine import close_db, get_engine, get_session_factory, init_db
from rmswatch.engine.risk_settings_cache import RiskSettingsCache
from rmswatch.logging_config import configure_logging
from rmswatch.middleware.error_handler import ErrorHandlerMiddleware
from rmswatch.middleware.request_context import RequestContextMiddleware
from rmswatch.services.event_store import event_store
from rmswatch.services.risk_settings_store import make_settings_loader
from rmswatch.services.webhook_service import get_webhook_metrics

# Import all routers
from rmswatch.api.routers.webhook import router as webhook_router
from rmswatch.api.routers.events import router as events_router
from rmswatch.api.routers.rules import router as rules_router
from rmswatch.api.routers.dashboard import router as dashboard_router
from rmswatch.api.routers.forecast import router as forecast_router
from rmswatch.api.routers.risk import router as risk_router
from rmswatch.api.routers.sync import router as sync_router
from rmswatch.api.routers.members import router as members_router
from rmswatch.api.routers.metrics import router as metrics_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    configure_logging()
    logger.info("rmswatch_starting", version=settings.app_version)
    if not settings.current_rms_configured:
        logger.warning(
            "current_rms_not_configured",
            msg="Sync, members and risk write-back will return 503",
        )
    await init_db()
    yield
    await close_db()
    logger.info("rmswatch_shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="rmswatch",
        description=(
            "# rmswatch — Current RMS webhook dashboard\n\n"
            "- **Webhooks**: Receive → Rules → Event store → Opportunity mirror\n"
            "- **Forecast**: weighted pipeline by owner, customer, probability band and period\n"
            "- **Risk**: factor scoring → risk level → approval routing → Current RMS write-back\n"
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_tags=[
            {"name": "health", "description": "Liveness and readiness probes"},
            {"name": "webhook", "description": "Current RMS webhook intake and replay"},
            {"name": "events", "description": "Processed events and audit trail"},
            {"name": "rules", "description": "Registered business rules"},
            {"name": "dashboard", "description": "Aggregated dashboard metrics"},
            {"name": "forecast", "description": "Forecast summary and per-opportunity metadata"},
            {"name": "risk", "description": "Risk settings, assessment and summary"},
            {"name": "sync", "description": "Opportunity sync from Current RMS"},
            {"name": "members", "description": "Current RMS members"},
            {"name": "observability", "description": "Prometheus metrics"},
        ],
    )

    app.state.risk_settings_cache = RiskSettingsCache(
        make_settings_loader(get_session_factory),
        ttl_seconds=settings.risk_settings_cache_ttl_seconds,
    )

    # ── Middleware (last added = outermost) ──
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestContextMiddleware)

    # CORS — outermost so OPTIONS preflight is answered first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routes ────────────────────────────────────────────────────────
    app.include_router(webhook_router)     # POST /api/webhook, /api/replay
    app.include_router(events_router)      # /api/events/*, /api/audit
    app.include_router(rules_router)       # GET /api/rules
    app.include_router(dashboard_router)   # GET /api/dashboard
    app.include_router(forecast_router)    # /api/forecast/*
    app.include_router(risk_router)        # /api/settings/risk, /api/risk/*
    app.include_router(sync_router)        # /api/sync/*, GET /api/opportunities
    app.include_router(members_router)     # GET /api/members
    app.include_router(metrics_router)     # GET /metrics

    # ── Health Check ─────────────────────────────────────────────────
    @app.get("/health", tags=["health"])
    async def health(db: AsyncSession = Depends(get_db)):
        """Liveness plus event-store counters."""
        metrics = await event_store.get_metrics(db)
        return {
            "success": True,
            "status": "healthy",
            "metrics": metrics,
            "timestamp": datetime.utcnow(),
        }

    # ── Readiness Check ──────────────────────────────────────────────
    @app.get("/ready", tags=["health"])
    async def readiness():
        """
        Readiness probe — can the service handle requests?

        Returns 200 if the database answers, 503 otherwise. Current RMS is
        reported but never fails readiness.
        """
        checks: dict = {"api": "ok"}

        try:
            async with get_engine().connect() as conn:
                await asyncio.wait_for(
                    conn.execute(sa_text("SELECT 1")),
                    timeout=settings.health_check_timeout_seconds,
                )
            checks["database"] = "ok"
        except Exception as e:
            logger.warning("readiness_db_probe_failed", error=str(e))
            checks["database"] = "unavailable"

        checks["current_rms"] = "configured" if settings.current_rms_configured else "not_configured"
        checks["webhooks"] = get_webhook_metrics()

        db_ok = checks["database"] == "ok"
        return JSONResponse(
            status_code=200 if db_ok else 503,
            content={
                "status": "ok" if db_ok else "unavailable",
                "version": settings.app_version,
                "service": settings.app_name,
                "environment": settings.environment,
                "checks": checks,
                "timestamp": datetime.utcnow().isoformat(),
            },
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rmswatch.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
