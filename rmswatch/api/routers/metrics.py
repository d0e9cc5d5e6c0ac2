"""
Prometheus Metrics Endpoint.

GET /metrics — operational metrics in Prometheus text format:
webhook counters (received / processed / failed / rejected), uptime and
database status.
"""

import time

import structlog
from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from sqlalchemy import text as sa_text

from rmswatch.db.engine import get_engine
from rmswatch.services.webhook_service import get_webhook_metrics

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["observability"])

_start_time = time.time()


def _format_prometheus(metrics: dict[str, float | int | str]) -> str:
    """Format metrics dict as Prometheus text exposition format."""
    lines: list[str] = []
    for key, value in metrics.items():
        safe_key = key.replace(".", "_").replace("-", "_")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            lines.append(f"rmswatch_{safe_key} {value}")
    return "\n".join(lines) + "\n"


@router.get(
    "/metrics",
    response_class=PlainTextResponse,
    summary="Prometheus metrics",
)
async def prometheus_metrics():
    webhook = get_webhook_metrics()

    metrics = {
        "uptime_seconds": round(time.time() - _start_time, 1),
        "webhook_total_received": webhook["total_received"],
        "webhook_total_processed": webhook["total_processed"],
        "webhook_total_failed": webhook["total_failed"],
        "webhook_total_rejected": webhook["total_rejected"],
        "webhook_success_rate": round(
            webhook["total_processed"] / max(webhook["total_received"], 1), 4
        ),
    }

    try:
        async with get_engine().connect() as conn:
            await conn.execute(sa_text("SELECT 1"))
        metrics["database_up"] = 1
    except Exception as e:
        logger.warning("metrics_db_probe_failed", error=str(e))
        metrics["database_up"] = 0

    return _format_prometheus(metrics)
