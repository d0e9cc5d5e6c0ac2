"""
FastAPI dependencies shared by the routers.

get_optional_current_rms_client is the single place a Current RMS client is
built, so tests override it with a client on httpx.MockTransport.
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.db.engine import get_session_factory
from rmswatch.engine.risk_settings_cache import RiskSettingsCache
from rmswatch.services.current_rms_client import CurrentRMSClient, CurrentRMSNotConfigured


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit on success, roll back on error."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_risk_settings_cache(request: Request) -> RiskSettingsCache:
    return request.app.state.risk_settings_cache


def get_optional_current_rms_client() -> Optional[CurrentRMSClient]:
    """None when Current RMS credentials are not configured."""
    try:
        return CurrentRMSClient.from_settings()
    except CurrentRMSNotConfigured:
        return None


def get_current_rms_client(
    client: Optional[CurrentRMSClient] = Depends(get_optional_current_rms_client),
) -> CurrentRMSClient:
    if client is None:
        raise HTTPException(status_code=503, detail="Current RMS not configured")
    return client


__all__ = [
    "get_db",
    "get_risk_settings_cache",
    "get_optional_current_rms_client",
    "get_current_rms_client",
]
