"""
Opportunity Sync — mirrors Current RMS opportunities into the local database.

Three entry points:
  - initial_sync:      every opportunity in the default window (-30 days .. +1 year)
  - incremental_sync:  opportunities updated since the last completed sync
                       (or the last 24 hours when there is none)
  - sync_opportunity:  one opportunity, triggered by a webhook

Each run writes a sync_metadata row (running -> completed | failed).
A malformed opportunity, or one the database refuses, counts as a failed
record and does not abort the run; each upsert runs in its own savepoint.
A fetch failure marks the whole run failed.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.db.models import Opportunity, SyncMetadata
from rmswatch.schemas.sync import SyncFailure, SyncRecord, SyncResult
from rmswatch.services.current_rms_client import CurrentRMSClient, get_default_date_range

logger = structlog.get_logger(__name__)

INITIAL_SYNC = "initial_sync"
INCREMENTAL_SYNC = "incremental_sync"
INCREMENTAL_FALLBACK = timedelta(hours=24)

# Per-record failures: malformed payloads and values the database refuses
_RECORD_ERRORS = (AttributeError, KeyError, TypeError, ValueError, OverflowError, SQLAlchemyError)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string (or datetime) -> naive UTC datetime. Empty -> None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _raw_money(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def opportunity_values(opp: dict) -> dict[str, Any]:
    """Map a Current RMS opportunity payload onto Opportunity columns."""
    owner = opp.get("owner") or {}
    return {
        "id": int(opp["id"]),
        "name": opp.get("name") or "",
        "subject": opp.get("subject") or None,
        "description": opp.get("description") or None,
        "starts_at": parse_timestamp(opp.get("starts_at")),
        "ends_at": parse_timestamp(opp.get("ends_at")),
        "opportunity_status": opp.get("opportunity_status") or None,
        "created_at_rms": parse_timestamp(opp.get("created_at")),
        "updated_at_rms": parse_timestamp(opp.get("updated_at")),
        "venue_name": opp.get("venue_name") or None,
        "organisation_id": opp.get("organisation_id") or None,
        "organisation_name": opp.get("organisation_name") or None,
        "owner_id": opp.get("owner_id") or owner.get("id") or None,
        "owner_name": opp.get("owner_name") or owner.get("name") or None,
        "charge_total": _raw_money(opp.get("charge_total")),
        "total_value": _raw_money(opp.get("total_value")),
        "provisional_cost_total": _raw_money(opp.get("provisional_cost_total")),
        "predicted_cost_total": _raw_money(opp.get("predicted_cost_total")),
        "actual_cost_total": _raw_money(opp.get("actual_cost_total")),
        "data": opp,
    }


class OpportunitySync:
    """
    Sync service. The Current RMS client is built lazily per run through
    client_factory, so a missing configuration surfaces as a failed run.
    """

    def __init__(self, client_factory: Callable[[], CurrentRMSClient] = CurrentRMSClient.from_settings):
        self.client_factory = client_factory

    async def upsert_opportunity(
        self,
        session: AsyncSession,
        opp: dict,
        last_webhook_at: Optional[datetime] = None,
    ) -> Opportunity:
        """
        Insert or update one mirror row inside a savepoint.

        A failed flush rolls back only this row; the caller's transaction
        stays usable.
        """
        values = opportunity_values(opp)
        async with session.begin_nested():
            row = await session.get(Opportunity, values["id"])
            if row is None:
                row = Opportunity(**values)
                session.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            row.synced_at = datetime.utcnow()
            if last_webhook_at is not None:
                row.last_webhook_at = last_webhook_at
        return row

    async def _run(
        self,
        session: AsyncSession,
        sync_type: str,
        meta: dict,
        fetch,
    ) -> SyncResult:
        started_at = datetime.utcnow()
        logs: list[str] = []

        def log(message: str, **kw) -> None:
            logs.append(message)
            logger.info("sync_progress", sync_type=sync_type, message=message, **kw)

        record = SyncMetadata(sync_type=sync_type, status="running", started_at=started_at, meta=meta)
        session.add(record)
        await session.flush()
        log(f"Starting {sync_type} (ID: {record.id})", sync_id=record.id)

        synced = 0
        failed = 0
        first_failure: Optional[SyncFailure] = None
        try:
            opportunities = await fetch(self.client_factory())
            log(f"Fetched {len(opportunities)} opportunities from Current RMS")

            for opp in opportunities:
                try:
                    await self.upsert_opportunity(session, opp)
                except _RECORD_ERRORS as e:
                    failed += 1
                    opp_id = opp.get("id") if isinstance(opp, dict) else None
                    log(f"Failed to sync opportunity {opp_id}: {e}")
                    if first_failure is None:
                        first_failure = SyncFailure(
                            error=str(e),
                            opportunity_id=opp_id if isinstance(opp_id, int) else None,
                            opportunity_keys=list(opp) if isinstance(opp, dict) else [],
                        )
                    continue
                synced += 1
        except Exception as e:
            record.status = "failed"
            record.completed_at = datetime.utcnow()
            record.records_synced = synced
            record.records_failed = failed
            record.error = str(e)
            await session.flush()
            logger.error("sync_failed", sync_type=sync_type, sync_id=record.id, error=str(e))
            logs.append(f"{sync_type} failed: {e}")
            return SyncResult(
                success=False,
                sync_id=record.id,
                records_synced=synced,
                records_failed=failed,
                error=str(e),
                started_at=started_at,
                logs=logs,
                first_failure=first_failure,
            )

        record.status = "completed"
        record.completed_at = datetime.utcnow()
        record.records_synced = synced
        record.records_failed = failed
        await session.flush()
        log(f"{sync_type} completed: {synced} synced, {failed} failed", synced=synced, failed=failed)

        return SyncResult(
            success=True,
            sync_id=record.id,
            records_synced=synced,
            records_failed=failed,
            started_at=started_at,
            completed_at=record.completed_at,
            logs=logs,
            first_failure=first_failure,
        )

    async def initial_sync(self, session: AsyncSession, now: Optional[datetime] = None) -> SyncResult:
        start, end = get_default_date_range(now)

        async def fetch(client: CurrentRMSClient) -> list[dict]:
            return await client.get_all_opportunities(start, end)

        return await self._run(
            session,
            INITIAL_SYNC,
            {"dateRange": {"start": start.isoformat(), "end": end.isoformat()}},
            fetch,
        )

    async def incremental_sync(self, session: AsyncSession, now: Optional[datetime] = None) -> SyncResult:
        last_completed = await session.scalar(
            select(SyncMetadata.completed_at)
            .where(
                SyncMetadata.sync_type.in_((INITIAL_SYNC, INCREMENTAL_SYNC)),
                SyncMetadata.status == "completed",
            )
            .order_by(SyncMetadata.completed_at.desc())
            .limit(1)
        )
        if last_completed is not None:
            since = last_completed.replace(tzinfo=timezone.utc)
        else:
            since = (now or datetime.now(timezone.utc)) - INCREMENTAL_FALLBACK

        async def fetch(client: CurrentRMSClient) -> list[dict]:
            body = await client.get_updated_opportunities(since)
            return body.get("opportunities") or []

        return await self._run(session, INCREMENTAL_SYNC, {"since": since.isoformat()}, fetch)

    async def sync_opportunity(self, session: AsyncSession, opportunity_id: int) -> Opportunity:
        """Fetch one opportunity, upsert it and stamp last_webhook_at."""
        client = self.client_factory()
        opp = await client.get_opportunity(opportunity_id)
        row = await self.upsert_opportunity(session, opp, last_webhook_at=datetime.utcnow())
        logger.info("opportunity_synced", opportunity_id=opportunity_id)
        return row

    async def get_last_sync_status(self, session: AsyncSession) -> Optional[SyncRecord]:
        row = await session.scalar(
            select(SyncMetadata).order_by(SyncMetadata.started_at.desc(), SyncMetadata.id.desc()).limit(1)
        )
        return SyncRecord.model_validate(row) if row else None

    async def get_sync_history(self, session: AsyncSession, limit: int = 10) -> list[SyncRecord]:
        result = await session.execute(
            select(SyncMetadata).order_by(SyncMetadata.started_at.desc(), SyncMetadata.id.desc()).limit(limit)
        )
        return [SyncRecord.model_validate(r) for r in result.scalars().all()]


opportunity_sync = OpportunitySync()
