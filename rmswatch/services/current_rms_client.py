"""
Current RMS Client — HTTP client for the Current RMS REST API.

Current RMS owns opportunities and members; rmswatch reads them for the local
mirror and writes back risk assessments as opportunity custom fields.

Authentication is by header: X-SUBDOMAIN + X-AUTH-TOKEN.
Non-2xx responses raise CurrentRMSError carrying the status and body text.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
import structlog

from rmswatch.config import settings

logger = structlog.get_logger(__name__)

MAX_PER_PAGE = 100


class CurrentRMSNotConfigured(RuntimeError):
    """Subdomain or API key missing."""


class CurrentRMSError(Exception):
    """Current RMS answered with a non-success status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Current RMS API error ({status_code}): {body}")


def get_default_date_range(now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """Sync window: 30 days back to one year ahead."""
    now = now or datetime.now(timezone.utc)
    start = now - timedelta(days=30)
    try:
        end = now.replace(year=now.year + 1)
    except ValueError:
        # 29 Feb
        end = now.replace(year=now.year + 1, day=28)
    return start, end


def _iso(value: datetime | str | None) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return value.isoformat()


class CurrentRMSClient:
    """
    Async client for the Current RMS API.

    A transport can be injected (httpx.MockTransport in tests).
    """

    def __init__(
        self,
        subdomain: str,
        api_key: str,
        base_url: str = "https://api.current-rms.com/api/v1",
        timeout: float = 30.0,
        page_delay: float = 0.2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not subdomain or not api_key:
            raise CurrentRMSNotConfigured("Current RMS credentials not configured")
        self.subdomain = subdomain
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_delay = page_delay
        self.transport = transport

    @classmethod
    def from_settings(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "CurrentRMSClient":
        return cls(
            subdomain=settings.current_rms_subdomain,
            api_key=settings.current_rms_api_key,
            base_url=settings.current_rms_base_url,
            timeout=settings.current_rms_timeout_seconds,
            page_delay=settings.current_rms_page_delay_seconds,
            transport=transport,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={
                "X-SUBDOMAIN": self.subdomain,
                "X-AUTH-TOKEN": self.api_key,
                "Content-Type": "application/json",
            },
            transport=self.transport,
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> dict:
        logger.debug("current_rms_request", method=method, endpoint=endpoint)
        async with self._client() as client:
            resp = await client.request(method, endpoint, params=params, json=json)
        if resp.status_code >= 400:
            logger.warning(
                "current_rms_error",
                method=method,
                endpoint=endpoint,
                status=resp.status_code,
            )
            raise CurrentRMSError(resp.status_code, resp.text)
        return resp.json()

    # ── Opportunities ──────────────────────────────────────────────────

    async def get_opportunities(
        self,
        start_date: datetime | str | None = None,
        end_date: datetime | str | None = None,
        page: int = 1,
        per_page: int = MAX_PER_PAGE,
    ) -> dict:
        """One page of opportunities: {"opportunities": [...], "meta": {...}}."""
        params: dict[str, Any] = {}
        if start_date:
            params["q[starts_at_gteq]"] = _iso(start_date)
        if end_date:
            params["q[ends_at_lteq]"] = _iso(end_date)
        params["page"] = page
        params["per_page"] = min(per_page, MAX_PER_PAGE)

        body = await self._request("GET", "/opportunities", params=params)
        logger.info(
            "current_rms_opportunities_fetched",
            count=len(body.get("opportunities") or []),
            page=page,
        )
        return body

    async def get_opportunity(self, opportunity_id: int) -> dict:
        body = await self._request("GET", f"/opportunities/{opportunity_id}")
        return body["opportunity"]

    async def get_all_opportunities(
        self,
        start_date: datetime | str | None = None,
        end_date: datetime | str | None = None,
    ) -> list[dict]:
        """Walk every page (meta.total_pages), pausing between requests."""
        results: list[dict] = []
        page = 1
        while True:
            body = await self.get_opportunities(start_date, end_date, page, MAX_PER_PAGE)
            batch = body.get("opportunities") or []
            if not batch:
                break
            results.extend(batch)

            total_pages = (body.get("meta") or {}).get("total_pages") or 1
            if page >= total_pages:
                break
            page += 1
            if self.page_delay:
                await asyncio.sleep(self.page_delay)

        logger.info("current_rms_all_opportunities_fetched", total=len(results))
        return results

    async def get_updated_opportunities(
        self,
        since: datetime | str,
        page: int = 1,
        per_page: int = MAX_PER_PAGE,
    ) -> dict:
        params = {
            "q[updated_at_gteq]": _iso(since),
            "page": page,
            "per_page": min(per_page, MAX_PER_PAGE),
        }
        return await self._request("GET", "/opportunities", params=params)

    async def update_opportunity_custom_fields(self, opportunity_id: int, custom_fields: dict) -> dict:
        """PATCH custom fields onto an opportunity; returns Current RMS' response body."""
        body = await self._request(
            "PATCH",
            f"/opportunities/{opportunity_id}",
            json={"opportunity": {"custom_fields": custom_fields}},
        )
        logger.info("current_rms_custom_fields_updated", opportunity_id=opportunity_id)
        return body

    # ── Members ────────────────────────────────────────────────────────

    async def get_members(
        self,
        membership_type: Optional[str] = None,
        page: int = 1,
        per_page: int = MAX_PER_PAGE,
    ) -> dict:
        params: dict[str, Any] = {"page": page, "per_page": min(per_page, MAX_PER_PAGE)}
        if membership_type:
            params["q[membership_type_eq]"] = membership_type
        return await self._request("GET", "/members", params=params)

    async def get_all_members(self, membership_type: str = "User") -> list[dict]:
        results: list[dict] = []
        page = 1
        while True:
            body = await self.get_members(membership_type, page)
            batch = body.get("members") or []
            if not batch:
                break
            results.extend(batch)
            total_pages = (body.get("meta") or {}).get("total_pages") or 1
            if page >= total_pages:
                break
            page += 1
            if self.page_delay:
                await asyncio.sleep(self.page_delay)
        return results
