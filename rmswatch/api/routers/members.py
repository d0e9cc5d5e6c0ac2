"""GET /api/members?type=User — Current RMS members for assignment pickers."""

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from rmswatch.api.deps import get_current_rms_client
from rmswatch.services.current_rms_client import CurrentRMSClient, CurrentRMSError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["members"])


def simplify_member(member: dict) -> dict:
    return {
        "id": member.get("id"),
        "name": member.get("name"),
        "email": member.get("email") or "",
        "membershipType": member.get("membership_type"),
        "active": member.get("active") is not False,
    }


@router.get("/members")
async def list_members(
    membership_type: str = Query(default="User", alias="type"),
    client: CurrentRMSClient = Depends(get_current_rms_client),
):
    try:
        members = await client.get_all_members(membership_type)
    except CurrentRMSError as e:
        logger.error("members_fetch_failed", status=e.status_code)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to fetch members"},
        )
    simplified = [simplify_member(m) for m in members]
    return {"success": True, "members": simplified, "count": len(simplified)}
