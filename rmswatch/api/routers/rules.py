"""GET /api/rules — registered business rules."""

from fastapi import APIRouter

from rmswatch.services.rules_engine import rules_engine

router = APIRouter(prefix="/api", tags=["rules"])


@router.get("/rules")
async def list_rules():
    rules = [rule.to_dict() for rule in rules_engine.get_rules()]
    return {"success": True, "rules": rules, "count": len(rules)}
