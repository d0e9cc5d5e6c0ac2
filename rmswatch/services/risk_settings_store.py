"""
Risk settings store — the risk_settings key/value table.

Two keys: "risk_factors" (list of factors) and "approval_thresholds"
(low/medium/high/critical tiers, stored with maxScore / approverName keys).
Missing keys fall back to the built-in defaults.
"""

from typing import Any, Callable, Optional

import structlog
from pydantic import TypeAdapter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rmswatch.db.models import RiskSetting
from rmswatch.engine.risk_factors import (
    ApprovalThresholds,
    RiskFactor,
    RiskSettings,
    default_risk_settings,
)

logger = structlog.get_logger(__name__)

RISK_FACTORS_KEY = "risk_factors"
APPROVAL_THRESHOLDS_KEY = "approval_thresholds"

_factors_adapter = TypeAdapter(list[RiskFactor])


def settings_to_json(settings: RiskSettings) -> dict[str, Any]:
    return {
        RISK_FACTORS_KEY: _factors_adapter.dump_python(settings.risk_factors, mode="json"),
        APPROVAL_THRESHOLDS_KEY: settings.approval_thresholds.model_dump(mode="json", by_alias=True),
    }


class RiskSettingsStore:
    async def _stored(self, session: AsyncSession) -> dict[str, Any]:
        result = await session.execute(
            select(RiskSetting).where(
                RiskSetting.setting_key.in_((RISK_FACTORS_KEY, APPROVAL_THRESHOLDS_KEY))
            )
        )
        return {row.setting_key: row.setting_value for row in result.scalars().all()}

    async def load_raw(self, session: AsyncSession) -> tuple[dict[str, Any], bool]:
        """Stored JSON merged over the defaults, and whether nothing was stored."""
        stored = await self._stored(session)
        merged = settings_to_json(default_risk_settings())
        merged.update({k: v for k, v in stored.items() if v})
        return merged, not stored

    async def load(self, session: AsyncSession) -> RiskSettings:
        """Validated settings. Raises ValueError (ValidationError) on bad stored data."""
        merged, _ = await self.load_raw(session)
        return RiskSettings(
            risk_factors=_factors_adapter.validate_python(merged[RISK_FACTORS_KEY]),
            approval_thresholds=ApprovalThresholds.model_validate(merged[APPROVAL_THRESHOLDS_KEY]),
        )

    async def save(
        self,
        session: AsyncSession,
        risk_factors: Optional[Any] = None,
        approval_thresholds: Optional[Any] = None,
    ) -> list[str]:
        """
        Validate and upsert whichever keys are given; returns the keys written.

        Validation happens before anything is written, so a bad threshold set
        leaves stored factors untouched too.
        """
        updates: dict[str, Any] = {}
        if risk_factors:
            factors = _factors_adapter.validate_python(risk_factors)
            updates[RISK_FACTORS_KEY] = _factors_adapter.dump_python(factors, mode="json")
        if approval_thresholds:
            thresholds = ApprovalThresholds.model_validate(approval_thresholds)
            updates[APPROVAL_THRESHOLDS_KEY] = thresholds.model_dump(mode="json", by_alias=True)

        for key, value in updates.items():
            row = await session.scalar(select(RiskSetting).where(RiskSetting.setting_key == key))
            if row is None:
                session.add(RiskSetting(setting_key=key, setting_value=value))
            else:
                row.setting_value = value
        await session.flush()
        logger.info("risk_settings_saved", keys=list(updates))
        return list(updates)


risk_settings_store = RiskSettingsStore()


def make_settings_loader(
    session_factory: Callable[[], async_sessionmaker[AsyncSession]],
    store: RiskSettingsStore = risk_settings_store,
):
    """Loader coroutine for RiskSettingsCache; opens its own session."""

    async def loader() -> RiskSettings:
        async with session_factory()() as session:
            return await store.load(session)

    return loader
