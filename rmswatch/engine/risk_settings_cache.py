"""
Risk settings cache — TTL cache with a degrade-to-defaults contract.

One instance per application, held on app.state. Expiry follows the
injected clock.

Scoring must never fail because settings storage is unavailable: when the
loader raises or returns invalid data, get() logs and hands back the
built-in defaults without caching them, so the next call retries.
Concurrent refreshes are not coordinated; the last completed load wins.
"""

import time
from typing import Awaitable, Callable, Optional

import structlog

from rmswatch.engine.risk_factors import RiskSettings, default_risk_settings

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS: float = 300.0

SettingsLoader = Callable[[], Awaitable[RiskSettings]]


class RiskSettingsCache:
    """Cached accessor for the risk factor catalogue and approval thresholds."""

    def __init__(
        self,
        loader: SettingsLoader,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.loader = loader
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._settings: Optional[RiskSettings] = None
        self._loaded_at: float = 0.0

    @property
    def is_fresh(self) -> bool:
        return (
            self._settings is not None
            and (self.clock() - self._loaded_at) < self.ttl_seconds
        )

    async def get(self) -> RiskSettings:
        """Return cached settings, reloading once the TTL has passed."""
        if self.is_fresh:
            return self._settings  # type: ignore[return-value]

        try:
            loaded = await self.loader()
        except ValueError as e:
            logger.warning("risk_settings_invalid", error=str(e), fallback="defaults")
            return default_risk_settings()
        except Exception as e:
            logger.warning("risk_settings_unavailable", error=str(e), fallback="defaults")
            return default_risk_settings()

        self._settings = loaded
        self._loaded_at = self.clock()
        logger.debug("risk_settings_loaded", factors=len(loaded.risk_factors))
        return loaded

    def clear(self) -> None:
        """Drop the cached value (call after saving new settings)."""
        self._settings = None
        self._loaded_at = 0.0
