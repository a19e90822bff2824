"""
Daily generation quota and short-window burst limits.

Both counters live in the relational store and are only ever changed with a
single INSERT ... ON CONFLICT DO UPDATE ... RETURNING statement, so concurrent
requests for the same client cannot lose updates.
"""
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Tuple

from sqlalchemy import case, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from layoutlock.core.config import Settings, settings
from layoutlock.core.database import AsyncSessionLocal
from layoutlock.database.models import DesignGenerationUsage, RateLimitCounter, utc_now

logger = logging.getLogger(__name__)

BURST_ENDPOINT = "generate-design"
SUSPICIOUS_ENDPOINT = "generate-design-suspicious"


@dataclass(frozen=True)
class QuotaLimits:
    daily_limit: int = 8
    burst_limit: int = 4
    burst_window_seconds: int = 900
    suspicious_limit: int = 2
    suspicious_window_seconds: int = 3600

    @classmethod
    def from_settings(cls, settings: Settings) -> "QuotaLimits":
        return cls(
            daily_limit=settings.design_daily_limit,
            burst_limit=settings.design_burst_limit,
            burst_window_seconds=settings.design_burst_window_seconds,
            suspicious_limit=settings.design_suspicious_limit,
            suspicious_window_seconds=settings.design_suspicious_window_seconds,
        )


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    limit: int
    retry_after_seconds: int = 0
    degraded: bool = False  # store unavailable, request let through

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


@dataclass(frozen=True)
class DailyUsage:
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def limit_reached(self) -> bool:
        return self.used >= self.limit


def _dialect_insert(session: AsyncSession):
    dialect_name = session.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert
    if dialect_name == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Quota store does not support the '{dialect_name}' dialect")


class QuotaService:
    """Reads and atomically updates per-client usage counters."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        limits: QuotaLimits,
        now_fn: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.limits = limits
        self.now_fn = now_fn

    def today(self) -> date:
        return self.now_fn().date()

    def seconds_until_daily_reset(self) -> int:
        """Whole seconds until the next UTC midnight, when daily counts start over."""
        now = self.now_fn()
        next_midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time())
        return max(1, math.ceil((next_midnight - now).total_seconds()))

    async def _hit_window(self, client_hash: str, endpoint: str, window_seconds: int) -> Tuple[int, datetime]:
        """Count one request in a fixed window, restarting the window once it has elapsed."""
        now = self.now_fn()
        window_expired = RateLimitCounter.window_started_at <= now - timedelta(seconds=window_seconds)

        async with self.session_factory() as session:
            insert = _dialect_insert(session)
            stmt = insert(RateLimitCounter).values(
                client_hash=client_hash,
                endpoint=endpoint,
                window_started_at=now,
                request_count=1,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[RateLimitCounter.client_hash, RateLimitCounter.endpoint],
                set_={
                    "window_started_at": case((window_expired, now), else_=RateLimitCounter.window_started_at),
                    "request_count": case((window_expired, 1), else_=RateLimitCounter.request_count + 1),
                    "updated_at": now,
                },
            ).returning(RateLimitCounter.request_count, RateLimitCounter.window_started_at)

            count, window_started_at = (await session.execute(stmt)).one()
            await session.commit()
            return count, window_started_at

    async def _check_window(self, client_hash: str, endpoint: str, limit: int, window_seconds: int) -> RateLimitDecision:
        try:
            count, window_started_at = await self._hit_window(client_hash, endpoint, window_seconds)
        except Exception as e:
            logger.error(f"Rate limit check failed ({endpoint}) for client {client_hash[:12]}; continuing: {e}")
            return RateLimitDecision(allowed=True, count=0, limit=limit, degraded=True)

        if count <= limit:
            return RateLimitDecision(allowed=True, count=count, limit=limit)

        elapsed = (self.now_fn() - window_started_at).total_seconds()
        retry_after = max(1, math.ceil(window_seconds - elapsed))
        logger.warning(f"Rate limit '{endpoint}' exceeded for client {client_hash[:12]}: {count}/{limit}, retry in {retry_after}s")
        return RateLimitDecision(allowed=False, count=count, limit=limit, retry_after_seconds=retry_after)

    async def check_burst(self, client_hash: str) -> RateLimitDecision:
        return await self._check_window(
            client_hash, BURST_ENDPOINT, self.limits.burst_limit, self.limits.burst_window_seconds
        )

    async def check_suspicious(self, client_hash: str) -> RateLimitDecision:
        return await self._check_window(
            client_hash, SUSPICIOUS_ENDPOINT, self.limits.suspicious_limit, self.limits.suspicious_window_seconds
        )

    async def get_daily_usage(self, client_hash: str) -> DailyUsage:
        """Today's usage; a failed read counts as zero so the store cannot block all traffic."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(DesignGenerationUsage.generation_count).where(
                        DesignGenerationUsage.client_hash == client_hash,
                        DesignGenerationUsage.usage_date == self.today(),
                    )
                )
                used = result.scalar_one_or_none() or 0
        except Exception as e:
            logger.error(f"Usage query failed for client {client_hash[:12]}; continuing without daily gate: {e}")
            used = 0

        return DailyUsage(used=used, limit=self.limits.daily_limit)

    async def record_generation(self, client_hash: str) -> Optional[int]:
        """
        Add one generation to today's count, never past the daily limit.

        Returns the new count, or None when the limit was already reached by a
        concurrent request or the store could not be updated.

        Known overrun: the daily check happens before generation and this
        increment after it, so two requests that both read ``limit - 1`` each
        receive an image while only one is counted. The guarded upsert keeps
        the stored count from exceeding the limit; it does not stop that
        extra image from being delivered.
        """
        limit = self.limits.daily_limit
        if limit <= 0:
            return None

        now = self.now_fn()
        try:
            async with self.session_factory() as session:
                insert = _dialect_insert(session)
                stmt = insert(DesignGenerationUsage).values(
                    client_hash=client_hash,
                    usage_date=now.date(),
                    generation_count=1,
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[DesignGenerationUsage.client_hash, DesignGenerationUsage.usage_date],
                    set_={
                        "generation_count": DesignGenerationUsage.generation_count + 1,
                        "updated_at": now,
                    },
                    where=DesignGenerationUsage.generation_count < limit,
                ).returning(DesignGenerationUsage.generation_count)

                new_count = (await session.execute(stmt)).scalar_one_or_none()
                await session.commit()
        except Exception as e:
            logger.error(f"Error updating usage for client {client_hash[:12]}: {e}")
            return None

        if new_count is None:
            logger.warning(f"Daily limit already reached for client {client_hash[:12]} at increment time")
        return new_count


# Global service instance
quota_service = QuotaService(AsyncSessionLocal, QuotaLimits.from_settings(settings))
