from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from gork_v1.services.logger_service import LoggerService
from gork_v1.storage import MessagePackStore


NAMESPACE = "quota"


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: str = ""


@dataclass(frozen=True)
class QuotaSnapshot:
    user_count: int
    user_limit: int
    guild_count: int
    guild_limit: int
    allowed: bool


def utc_day(now: datetime | None = None) -> str:
    current = now or datetime.now(tz=timezone.utc)
    return current.astimezone(timezone.utc).strftime("%Y-%m-%dT00:00:00Z")


class QuotaService:
    """Daily image-generation counters per user and per guild.

    A record is ``{"date": <utc day>, "count": n}``; a record from another day
    reads as zero. Increments reserve before the metered call and decrements
    roll the reservation back when that call fails.
    """

    def __init__(
        self,
        store: MessagePackStore,
        logger: LoggerService,
        *,
        user_limit: int = 1,
        guild_limit: int = 10,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.logger = logger
        self.user_limit = user_limit
        self.guild_limit = guild_limit
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def user_count(self, user_id: int) -> int:
        return self._read(_user_key(user_id))

    def guild_count(self, guild_id: int) -> int:
        return self._read(_guild_key(guild_id))

    def check(self, user_id: int, guild_id: int) -> QuotaDecision:
        if self.user_count(user_id) >= self.user_limit:
            return QuotaDecision(
                allowed=False,
                reason=f"You have reached your daily image generation limit ({self.user_limit} per day).",
            )
        if self.guild_count(guild_id) >= self.guild_limit:
            return QuotaDecision(
                allowed=False,
                reason=f"This server has reached its daily image generation limit ({self.guild_limit} per day).",
            )
        return QuotaDecision(allowed=True)

    def snapshot(self, user_id: int, guild_id: int) -> QuotaSnapshot:
        return QuotaSnapshot(
            user_count=self.user_count(user_id),
            user_limit=self.user_limit,
            guild_count=self.guild_count(guild_id),
            guild_limit=self.guild_limit,
            allowed=self.check(user_id, guild_id).allowed,
        )

    async def increment(self, user_id: int, guild_id: int) -> None:
        user_count = await self._shift(_user_key(user_id), 1)
        guild_count = await self._shift(_guild_key(guild_id), 1)
        self.logger.log("quota.reserved", user_id=user_id, guild_id=guild_id, user_count=user_count, guild_count=guild_count)

    async def decrement(self, user_id: int, guild_id: int) -> None:
        user_count = await self._shift(_user_key(user_id), -1)
        guild_count = await self._shift(_guild_key(guild_id), -1)
        self.logger.log("quota.released", user_id=user_id, guild_id=guild_id, user_count=user_count, guild_count=guild_count)

    def _read(self, key: str) -> int:
        return _count_for_day(self.store.get(NAMESPACE, key), utc_day(self._clock()))

    async def _shift(self, key: str, delta: int) -> int:
        today = utc_day(self._clock())

        def mutate(row: Any) -> dict[str, Any]:
            count = max(0, _count_for_day(row, today) + delta)
            return {"date": today, "count": count}

        row = await self.store.update(NAMESPACE, key, mutate)
        return int(row["count"])


def _count_for_day(row: Any, today: str) -> int:
    if not isinstance(row, dict) or row.get("date") != today:
        return 0
    try:
        return max(0, int(row.get("count", 0)))
    except (TypeError, ValueError):
        return 0


def _user_key(user_id: int) -> str:
    return f"user_{user_id}"


def _guild_key(guild_id: int) -> str:
    return f"guild_{guild_id}"
