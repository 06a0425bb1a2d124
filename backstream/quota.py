"""
Daily spend ceiling for the shared/free provider tier.

Usage is stored on the user record as (ai_usage_date, ai_usage_cents).
The daily reset is lazy: a stored date other than today counts as zero
spend, and the next charge overwrites it.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from backstream.exceptions import QuotaExceeded, UserNotFound
from backstream.models import QuotaStatus, User
from backstream.store import JobStore

logger = logging.getLogger(__name__)

DAILY_AI_LIMIT_CENTS = 10.0
QUOTA_EXCEEDED_MESSAGE = (
    "Daily usage limit reached. Connect your OpenRouter account to continue."
)


def utc_today() -> str:
    """Current UTC calendar date as YYYY-MM-DD."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


class QuotaGate:
    def __init__(
        self,
        store: JobStore,
        *,
        daily_limit_cents: float = DAILY_AI_LIMIT_CENTS,
        clock: Callable[[], str] = utc_today,
    ) -> None:
        self._store = store
        self.daily_limit_cents = daily_limit_cents
        self._clock = clock

    def today(self) -> str:
        return self._clock()

    @staticmethod
    def used_cents(user: User, today: str) -> float:
        if user.ai_usage_date != today:
            return 0.0
        return user.ai_usage_cents or 0.0

    async def _load_user(self, user_id: str) -> User:
        user = await self._store.get_user(user_id)
        if user is None:
            raise UserNotFound("User not found", details={"user_id": user_id})
        return user

    async def check_remaining(self, user_id: str) -> bool:
        """True while today's spend is below the ceiling."""
        user = await self._load_user(user_id)
        return self.used_cents(user, self.today()) < self.daily_limit_cents

    async def ensure_allowed(self, user_id: str) -> None:
        """Raise QuotaExceeded if the user has used up today's allowance."""
        user = await self._load_user(user_id)
        used = self.used_cents(user, self.today())
        if used >= self.daily_limit_cents:
            raise QuotaExceeded(
                QUOTA_EXCEEDED_MESSAGE,
                used_cents=used,
                limit_cents=self.daily_limit_cents,
            )

    async def status(self, user_id: str) -> QuotaStatus:
        user = await self._load_user(user_id)
        today = self.today()
        used = self.used_cents(user, today)
        return QuotaStatus(
            date=today,
            used_cents=used,
            limit_cents=self.daily_limit_cents,
            remaining_cents=max(0.0, self.daily_limit_cents - used),
            allowed=used < self.daily_limit_cents,
        )

    async def charge(self, user_id: str, cents: float) -> Optional[User]:
        """
        Record spend against today's allowance.

        Non-positive amounts are ignored. The store applies the lazy reset
        and the addition atomically.
        """
        if cents <= 0:
            return None
        user = await self._store.increment_usage(user_id, self.today(), cents)
        if user is None:
            logger.warning("Cannot charge %.4f cents: user %s not found", cents, user_id)
            return None
        logger.info(
            "Charged user %s %.4f cents (today: %.4f)",
            user_id,
            cents,
            user.ai_usage_cents,
        )
        return user
