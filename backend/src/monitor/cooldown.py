from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from backend.src.contracts.interfaces import IKeyValueStore
from backend.src.contracts.models import NotificationFrequency, SavedSearch, utcnow

logger = structlog.get_logger(__name__)

FREQUENCY_COOLDOWN_HOURS: dict[NotificationFrequency, float] = {
    NotificationFrequency.INSTANT: 1,
    NotificationFrequency.HOURLY: 1,
    NotificationFrequency.DAILY: 24,
    NotificationFrequency.WEEKLY: 168,
}

_MIN_RECORD_TTL_SECONDS = 7 * 24 * 60 * 60


def cooldown_key(search_id: str) -> str:
    return f"last-price-check:{search_id}"


class CooldownGate:
    """Decides whether a saved search may be price-checked again.

    The interval comes from the owner's notification frequency; only when the
    frequency does not map to an interval does the search's own
    ``check_frequency_hours`` (then ``default_cooldown_hours``) apply.
    ``NEVER`` makes every search permanently ineligible.
    """

    def __init__(
        self,
        store: IKeyValueStore,
        default_cooldown_hours: float,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._default_cooldown_hours = default_cooldown_hours
        self._now = now

    def resolve_cooldown(
        self,
        saved_search: SavedSearch,
        frequency: NotificationFrequency | None,
    ) -> timedelta | None:
        """Return the cooldown interval, or ``None`` when the search must never run."""
        if frequency == NotificationFrequency.NEVER:
            return None

        hours = FREQUENCY_COOLDOWN_HOURS.get(frequency) if frequency is not None else None
        if hours is None:
            settings = saved_search.price_alerts
            if settings is not None and settings.check_frequency_hours:
                hours = settings.check_frequency_hours
            else:
                hours = self._default_cooldown_hours
        return timedelta(hours=hours)

    async def last_checked_at(self, search_id: str) -> datetime | None:
        raw = await self._store.get(cooldown_key(search_id))
        if not raw:
            return None
        try:
            checked_at = datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("cooldown_record_invalid", search_id=search_id, value=raw)
            return None
        if checked_at.tzinfo is None:
            checked_at = checked_at.replace(tzinfo=timezone.utc)
        return checked_at

    async def is_eligible(
        self,
        saved_search: SavedSearch,
        frequency: NotificationFrequency | None,
    ) -> bool:
        cooldown = self.resolve_cooldown(saved_search, frequency)
        if cooldown is None:
            return False

        last_check = await self.last_checked_at(saved_search.id)
        if last_check is None:
            return True

        return self._now() - last_check >= cooldown

    async def record_check(
        self,
        saved_search: SavedSearch,
        frequency: NotificationFrequency | None = None,
    ) -> datetime:
        """Stamp the search as checked now; the record outlives its cooldown interval."""
        checked_at = self._now()
        cooldown = self.resolve_cooldown(saved_search, frequency)
        ttl = _MIN_RECORD_TTL_SECONDS
        if cooldown is not None:
            ttl = max(ttl, math.ceil(cooldown.total_seconds()))
        await self._store.set(cooldown_key(saved_search.id), checked_at.isoformat(), ttl)
        return checked_at
