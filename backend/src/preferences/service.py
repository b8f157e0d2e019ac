from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import structlog

from backend.src.contracts.errors import AppError
from backend.src.contracts.interfaces import IKeyValueStore
from backend.src.contracts.models import (
    NotificationFrequency,
    NotificationPreferences,
    NotificationPreferencesUpdate,
    NotificationType,
    UserPreferences,
    utcnow,
)
from backend.src.contracts.result import Err, Ok, Result

logger = structlog.get_logger(__name__)

_KEY_PREFIX = "user-preferences:"
_TTL_SECONDS = 90 * 24 * 60 * 60


class UserPreferencesService:
    """IPreferencesService implementation over the key-value store.

    Users without a stored record get the default preferences: email on,
    ``INSTANT`` frequency, price alerts enabled.
    """

    def __init__(
        self,
        store: IKeyValueStore,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._now = now

    async def get_preferences(self, user_id: str) -> Result[UserPreferences, AppError]:
        try:
            raw = await self._store.get(f"{_KEY_PREFIX}{user_id}")
            if not raw:
                return Ok(UserPreferences(user_id=user_id))
            return Ok(UserPreferences.model_validate_json(raw))
        except Exception as exc:  # noqa: BLE001
            logger.error("preferences_fetch_failed", user_id=user_id, error=str(exc))
            return Err(AppError.service_error("Failed to retrieve user preferences"))

    async def save_preferences(
        self, preferences: UserPreferences
    ) -> Result[UserPreferences, AppError]:
        saved = preferences.model_copy(update={"updated_at": self._now()})
        try:
            await self._store.set(
                f"{_KEY_PREFIX}{saved.user_id}",
                saved.model_dump_json(),
                _TTL_SECONDS,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("preferences_save_failed", user_id=saved.user_id, error=str(exc))
            return Err(AppError.service_error("Failed to save user preferences"))
        logger.info("preferences_saved", user_id=saved.user_id)
        return Ok(saved)

    async def update_preferences(
        self, user_id: str, updates: NotificationPreferencesUpdate
    ) -> Result[UserPreferences, AppError]:
        existing = await self.get_preferences(user_id)
        if isinstance(existing, Err):
            return existing

        notifications = NotificationPreferences.model_validate(
            {
                **existing.value.notifications.model_dump(),
                **updates.model_dump(exclude_none=True),
            }
        )
        return await self.save_preferences(
            existing.value.model_copy(update={"notifications": notifications})
        )

    async def reset_preferences(self, user_id: str) -> Result[UserPreferences, AppError]:
        return await self.save_preferences(UserPreferences(user_id=user_id))

    async def delete_preferences(self, user_id: str) -> Result[None, AppError]:
        try:
            await self._store.delete(f"{_KEY_PREFIX}{user_id}")
        except Exception as exc:  # noqa: BLE001
            logger.error("preferences_delete_failed", user_id=user_id, error=str(exc))
            return Err(AppError.service_error("Failed to delete user preferences"))
        return Ok(None)

    async def is_notification_enabled(
        self, user_id: str, notification_type: NotificationType
    ) -> bool:
        result = await self.get_preferences(user_id)
        if isinstance(result, Err):
            return False

        notifications = result.value.notifications
        if not notifications.email_enabled:
            return False

        if notification_type == NotificationType.PRICE_ALERTS:
            return notifications.price_alerts.enabled
        if notification_type == NotificationType.SEARCH_EXPIRATION:
            return notifications.search_expiration.enabled
        if notification_type == NotificationType.MARKETING:
            return notifications.marketing.enabled
        return False

    async def get_notification_frequency(self, user_id: str) -> NotificationFrequency:
        result = await self.get_preferences(user_id)
        if isinstance(result, Err):
            return NotificationFrequency.INSTANT
        return result.value.notifications.frequency
