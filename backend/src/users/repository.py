from __future__ import annotations

import structlog
from pydantic import ValidationError

from backend.src.config import Settings
from backend.src.contracts.interfaces import IKeyValueStore
from backend.src.contracts.models import UserContact

logger = structlog.get_logger(__name__)


class UserRepository:
    """IUserDirectory implementation reading ``user:<id>`` records from the store."""

    def __init__(self, store: IKeyValueStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    async def get_user(self, user_id: str) -> UserContact | None:
        raw = await self._store.get(f"user:{user_id}")
        if not raw:
            return None
        try:
            return UserContact.model_validate_json(raw)
        except ValidationError:
            logger.warning("user_record_invalid", user_id=user_id)
            return None

    async def get_user_email(self, user_id: str) -> str | None:
        if self._settings.is_development:
            return f"user+{user_id}@example.com"

        user = await self.get_user(user_id)
        if user is None:
            return None
        return user.email
