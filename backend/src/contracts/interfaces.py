from __future__ import annotations

from collections.abc import Collection
from typing import Any, Protocol

from backend.src.contracts.errors import AppError
from backend.src.contracts.models import (
    EmailMessage,
    FlightOffer,
    FlightSearchQuery,
    NotificationFrequency,
    NotificationType,
    PriceAlert,
    PriceCheckResult,
    SavedSearch,
)
from backend.src.contracts.result import Result


class IKeyValueStore(Protocol):
    async def keys(self, pattern: str) -> list[str]: ...

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...


class ISavedSearchService(Protocol):
    async def get_saved_searches(self, user_id: str) -> Result[list[SavedSearch], AppError]: ...

    async def check_saved_search_prices(
        self, user_id: str, search_ids: Collection[str] | None = None
    ) -> Result[list[PriceCheckResult], AppError]: ...


class IPreferencesService(Protocol):
    async def is_notification_enabled(
        self, user_id: str, notification_type: NotificationType
    ) -> bool: ...

    async def get_notification_frequency(self, user_id: str) -> NotificationFrequency: ...


class IFlightProvider(Protocol):
    async def search_flights(self, query: FlightSearchQuery) -> list[FlightOffer]: ...


class IUserDirectory(Protocol):
    async def get_user_email(self, user_id: str) -> str | None: ...


class IEmailTransport(Protocol):
    async def send_email(self, message: EmailMessage) -> bool: ...


class IAlertDispatcher(Protocol):
    async def dispatch(self, alert: PriceAlert, saved_search: SavedSearch) -> bool: ...


class IMetricsSink(Protocol):
    def increment_counter(self, name: str, tags: dict[str, str] | None = None) -> None: ...

    def record_histogram(self, name: str, value: float) -> None: ...


class IErrorTracker(Protocol):
    def capture_error(self, error: BaseException, **context: Any) -> None: ...
