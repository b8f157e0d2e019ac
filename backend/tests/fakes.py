from __future__ import annotations

import asyncio
import fnmatch
from collections.abc import Collection
from datetime import date, datetime, timedelta, timezone

from backend.src.contracts.errors import AppError, ErrorCode
from backend.src.contracts.models import (
    EmailMessage,
    FlightEndpoint,
    FlightItinerary,
    FlightOffer,
    FlightSearchQuery,
    FlightSegment,
    NotificationFrequency,
    NotificationType,
    OfferPrice,
    PriceAlert,
    PriceAlertSettings,
    PriceCheckResult,
    SavedSearch,
    TriggerType,
)
from backend.src.contracts.result import Err, Ok, Result

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class FakeStore:
    """In-memory IKeyValueStore that remembers the TTL of every write."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail_keys = False

    async def keys(self, pattern: str) -> list[str]:
        if self.fail_keys:
            raise ConnectionError("redis unavailable")
        return [k for k in self.data if fnmatch.fnmatchcase(k, pattern)]

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        self.data[key] = value
        self.ttls[key] = ttl_seconds

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)
        self.ttls.pop(key, None)


class FlakyWriteStore(FakeStore):
    """FakeStore whose first write under ``prefix`` raises."""

    def __init__(self, prefix: str) -> None:
        super().__init__()
        self.prefix = prefix
        self.failed_writes = 0

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        if key.startswith(self.prefix) and not self.failed_writes:
            self.failed_writes += 1
            raise ConnectionError("redis write failed")
        await super().set(key, value, ttl_seconds)


class FakePreferences:
    def __init__(
        self,
        enabled: bool = True,
        frequency: NotificationFrequency = NotificationFrequency.INSTANT,
    ) -> None:
        self.enabled: dict[str, bool] = {}
        self.frequencies: dict[str, NotificationFrequency] = {}
        self.default_enabled = enabled
        self.default_frequency = frequency

    async def is_notification_enabled(
        self, user_id: str, notification_type: NotificationType
    ) -> bool:
        return self.enabled.get(user_id, self.default_enabled)

    async def get_notification_frequency(self, user_id: str) -> NotificationFrequency:
        return self.frequencies.get(user_id, self.default_frequency)


class FakeSavedSearchService:
    """ISavedSearchService double that tracks concurrent price checks."""

    def __init__(self, check_delay: float = 0.0) -> None:
        self.searches: dict[str, list[SavedSearch]] = {}
        self.alerts: dict[str, PriceAlert] = {}
        self.fetch_errors: dict[str, BaseException | AppError] = {}
        self.check_failures: dict[str, int] = {}
        self.check_calls: list[tuple[str, list[str] | None]] = []
        self.check_delay = check_delay
        self.active_checks = 0
        self.max_active_checks = 0

    def add(self, search: SavedSearch) -> None:
        self.searches.setdefault(search.user_id, []).append(search)

    async def get_saved_searches(self, user_id: str) -> Result[list[SavedSearch], AppError]:
        error = self.fetch_errors.get(user_id)
        if isinstance(error, AppError):
            return Err(error)
        if error is not None:
            raise error
        return Ok(list(self.searches.get(user_id, [])))

    async def check_saved_search_prices(
        self, user_id: str, search_ids: Collection[str] | None = None
    ) -> Result[list[PriceCheckResult], AppError]:
        self.check_calls.append((user_id, list(search_ids) if search_ids is not None else None))
        self.active_checks += 1
        self.max_active_checks = max(self.max_active_checks, self.active_checks)
        try:
            await asyncio.sleep(self.check_delay)
            remaining = self.check_failures.get(user_id, 0)
            if remaining:
                self.check_failures[user_id] = remaining - 1
                return Err(AppError(502, "provider timeout", ErrorCode.EXTERNAL_SERVICE_ERROR))

            results: list[PriceCheckResult] = []
            for search in self.searches.get(user_id, []):
                if search_ids is not None and search.id not in search_ids:
                    continue
                alert = self.alerts.get(search.id)
                results.append(
                    PriceCheckResult(
                        saved_search_id=search.id,
                        current_lowest_price=alert.current_price if alert else 500.0,
                        previous_best_price=alert.previous_price if alert else 500.0,
                        alert=alert,
                    )
                )
            return Ok(results)
        finally:
            self.active_checks -= 1


class RecordingDispatcher:
    def __init__(self, succeed: bool = True) -> None:
        self.dispatched: list[tuple[PriceAlert, SavedSearch]] = []
        self.succeed = succeed

    async def dispatch(self, alert: PriceAlert, saved_search: SavedSearch) -> bool:
        self.dispatched.append((alert, saved_search))
        return self.succeed


class RecordingTransport:
    def __init__(self, succeed: bool = True, error: Exception | None = None) -> None:
        self.sent: list[EmailMessage] = []
        self.succeed = succeed
        self.error = error

    async def send_email(self, message: EmailMessage) -> bool:
        if self.error is not None:
            raise self.error
        self.sent.append(message)
        return self.succeed


class FakeUsers:
    def __init__(self, emails: dict[str, str | None] | None = None) -> None:
        self.emails = emails or {}

    async def get_user_email(self, user_id: str) -> str | None:
        return self.emails.get(user_id)


class StaticFlightProvider:
    def __init__(self, prices: list[float] | None = None, error: Exception | None = None) -> None:
        self.prices = prices or []
        self.error = error
        self.queries: list[FlightSearchQuery] = []

    async def search_flights(self, query: FlightSearchQuery) -> list[FlightOffer]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return [make_offer(f"offer-{i}", price) for i, price in enumerate(self.prices)]


# ── Builders ──────────────────────────────────────────────────────────────────


def make_search(
    search_id: str = "search-1",
    user_id: str = "user-1",
    name: str = "NYC to LAX Christmas",
    is_active: bool = True,
    alerts_enabled: bool = True,
    target_price: float | None = None,
    percent_drop: float | None = 10,
    check_frequency_hours: float | None = None,
    expires_at: datetime | None = None,
) -> SavedSearch:
    return SavedSearch(
        id=search_id,
        user_id=user_id,
        name=name,
        search_query=FlightSearchQuery(
            origin_location_code="JFK",
            destination_location_code="LAX",
            departure_date=date(2025, 12, 25),
        ),
        price_alerts=PriceAlertSettings(
            enabled=alerts_enabled,
            target_price=target_price,
            percent_drop=percent_drop,
            check_frequency_hours=check_frequency_hours,
        ),
        is_active=is_active,
        expires_at=expires_at,
        created_at=T0 - timedelta(days=10),
        updated_at=T0 - timedelta(days=10),
    )


def make_offer(offer_id: str = "offer-1", price: float = 450.0) -> FlightOffer:
    return FlightOffer(
        id=offer_id,
        itineraries=[
            FlightItinerary(
                duration="PT5H30M",
                segments=[
                    FlightSegment(
                        id="seg-1",
                        departure=FlightEndpoint(
                            iata_code="JFK", at=datetime(2025, 12, 25, 10, 0)
                        ),
                        arrival=FlightEndpoint(
                            iata_code="LAX", at=datetime(2025, 12, 25, 13, 30)
                        ),
                        carrier_code="AA",
                        number="100",
                        duration="PT5H30M",
                    )
                ],
            )
        ],
        price=OfferPrice(currency="USD", total=price, grand_total=price),
        validating_airline_codes=["AA"],
    )


def make_alert(
    search_id: str = "search-1",
    user_id: str = "user-1",
    previous_price: float = 500.0,
    current_price: float = 450.0,
    trigger_type: TriggerType = TriggerType.PRICE_DROP,
) -> PriceAlert:
    return PriceAlert.create(
        user_id=user_id,
        saved_search_id=search_id,
        trigger_type=trigger_type,
        flight_offer=make_offer(price=current_price),
        previous_price=previous_price,
        current_price=current_price,
        now=T0,
    )
