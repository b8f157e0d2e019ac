from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from backend.src.config import Settings

ALERT_LIFETIME = timedelta(hours=48)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ──────────────────────────────────────────────────────────────────────


class NotificationFrequency(str, enum.Enum):
    INSTANT = "INSTANT"
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    NEVER = "NEVER"


class NotificationType(str, enum.Enum):
    PRICE_ALERTS = "price_alerts"
    SEARCH_EXPIRATION = "search_expiration"
    MARKETING = "marketing"


class TriggerType(str, enum.Enum):
    PRICE_DROP = "PRICE_DROP"
    TARGET_PRICE = "TARGET_PRICE"
    AVAILABILITY = "AVAILABILITY"


class TravelClass(str, enum.Enum):
    ECONOMY = "ECONOMY"
    PREMIUM_ECONOMY = "PREMIUM_ECONOMY"
    BUSINESS = "BUSINESS"
    FIRST = "FIRST"


class ThresholdType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


# ── Saved searches ─────────────────────────────────────────────────────────────


class FlightSearchQuery(BaseModel):
    origin_location_code: str = Field(pattern=r"^[A-Z]{3}$")
    destination_location_code: str = Field(pattern=r"^[A-Z]{3}$")
    departure_date: date
    return_date: date | None = None
    adults: int = Field(default=1, ge=1, le=9)
    children: int = Field(default=0, ge=0, le=8)
    infants: int = Field(default=0, ge=0, le=8)
    travel_class: TravelClass | None = None
    non_stop: bool | None = None
    currency_code: str | None = Field(default=None, pattern=r"^[A-Z]{3}$")
    max_price: float | None = Field(default=None, gt=0)
    max_results: int = Field(default=20, ge=1, le=250)


class PriceAlertSettings(BaseModel):
    enabled: bool = False
    target_price: float | None = Field(default=None, gt=0)
    percent_drop: float | None = Field(default=None, ge=1, le=100)
    check_frequency_hours: float | None = Field(default=None, gt=0)


class SavedSearch(BaseModel):
    id: str
    user_id: str
    name: str = Field(min_length=1, max_length=100)
    search_query: FlightSearchQuery
    price_alerts: PriceAlertSettings | None = None
    is_active: bool = True
    expires_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_checked_at: datetime | None = None

    @field_validator("expires_at", "created_at", "updated_at", "last_checked_at")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        # Stored timestamps without an offset are UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def alerts_enabled(self) -> bool:
        return self.price_alerts is not None and self.price_alerts.enabled

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_eligible(self, now: datetime) -> bool:
        """Active, alert-enabled and not yet expired."""
        return self.is_active and self.alerts_enabled and not self.is_expired(now)


# ── Flight offers ──────────────────────────────────────────────────────────────


class FlightEndpoint(BaseModel):
    iata_code: str
    terminal: str | None = None
    at: datetime


class FlightSegment(BaseModel):
    id: str
    departure: FlightEndpoint
    arrival: FlightEndpoint
    carrier_code: str = Field(min_length=2, max_length=3)
    number: str
    duration: str
    number_of_stops: int = Field(default=0, ge=0)


class FlightItinerary(BaseModel):
    duration: str
    segments: list[FlightSegment] = Field(min_length=1)


class OfferPrice(BaseModel):
    currency: str = "USD"
    total: float
    grand_total: float


class FlightOffer(BaseModel):
    id: str
    source: str = "GDS"
    one_way: bool = False
    number_of_bookable_seats: int = Field(default=1, ge=1)
    last_ticketing_date: date | None = None
    itineraries: list[FlightItinerary] = Field(min_length=1, max_length=2)
    price: OfferPrice
    validating_airline_codes: list[str] = Field(default_factory=list)

    @property
    def origin(self) -> str:
        return self.itineraries[0].segments[0].departure.iata_code

    @property
    def destination(self) -> str:
        return self.itineraries[0].segments[-1].arrival.iata_code

    @property
    def departure_at(self) -> datetime:
        return self.itineraries[0].segments[0].departure.at

    @property
    def airline(self) -> str:
        if self.validating_airline_codes:
            return self.validating_airline_codes[0]
        return self.itineraries[0].segments[0].carrier_code


# ── Price alerts ───────────────────────────────────────────────────────────────


class PriceAlert(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    saved_search_id: str
    trigger_type: TriggerType
    trigger_value: float | None = None
    flight_offer: FlightOffer
    previous_price: float = Field(gt=0)
    current_price: float = Field(gt=0)
    price_difference: float
    percent_change: float
    alerted_at: datetime = Field(default_factory=utcnow)
    is_read: bool = False
    expires_at: datetime

    @classmethod
    def create(
        cls,
        user_id: str,
        saved_search_id: str,
        trigger_type: TriggerType,
        flight_offer: FlightOffer,
        previous_price: float,
        current_price: float,
        trigger_value: float | None = None,
        now: datetime | None = None,
    ) -> PriceAlert:
        alerted_at = now or utcnow()
        difference = current_price - previous_price
        return cls(
            user_id=user_id,
            saved_search_id=saved_search_id,
            trigger_type=trigger_type,
            trigger_value=trigger_value,
            flight_offer=flight_offer,
            previous_price=previous_price,
            current_price=current_price,
            price_difference=difference,
            percent_change=(difference / previous_price) * 100,
            alerted_at=alerted_at,
            expires_at=alerted_at + ALERT_LIFETIME,
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class PriceCheckResult(BaseModel):
    saved_search_id: str
    current_lowest_price: float
    previous_best_price: float | None = None
    price_change: float | None = None
    percent_change: float | None = None
    alert: PriceAlert | None = None


# ── Preferences ────────────────────────────────────────────────────────────────


class PriceAlertPreferences(BaseModel):
    enabled: bool = True
    threshold_type: ThresholdType = ThresholdType.PERCENTAGE
    threshold_value: float = Field(default=10, ge=0, le=100)
    only_price_drops: bool = True


class SearchExpirationPreferences(BaseModel):
    enabled: bool = True
    days_before_expiry: int = Field(default=7, ge=1, le=30)


class MarketingPreferences(BaseModel):
    enabled: bool = False
    deals: bool = False
    newsletter: bool = False


class NotificationPreferences(BaseModel):
    email_enabled: bool = True
    frequency: NotificationFrequency = NotificationFrequency.INSTANT
    price_alerts: PriceAlertPreferences = Field(default_factory=PriceAlertPreferences)
    search_expiration: SearchExpirationPreferences = Field(
        default_factory=SearchExpirationPreferences
    )
    marketing: MarketingPreferences = Field(default_factory=MarketingPreferences)


class UserPreferences(BaseModel):
    user_id: str
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class NotificationPreferencesUpdate(BaseModel):
    email_enabled: bool | None = None
    frequency: NotificationFrequency | None = None
    price_alerts: PriceAlertPreferences | None = None
    search_expiration: SearchExpirationPreferences | None = None
    marketing: MarketingPreferences | None = None


class UserContact(BaseModel):
    id: str | None = None
    email: EmailStr | None = None


# ── Batch processing ───────────────────────────────────────────────────────────


class BatchConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(default=50, ge=1)
    max_concurrent: int = Field(default=5, ge=1)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=5.0, ge=0)
    alert_cooldown_hours: float = Field(default=24.0, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> BatchConfig:
        return cls(
            batch_size=settings.price_monitor_batch_size,
            max_concurrent=settings.price_monitor_max_concurrent,
            retry_attempts=settings.price_monitor_retry_attempts,
            retry_delay_seconds=settings.price_monitor_retry_delay_seconds,
            alert_cooldown_hours=settings.price_monitor_cooldown_hours,
        )


class SearchOutcome(BaseModel):
    alert_generated: bool = False


class UserProcessingResult(BaseModel):
    processed_count: int = 0
    alerts_generated: int = 0


class ProcessingResult(BaseModel):
    processed_count: int = 0
    alerts_generated: int = 0
    errors: list[str] = Field(default_factory=list)
    duration_ms: int = 0

    def add_user_result(self, result: UserProcessingResult) -> None:
        self.processed_count += result.processed_count
        self.alerts_generated += result.alerts_generated

    def add_error(self, user_id: str, message: str) -> None:
        self.errors.append(f"{user_id}: {message}")

    def merge(self, other: ProcessingResult) -> None:
        self.processed_count += other.processed_count
        self.alerts_generated += other.alerts_generated
        self.errors.extend(other.errors)


class ProcessorStatus(BaseModel):
    is_running: bool
    is_processing: bool
    next_run: datetime | None = None
    config: BatchConfig


# ── Notifications ──────────────────────────────────────────────────────────────


class EmailMessage(BaseModel):
    to: str
    subject: str
    html: str
    priority: Literal["high", "normal", "low"] = "normal"
