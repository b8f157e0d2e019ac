from __future__ import annotations

from collections.abc import Callable, Collection
from datetime import datetime

import structlog

from backend.src.contracts.errors import AppError, ErrorCode
from backend.src.contracts.interfaces import IFlightProvider
from backend.src.contracts.models import (
    FlightOffer,
    PriceAlert,
    PriceCheckResult,
    SavedSearch,
    TriggerType,
    utcnow,
)
from backend.src.contracts.result import Err, Ok, Result
from backend.src.searches.repository import SavedSearchRepository

logger = structlog.get_logger(__name__)


def should_trigger_price_alert(
    saved_search: SavedSearch,
    current_price: float,
    previous_price: float | None,
) -> TriggerType | None:
    """Decide whether a fresh price crosses the search's alert threshold.

    A target price takes precedence over a percent drop. The percent drop is
    measured against the previous best price, so the first observation of a
    search can only ever trigger on its target price.
    """
    settings = saved_search.price_alerts
    if settings is None or not settings.enabled:
        return None

    if settings.target_price is not None and current_price <= settings.target_price:
        return TriggerType.TARGET_PRICE

    if previous_price and settings.percent_drop is not None:
        drop_pct = ((previous_price - current_price) / previous_price) * 100
        if drop_pct >= settings.percent_drop:
            return TriggerType.PRICE_DROP

    return None


class PriceCheckService:
    """ISavedSearchService implementation: saved-search reads and price re-evaluation."""

    def __init__(
        self,
        repository: SavedSearchRepository,
        provider: IFlightProvider,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._provider = provider
        self._now = now

    async def get_saved_searches(self, user_id: str) -> Result[list[SavedSearch], AppError]:
        return await self._repository.get_saved_searches(user_id)

    async def check_saved_search_prices(
        self,
        user_id: str,
        search_ids: Collection[str] | None = None,
    ) -> Result[list[PriceCheckResult], AppError]:
        """Re-price the user's alert-enabled searches, restricted to ``search_ids`` if given."""
        searches_result = await self._repository.get_saved_searches(user_id)
        if isinstance(searches_result, Err):
            return searches_result

        results: list[PriceCheckResult] = []
        for saved_search in searches_result.value:
            if search_ids is not None and saved_search.id not in search_ids:
                continue
            if not saved_search.alerts_enabled:
                continue

            try:
                offers = await self._provider.search_flights(saved_search.search_query)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "price_check_failed",
                    user_id=user_id,
                    search_id=saved_search.id,
                    error=str(exc),
                )
                return Err(
                    AppError(
                        502,
                        "Failed to check saved search prices",
                        ErrorCode.EXTERNAL_SERVICE_ERROR,
                    )
                )

            # Write failures are reported as DATABASE_ERROR and never retried
            try:
                result = await self._record_check(user_id, saved_search, offers)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "price_check_record_failed",
                    user_id=user_id,
                    search_id=saved_search.id,
                    error=str(exc),
                )
                return Err(AppError.database_error("Failed to record price check"))
            if result is not None:
                results.append(result)

        return Ok(results)

    async def _record_check(
        self, user_id: str, saved_search: SavedSearch, offers: list[FlightOffer]
    ) -> PriceCheckResult | None:
        log = logger.bind(user_id=user_id, search_id=saved_search.id)

        if not offers:
            log.info("price_check_no_offers")
            return None

        best_offer = min(offers, key=lambda o: o.price.grand_total)
        current_price = best_offer.price.grand_total

        history = await self._repository.get_price_history(saved_search.id)
        previous_price = history[-1] if history else None

        alert: PriceAlert | None = None
        trigger = should_trigger_price_alert(saved_search, current_price, previous_price)
        if trigger is not None:
            alert = PriceAlert.create(
                user_id=user_id,
                saved_search_id=saved_search.id,
                trigger_type=trigger,
                trigger_value=_trigger_value(saved_search, trigger),
                flight_offer=best_offer,
                previous_price=previous_price or current_price,
                current_price=current_price,
                now=self._now(),
            )
            await self._repository.store_price_alert(alert)
            log.info(
                "price_alert_created",
                alert_id=alert.id,
                trigger_type=trigger.value,
                previous_price=alert.previous_price,
                current_price=current_price,
            )

        await self._repository.append_price_history(saved_search.id, current_price)
        await self._repository.update_saved_search(
            user_id, saved_search.id, last_checked_at=self._now()
        )

        price_change: float | None = None
        percent_change: float | None = None
        if previous_price:
            price_change = current_price - previous_price
            percent_change = (price_change / previous_price) * 100

        return PriceCheckResult(
            saved_search_id=saved_search.id,
            current_lowest_price=current_price,
            previous_best_price=previous_price,
            price_change=price_change,
            percent_change=percent_change,
            alert=alert,
        )


def _trigger_value(saved_search: SavedSearch, trigger: TriggerType) -> float | None:
    settings = saved_search.price_alerts
    if settings is None:
        return None
    if trigger == TriggerType.TARGET_PRICE:
        return settings.target_price
    return settings.percent_drop
