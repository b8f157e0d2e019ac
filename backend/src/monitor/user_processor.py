from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime

import structlog

from backend.src.contracts.errors import AppError, ErrorCode
from backend.src.contracts.interfaces import IPreferencesService, ISavedSearchService
from backend.src.contracts.models import (
    BatchConfig,
    NotificationFrequency,
    NotificationType,
    PriceCheckResult,
    SavedSearch,
    SearchOutcome,
    UserProcessingResult,
    utcnow,
)
from backend.src.contracts.result import Err, Ok, Result
from backend.src.monitor.alerts import AlertGenerator
from backend.src.monitor.cooldown import CooldownGate

logger = structlog.get_logger(__name__)

RETRYABLE_CODES = frozenset({ErrorCode.EXTERNAL_SERVICE_ERROR})


class UserProcessor:
    """Runs one user's share of a batch: gate, price-check and alert each saved search.

    A failing search is logged and skipped. Only a failure to load the
    user's searches (or an unexpected fault) makes the whole user an ``Err``.
    """

    def __init__(
        self,
        searches: ISavedSearchService,
        preferences: IPreferencesService,
        cooldown_gate: CooldownGate,
        alert_generator: AlertGenerator,
        config: BatchConfig,
        now: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._searches = searches
        self._preferences = preferences
        self._cooldown = cooldown_gate
        self._alerts = alert_generator
        self._config = config
        self._now = now
        self._sleep = sleep

    async def process(
        self, user_id: str, batch_id: str | None = None
    ) -> Result[UserProcessingResult, AppError]:
        log = logger.bind(user_id=user_id, batch_id=batch_id)
        log.debug("user_processing_start")

        try:
            enabled = await self._preferences.is_notification_enabled(
                user_id, NotificationType.PRICE_ALERTS
            )
            if not enabled:
                log.debug("user_price_alerts_disabled")
                return Ok(UserProcessingResult())

            searches_result = await self._searches.get_saved_searches(user_id)
            if isinstance(searches_result, Err):
                log.warning("user_searches_unavailable", error=searches_result.error.message)
                return searches_result

            now = self._now()
            active = [s for s in searches_result.value if s.is_eligible(now)]
            if not active:
                return Ok(UserProcessingResult())

            frequency = await self._preferences.get_notification_frequency(user_id)
            if frequency == NotificationFrequency.NEVER:
                log.debug("user_frequency_never", search_count=len(active))
                return Ok(UserProcessingResult())

            result = UserProcessingResult()
            for saved_search in active:
                if not await self._cooldown.is_eligible(saved_search, frequency):
                    log.debug("search_in_cooldown", search_id=saved_search.id)
                    continue

                outcome = await self.process_search(saved_search, user_id, frequency)
                if isinstance(outcome, Err):
                    log.warning(
                        "search_processing_failed",
                        search_id=saved_search.id,
                        error=outcome.error.message,
                    )
                    continue

                result.processed_count += 1
                if outcome.value.alert_generated:
                    result.alerts_generated += 1
        except Exception as exc:  # noqa: BLE001
            log.error("user_processing_failed", error=str(exc), exc_info=True)
            return Err(AppError.service_error("Failed to process user"))

        log.debug(
            "user_processing_complete",
            processed=result.processed_count,
            alerts=result.alerts_generated,
        )
        return Ok(result)

    async def process_search(
        self,
        saved_search: SavedSearch,
        user_id: str,
        frequency: NotificationFrequency | None = None,
    ) -> Result[SearchOutcome, AppError]:
        try:
            # Written before the check: a failed check still consumes the window
            await self._cooldown.record_check(saved_search, frequency)

            check_result = await self._check_prices_with_retry(user_id, saved_search.id)
            if isinstance(check_result, Err):
                return check_result

            outcome = await self._alerts.handle(check_result.value, saved_search)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "search_processing_error",
                user_id=user_id,
                search_id=saved_search.id,
                error=str(exc),
            )
            return Err(AppError.service_error("Failed to process search"))
        return Ok(outcome)

    async def _check_prices_with_retry(
        self, user_id: str, search_id: str
    ) -> Result[list[PriceCheckResult], AppError]:
        attempts = self._config.retry_attempts
        last_error = AppError.service_error("Price check failed")

        for attempt in range(attempts):
            try:
                result = await self._searches.check_saved_search_prices(user_id, [search_id])
                if isinstance(result, Ok):
                    return result
                last_error = result.error
                if last_error.code not in RETRYABLE_CODES:
                    return result
            except Exception as exc:  # noqa: BLE001
                last_error = AppError.service_error(f"Price check failed: {exc}")

            if attempt < attempts - 1:
                delay = self._config.retry_delay_seconds * (2**attempt)
                logger.warning(
                    "price_check_retrying",
                    user_id=user_id,
                    search_id=search_id,
                    attempt=attempt + 1,
                    error=last_error.message,
                    retry_in=delay,
                )
                await self._sleep(delay)

        logger.error(
            "price_check_exhausted",
            user_id=user_id,
            search_id=search_id,
            attempts=attempts,
            error=last_error.message,
        )
        return Err(last_error)
