from __future__ import annotations

import structlog

from backend.src.contracts.interfaces import IAlertDispatcher, IMetricsSink
from backend.src.contracts.models import PriceAlert, PriceCheckResult, SavedSearch, SearchOutcome

logger = structlog.get_logger(__name__)

ALERTS_GENERATED_METRIC = "price_monitoring.alerts.generated"


def find_alert(results: list[PriceCheckResult], saved_search_id: str) -> PriceAlert | None:
    for result in results:
        if result.saved_search_id == saved_search_id:
            return result.alert
    return None


class AlertGenerator:
    """Turns a price-check result into an emitted alert.

    Thresholds are decided upstream by the price checker; a search only
    produces an alert when its result already carries one.
    """

    def __init__(
        self,
        dispatcher: IAlertDispatcher,
        metrics: IMetricsSink,
        email_notifications_enabled: bool = True,
    ) -> None:
        self._dispatcher = dispatcher
        self._metrics = metrics
        self._email_enabled = email_notifications_enabled

    async def handle(
        self, results: list[PriceCheckResult], saved_search: SavedSearch
    ) -> SearchOutcome:
        alert = find_alert(results, saved_search.id)
        if alert is None:
            return SearchOutcome(alert_generated=False)

        logger.info(
            "price_alert_generated",
            user_id=alert.user_id,
            search_id=saved_search.id,
            alert_id=alert.id,
            trigger_type=alert.trigger_type.value,
            previous_price=alert.previous_price,
            current_price=alert.current_price,
        )

        if self._email_enabled:
            await self._dispatcher.dispatch(alert, saved_search)

        self._metrics.increment_counter(
            ALERTS_GENERATED_METRIC, {"trigger_type": alert.trigger_type.value}
        )
        return SearchOutcome(alert_generated=True)
