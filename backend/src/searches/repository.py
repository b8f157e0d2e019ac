from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime

import structlog
from pydantic import TypeAdapter, ValidationError

from backend.src.contracts.errors import AppError
from backend.src.contracts.interfaces import IKeyValueStore
from backend.src.contracts.models import PriceAlert, SavedSearch, utcnow
from backend.src.contracts.result import Err, Ok, Result

logger = structlog.get_logger(__name__)

SAVED_SEARCH_LIST_PREFIX = "saved-searches:"
_PRICE_HISTORY_LIMIT = 30

_alert_list = TypeAdapter(list[PriceAlert])


def saved_search_list_key(user_id: str) -> str:
    return f"{SAVED_SEARCH_LIST_PREFIX}{user_id}"


def saved_search_key(user_id: str, search_id: str) -> str:
    return f"saved-search:{user_id}:{search_id}"


def price_history_key(search_id: str) -> str:
    return f"price-history:{search_id}"


def price_alerts_key(user_id: str) -> str:
    return f"price-alerts:{user_id}"


class SavedSearchRepository:
    """Saved searches, price history and stored alerts in the key-value store.

    Layout::

        saved-searches:<user>          JSON list of search ids
        saved-search:<user>:<search>   SavedSearch JSON
        price-history:<search>         JSON list of the last 30 best prices
        price-alerts:<user>            JSON list of PriceAlert
    """

    def __init__(
        self,
        store: IKeyValueStore,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._now = now

    async def _get_search_ids(self, user_id: str) -> list[str]:
        raw = await self._store.get(saved_search_list_key(user_id))
        if not raw:
            return []
        return list(json.loads(raw))

    async def create_saved_search(self, search: SavedSearch) -> Result[SavedSearch, AppError]:
        try:
            await self._store.set(
                saved_search_key(search.user_id, search.id), search.model_dump_json()
            )
            search_ids = await self._get_search_ids(search.user_id)
            if search.id not in search_ids:
                search_ids.append(search.id)
            await self._store.set(saved_search_list_key(search.user_id), json.dumps(search_ids))
        except Exception as exc:  # noqa: BLE001
            logger.error("saved_search_create_failed", user_id=search.user_id, error=str(exc))
            return Err(AppError.database_error("Failed to create saved search"))
        return Ok(search)

    async def update_saved_search(
        self, user_id: str, search_id: str, **updates: object
    ) -> Result[SavedSearch, AppError]:
        try:
            raw = await self._store.get(saved_search_key(user_id, search_id))
            if not raw:
                return Err(AppError.not_found("Saved search not found"))
            existing = SavedSearch.model_validate_json(raw)
            updated = existing.model_copy(update={**updates, "updated_at": self._now()})
            await self._store.set(saved_search_key(user_id, search_id), updated.model_dump_json())
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "saved_search_update_failed",
                user_id=user_id,
                search_id=search_id,
                error=str(exc),
            )
            return Err(AppError.database_error("Failed to update saved search"))
        return Ok(updated)

    async def delete_saved_search(self, user_id: str, search_id: str) -> Result[None, AppError]:
        try:
            await self._store.delete(saved_search_key(user_id, search_id))
            search_ids = [s for s in await self._get_search_ids(user_id) if s != search_id]
            await self._store.set(saved_search_list_key(user_id), json.dumps(search_ids))
        except Exception as exc:  # noqa: BLE001
            logger.error("saved_search_delete_failed", user_id=user_id, error=str(exc))
            return Err(AppError.database_error("Failed to delete saved search"))
        return Ok(None)

    async def get_saved_searches(self, user_id: str) -> Result[list[SavedSearch], AppError]:
        """Return every stored search for the user; unreadable records are skipped."""
        try:
            search_ids = await self._get_search_ids(user_id)
            searches: list[SavedSearch] = []
            for search_id in search_ids:
                raw = await self._store.get(saved_search_key(user_id, search_id))
                if not raw:
                    continue
                try:
                    searches.append(SavedSearch.model_validate_json(raw))
                except ValidationError:
                    logger.warning(
                        "saved_search_invalid", user_id=user_id, search_id=search_id
                    )
        except Exception as exc:  # noqa: BLE001
            logger.error("saved_search_fetch_failed", user_id=user_id, error=str(exc))
            return Err(AppError.database_error("Failed to get saved searches"))
        return Ok(searches)

    # ── Price history ────────────────────────────────────────────────────────

    async def get_price_history(self, search_id: str) -> list[float]:
        raw = await self._store.get(price_history_key(search_id))
        if not raw:
            return []
        return [float(p) for p in json.loads(raw)]

    async def append_price_history(self, search_id: str, price: float) -> None:
        history = await self.get_price_history(search_id)
        history.append(price)
        await self._store.set(
            price_history_key(search_id), json.dumps(history[-_PRICE_HISTORY_LIMIT:])
        )

    # ── Alerts ───────────────────────────────────────────────────────────────

    async def _load_alerts(self, user_id: str) -> list[PriceAlert]:
        raw = await self._store.get(price_alerts_key(user_id))
        if not raw:
            return []
        return _alert_list.validate_json(raw)

    async def _save_alerts(self, user_id: str, alerts: list[PriceAlert]) -> None:
        await self._store.set(
            price_alerts_key(user_id), _alert_list.dump_json(alerts).decode("utf-8")
        )

    async def store_price_alert(self, alert: PriceAlert) -> None:
        alerts = await self._load_alerts(alert.user_id)
        now = self._now()
        alerts = [a for a in alerts if not a.is_expired(now)]
        alerts.append(alert)
        await self._save_alerts(alert.user_id, alerts)

    async def get_price_alerts(
        self, user_id: str, unread_only: bool = False
    ) -> Result[list[PriceAlert], AppError]:
        try:
            alerts = await self._load_alerts(user_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("price_alerts_fetch_failed", user_id=user_id, error=str(exc))
            return Err(AppError.database_error("Failed to get price alerts"))

        now = self._now()
        alerts = [a for a in alerts if not a.is_expired(now)]
        if unread_only:
            alerts = [a for a in alerts if not a.is_read]
        alerts.sort(key=lambda a: a.alerted_at, reverse=True)
        return Ok(alerts)

    async def mark_alert_as_read(self, user_id: str, alert_id: str) -> Result[None, AppError]:
        try:
            alerts = await self._load_alerts(user_id)
            for alert in alerts:
                if alert.id == alert_id:
                    alert.is_read = True
                    break
            else:
                return Err(AppError.not_found("Alert not found"))
            await self._save_alerts(user_id, alerts)
        except Exception as exc:  # noqa: BLE001
            logger.error("price_alert_mark_read_failed", user_id=user_id, error=str(exc))
            return Err(AppError.database_error("Failed to mark alert as read"))
        return Ok(None)
