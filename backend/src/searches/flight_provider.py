from __future__ import annotations

import httpx
import structlog
from pydantic import TypeAdapter

from backend.src.config import Settings
from backend.src.contracts.models import FlightOffer, FlightSearchQuery

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_offer_list = TypeAdapter(list[FlightOffer])


class HttpFlightProvider:
    """IFlightProvider implementation that queries a flight-offer search API over HTTP."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {self._settings.flight_search_api_key}",
                "Accept": "application/json",
            },
            timeout=self._settings.flight_search_timeout_seconds,
        )

    async def search_flights(self, query: FlightSearchQuery) -> list[FlightOffer]:
        if self._client is None:
            self._client = self._build_client()

        response = await self._client.post(
            self._settings.flight_search_api_url,
            json=query.model_dump(mode="json", exclude_none=True),
        )
        response.raise_for_status()

        payload = response.json()
        offers = _offer_list.validate_python(payload.get("data", []))
        logger.debug(
            "flight_offers_fetched",
            origin=query.origin_location_code,
            destination=query.destination_location_code,
            count=len(offers),
        )
        return offers

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
