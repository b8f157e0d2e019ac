from __future__ import annotations

import asyncio

import resend
import structlog

from backend.src.config import Settings
from backend.src.contracts.models import EmailMessage

logger = structlog.get_logger(__name__)

_MAX_RETRIES = 3
_BASE_DELAY = 1.0

_PRIORITY_HEADERS: dict[str, dict[str, str]] = {
    "high": {"X-Priority": "1", "Importance": "high"},
    "low": {"X-Priority": "5", "Importance": "low"},
}


def build_resend_params(message: EmailMessage, from_email: str) -> dict:
    params: dict = {
        "from": from_email,
        "to": [message.to],
        "subject": message.subject,
        "html": message.html,
    }
    headers = _PRIORITY_HEADERS.get(message.priority)
    if headers:
        params["headers"] = dict(headers)
    return params


class EmailNotifier:
    """IEmailTransport implementation that sends email via the Resend API."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        resend.api_key = settings.resend_api_key

    async def send_email(self, message: EmailMessage) -> bool:
        params = build_resend_params(message, self._settings.resend_from_email)

        log = logger.bind(
            email=message.to,
            subject=message.subject,
            priority=message.priority,
            channel="email",
        )

        last_exc: Exception | None = None
        for attempt in range(_MAX_RETRIES):
            try:
                await asyncio.to_thread(resend.Emails.send, params)
                log.info("email_sent", attempt=attempt + 1)
                return True
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                delay = _BASE_DELAY * (2**attempt)
                log.warning(
                    "email_send_failed",
                    attempt=attempt + 1,
                    error=str(exc),
                    retry_in=delay,
                )
                if attempt < _MAX_RETRIES - 1:
                    await asyncio.sleep(delay)

        log.error("email_send_exhausted", error=str(last_exc))
        return False
