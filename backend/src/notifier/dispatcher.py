from __future__ import annotations

import structlog

from backend.src.contracts.interfaces import IEmailTransport, IUserDirectory
from backend.src.contracts.models import EmailMessage, PriceAlert, SavedSearch, TriggerType

logger = structlog.get_logger(__name__)


def build_subject(search_name: str) -> str:
    return f"✈️ Price Alert: {search_name}"


def describe_price_change(alert: PriceAlert) -> str:
    parts: list[str] = []
    if alert.trigger_type == TriggerType.TARGET_PRICE:
        parts.append("The price has reached your target price!")
    if alert.percent_change:
        direction = "dropped" if alert.percent_change < 0 else "increased"
        parts.append(f"The price has {direction} by {abs(alert.percent_change):.1f}%!")
    # First observation of a search has nothing to compare against
    return " ".join(parts) or f"The current price is ${alert.current_price:.2f}."


def _difference_label(price_difference: float) -> str:
    if price_difference < 0:
        return "Savings"
    if price_difference > 0:
        return "Increase"
    return "Change"


def render_alert_email_html(
    alert: PriceAlert,
    saved_search: SavedSearch,
    frontend_url: str,
) -> str:
    """Render the HTML body for a price alert email.

    Output depends only on the alert and search fields, so the same alert
    always renders the same email.
    """
    offer = alert.flight_offer
    headline = describe_price_change(alert)
    difference_label = _difference_label(alert.price_difference)
    departure = offer.departure_at.strftime("%Y-%m-%d %H:%M")
    expires = alert.expires_at.strftime("%Y-%m-%d")
    details_url = f"{frontend_url}/flights/{alert.id}"

    return f"""\
<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width,initial-scale=1"></head>
<body style="margin:0;padding:0;background:#f4f4f5;font-family:Arial,Helvetica,sans-serif;">
<table width="600" cellpadding="0" cellspacing="0" style="background:#ffffff;border-radius:8px;margin:24px auto;">
  <tr><td style="background:#0f172a;padding:20px 24px;color:#ffffff;font-size:20px;font-weight:bold;">
    Good news! We found a price change for your saved search.
  </td></tr>
  <tr><td style="padding:24px;">
    <h2 style="margin:0 0 12px;font-size:22px;color:#0f172a;">{saved_search.name}</h2>
    <p style="margin:0 0 16px;font-size:16px;">{headline}</p>
    <table cellpadding="4" cellspacing="0" style="font-size:15px;">
      <tr><td><strong>Previous Price:</strong></td><td>${alert.previous_price:.2f}</td></tr>
      <tr><td><strong>Current Price:</strong></td><td>${alert.current_price:.2f}</td></tr>
      <tr><td><strong>{difference_label}:</strong></td><td>${abs(alert.price_difference):.2f}</td></tr>
    </table>
    <p style="margin:16px 0 4px;"><strong>Flight Details:</strong></p>
    <ul style="margin:0 0 16px;">
      <li>Route: {offer.origin} &rarr; {offer.destination}</li>
      <li>Departure: {departure}</li>
      <li>Airline: {offer.airline}</li>
    </ul>
    <a href="{details_url}" style="display:inline-block;background:#0f172a;color:#ffffff;text-decoration:none;padding:12px 32px;border-radius:6px;font-size:16px;font-weight:600;">View Flight Details</a>
  </td></tr>
  <tr><td style="padding:16px 24px;background:#f9fafb;border-top:1px solid #e5e7eb;font-size:12px;color:#9ca3af;text-align:center;">
    This alert expires on {expires}
  </td></tr>
</table>
</body>
</html>"""


class AlertDispatcher:
    """Best-effort delivery of a price alert to the owning user's email.

    ``dispatch`` never raises. A missing address or a transport failure is
    logged and reported as ``False``; the alert itself stays generated.
    """

    def __init__(
        self,
        transport: IEmailTransport,
        users: IUserDirectory,
        frontend_url: str,
    ) -> None:
        self._transport = transport
        self._users = users
        self._frontend_url = frontend_url

    async def dispatch(self, alert: PriceAlert, saved_search: SavedSearch) -> bool:
        log = logger.bind(user_id=alert.user_id, alert_id=alert.id, search_id=saved_search.id)

        try:
            email = await self._users.get_user_email(alert.user_id)
            if not email:
                log.warning("alert_recipient_missing")
                return False

            message = EmailMessage(
                to=email,
                subject=build_subject(saved_search.name),
                html=render_alert_email_html(alert, saved_search, self._frontend_url),
                priority="high",
            )
            sent = await self._transport.send_email(message)
        except Exception as exc:  # noqa: BLE001
            log.error("alert_notification_failed", error=str(exc))
            return False

        if sent:
            log.info("alert_notification_sent", email=email)
        else:
            log.error("alert_notification_failed", error="transport reported failure")
        return sent
