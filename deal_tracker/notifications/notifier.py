# deal_tracker/notifications/notifier.py

"""Price-drop email alerts delivered through the Resend API."""

import html
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from curl_cffi import requests as curl_requests

from deal_tracker.config.settings import Settings
from deal_tracker.errors import NotifyError
from deal_tracker.models.product import TrackedProduct

logger = logging.getLogger("deal_tracker.notifier")


@dataclass
class NotifyResult:
    """Outcome of one delivery attempt."""

    success: bool
    error: str | None = None


class Notifier(Protocol):
    """Anything able to deliver a price-drop alert."""

    def send_price_drop_alert(
        self,
        address: str,
        product: TrackedProduct,
        old_price: Decimal,
        new_price: Decimal,
    ) -> NotifyResult:
        ...


def _format_price(amount: Decimal, currency: str) -> str:
    return f"{currency} {amount:,.2f}"


def build_alert_subject(product: TrackedProduct) -> str:
    """Return the subject line for a price-drop alert."""
    return f"Price drop alert: {product.name}"


def build_alert_bodies(
    product: TrackedProduct,
    old_price: Decimal,
    new_price: Decimal,
) -> tuple[str, str]:
    """Return (plain_text, html) bodies for a price-drop alert."""
    currency = product.currency
    saving = old_price - new_price
    percent = (
        (saving / old_price * 100) if old_price > 0 else Decimal(0)
    )
    lines = [
        f"Previous price: {_format_price(old_price, currency)}",
        f"Current price: {_format_price(new_price, currency)}",
        f"You save: {_format_price(saving, currency)} ({percent:.1f}%)",
    ]

    plain = (
        f"Price drop: {product.name}\n\n"
        + "\n".join(lines)
        + f"\n\nLink: {product.url}\n"
    )

    name = html.escape(product.name)
    url = html.escape(product.url, quote=True)
    li_html = "".join(
        "<li>{}</li>".format(html.escape(line)) for line in lines
    )
    img_html = (
        '<p><img src="{}" alt="{}" style="max-width:320px;"></p>'.format(
            html.escape(product.image_url, quote=True), name,
        )
        if product.image_url
        else ""
    )
    body = (
        "<html>"
        "<body style=\"font-family: Arial, sans-serif;\">"
        "<h2>Price drop: {name}</h2>"
        "{img}"
        "<ul>{lis}</ul>"
        '<p><a href="{url}">View product</a></p>'
        "</body>"
        "</html>"
    ).format(name=name, img=img_html, lis=li_html, url=url)

    return plain, body


class EmailNotifier:
    """Send price-drop alerts via the Resend email API."""

    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.settings = Settings()
        self.api_key = (
            self.settings.RESEND_API_KEY if api_key is None else api_key
        )
        self.from_email = from_email or self.settings.ALERT_FROM_EMAIL
        self.timeout = timeout or self.settings.NOTIFY_TIMEOUT
        self.session = curl_requests.Session()

    def _post(self, payload: dict[str, object]) -> None:
        """POST one email; raise :class:`NotifyError` on rejection."""
        try:
            resp = self.session.post(
                self.settings.RESEND_API_URL,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self.timeout,
            )
        except Exception as exc:
            raise NotifyError(f"Email request failed: {exc}") from exc
        if resp.status_code not in (200, 201, 202):
            raise NotifyError(
                f"Email API returned HTTP {resp.status_code}: "
                f"{resp.text[:200]}"
            )

    def send_price_drop_alert(
        self,
        address: str,
        product: TrackedProduct,
        old_price: Decimal,
        new_price: Decimal,
    ) -> NotifyResult:
        """Email *address* about a price drop on *product*."""
        if not self.api_key:
            logger.warning(
                "Email delivery not configured; skipping alert for "
                "product %s",
                product.id,
            )
            return NotifyResult(
                success=False, error="Email delivery not configured",
            )

        plain, body = build_alert_bodies(product, old_price, new_price)
        payload: dict[str, object] = {
            "from": self.from_email,
            "to": [address],
            "subject": build_alert_subject(product),
            "html": body,
            "text": plain,
        }
        try:
            self._post(payload)
        except NotifyError as exc:
            logger.error(
                "Failed to send price alert for product %s to %s: %s",
                product.id,
                address,
                exc,
            )
            return NotifyResult(success=False, error=str(exc))

        logger.info(
            "Price alert sent to %s for product %s (%s -> %s)",
            address,
            product.id,
            old_price,
            new_price,
        )
        return NotifyResult(success=True)
