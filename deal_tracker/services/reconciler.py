# deal_tracker/services/reconciler.py

"""Decide what a fresh scrape changes for a tracked product."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from deal_tracker.config.settings import Settings
from deal_tracker.errors import ExtractionError
from deal_tracker.models.product import ScrapeResult, TrackedProduct


@dataclass(frozen=True)
class ReconciliationDecision:
    """Mutations required after comparing stored and scraped state.

    The product row is always refreshed with ``name``, ``price``,
    ``currency`` and ``image_url``.  History and alerts are gated on
    price alone.
    """

    name: str
    price: Decimal
    currency: str
    image_url: str | None
    previous_price: Decimal | None
    is_new_or_changed: bool
    is_price_drop: bool

    @property
    def record_history(self) -> bool:
        return self.is_new_or_changed

    @property
    def send_alert(self) -> bool:
        return self.is_price_drop


def to_price(value: object) -> Decimal:
    """Coerce a scraped price to a finite ``Decimal``.

    Raises :class:`ExtractionError` for missing, boolean, non-numeric
    or non-finite values.
    """
    if value is None or isinstance(value, bool):
        raise ExtractionError("Scraped product has no price")
    try:
        if isinstance(value, float):
            price = Decimal(str(value))
        else:
            price = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ExtractionError(
            f"Scraped price is not numeric: {value!r}"
        ) from exc
    if not price.is_finite():
        raise ExtractionError(f"Scraped price is not finite: {value!r}")
    return price


def reconcile(
    existing: TrackedProduct | None,
    scraped: ScrapeResult,
) -> ReconciliationDecision:
    """Compare *scraped* against *existing* and return the decision.

    Pure: performs no I/O.  Prices compare by exact numeric equality,
    so ``100`` and ``100.00`` are the same price and any other
    difference is a change.
    """
    name = (scraped.product_name or "").strip()
    if not name:
        raise ExtractionError("Scraped product has no name")
    price = to_price(scraped.current_price)

    currency = (scraped.currency_code or "").strip().upper()
    if not currency:
        currency = Settings.DEFAULT_CURRENCY

    previous = existing.current_price if existing is not None else None
    is_new_or_changed = previous is None or previous != price
    is_price_drop = previous is not None and price < previous

    return ReconciliationDecision(
        name=name,
        price=price,
        currency=currency,
        image_url=scraped.product_image_url or None,
        previous_price=previous,
        is_new_or_changed=is_new_or_changed,
        is_price_drop=is_price_drop,
    )
