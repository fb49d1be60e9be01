# deal_tracker/models/product.py

"""Tracked product and scrape result models."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass
class TrackedProduct:
    """A (user, URL) pair under periodic price monitoring."""

    id: int
    user_id: str
    url: str
    name: str
    current_price: Decimal
    currency: str = "BDT"
    image_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        """Serialise to plain JSON-friendly values."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "url": self.url,
            "name": self.name,
            "current_price": str(self.current_price),
            "currency": self.currency,
            "image_url": self.image_url,
            "created_at": (
                self.created_at.isoformat() if self.created_at else None
            ),
            "updated_at": (
                self.updated_at.isoformat() if self.updated_at else None
            ),
        }


@dataclass
class ScrapeResult:
    """Product data returned by a fetcher, consumed immediately."""

    product_name: str
    current_price: Decimal | float | int | str | None
    currency_code: str | None = None
    product_image_url: str | None = None
