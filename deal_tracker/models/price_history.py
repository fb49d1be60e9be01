# deal_tracker/models/price_history.py

"""Immutable price observation for a tracked product."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True)
class PriceHistoryEntry:
    """A single price observation for a product at a point in time."""

    id: int
    product_id: int
    price: Decimal
    currency: str
    checked_at: datetime
