# deal_tracker/services/product_actions.py

"""User-triggered product actions: add, delete, list, history.

Every action returns a value; errors are logged and turned into an
:class:`ActionResult` failure (or an empty list for reads) so callers
never see an uncaught exception.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from deal_tracker.errors import AuthError, ExtractionError, ValidationError
from deal_tracker.models.price_history import PriceHistoryEntry
from deal_tracker.models.product import TrackedProduct
from deal_tracker.services.price_checker import Fetcher
from deal_tracker.services.reconciler import reconcile
from deal_tracker.storage.tracker_db import TrackerDB, normalize_url

logger = logging.getLogger("deal_tracker.actions")


@dataclass
class Principal:
    """The authenticated caller of a user action."""

    user_id: str
    email: str | None = None


@dataclass
class ActionResult:
    """Structured outcome of a user action."""

    success: bool
    message: str | None = None
    error: str | None = None
    product: TrackedProduct | None = None


def _error_message(exc: Exception, default: str) -> str:
    return str(exc) or default


class ProductActions:
    """Add, delete and read tracked products on behalf of a user.

    *refresh* is called after a successful add and after every delete
    attempt, so any cached view of the user's products can be rebuilt.
    """

    def __init__(
        self,
        db: TrackerDB,
        fetcher: Fetcher,
        refresh: Callable[[], None] | None = None,
    ) -> None:
        self.db = db
        self.fetcher = fetcher
        self.refresh = refresh

    def _refresh(self) -> None:
        if self.refresh is None:
            return
        try:
            self.refresh()
        except Exception as exc:
            logger.warning("View refresh failed: %s", exc, exc_info=True)

    # ── Ingestion ────────────────────────────────────────

    def _add(self, principal: Principal | None, url: str) -> ActionResult:
        if not url or not url.strip():
            raise ValidationError("URL is required")
        if principal is None:
            raise AuthError("Unauthorized")

        url = normalize_url(url)
        store = self.db.for_user(principal.user_id)
        if principal.email:
            self.db.upsert_user(principal.user_id, principal.email)

        scraped = self.fetcher.fetch(url)
        if scraped is None or not (scraped.product_name or "").strip():
            raise ExtractionError(
                "Could not extract product details from URL"
            )

        existing = store.find_by_url(url)
        decision = reconcile(existing, scraped)

        product = store.upsert_product(
            url=url,
            name=decision.name,
            current_price=decision.price,
            currency=decision.currency,
            image_url=decision.image_url,
        )
        if decision.record_history:
            store.insert_history(
                product.id, decision.price, decision.currency,
            )

        is_update = existing is not None
        logger.info(
            "%s product %s for user %s at %s %s",
            "Updated" if is_update else "Added",
            product.id,
            principal.user_id,
            decision.price,
            decision.currency,
        )
        return ActionResult(
            success=True,
            product=product,
            message=(
                "Product updated with latest price!"
                if is_update
                else "Product added successfully!"
            ),
        )

    def add_tracked_product(
        self, principal: Principal | None, url: str,
    ) -> ActionResult:
        """Fetch *url* and start (or refresh) tracking it for the caller."""
        try:
            result = self._add(principal, url)
        except Exception as exc:
            logger.error("Error adding product: %s", exc, exc_info=True)
            return ActionResult(
                success=False,
                error=_error_message(exc, "Failed to add product"),
            )
        self._refresh()
        return result

    # ── Deletion ─────────────────────────────────────────

    def delete_tracked_product(
        self, principal: Principal | None, product_id: int,
    ) -> ActionResult:
        """Delete one of the caller's products; history cascades."""
        try:
            if principal is None:
                raise AuthError("Unauthorized")
            store = self.db.for_user(principal.user_id)
            if not store.delete_product(product_id):
                raise ValidationError("Product not found")
            return ActionResult(
                success=True, message="Product deleted successfully!",
            )
        except Exception as exc:
            logger.error("Error deleting product: %s", exc, exc_info=True)
            return ActionResult(
                success=False,
                error=_error_message(exc, "Failed to delete product"),
            )
        finally:
            self._refresh()

    # ── Reads ────────────────────────────────────────────

    def get_products(
        self, principal: Principal | None,
    ) -> list[TrackedProduct]:
        """Return the caller's products, newest first."""
        if principal is None:
            return []
        try:
            return self.db.for_user(principal.user_id).list_products()
        except Exception as exc:
            logger.error("Error getting products: %s", exc, exc_info=True)
            return []

    def get_price_history(
        self, principal: Principal | None, product_id: int,
    ) -> list[PriceHistoryEntry]:
        """Return the price history of one of the caller's products."""
        if principal is None:
            return []
        try:
            store = self.db.for_user(principal.user_id)
            return store.get_price_history(product_id)
        except Exception as exc:
            logger.error(
                "Get price history error: %s", exc, exc_info=True,
            )
            return []
