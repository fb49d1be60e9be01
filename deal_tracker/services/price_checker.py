# deal_tracker/services/price_checker.py

"""Scheduled price check over every tracked product.

One invocation is a single-shot job: load all products through the
administrative store, then fetch, reconcile, persist and alert per
product.  Each product is isolated; whatever goes wrong for one of
them becomes a failed :class:`ProductCheckOutcome` and the run moves
on.  Only the initial product load can fail the whole run.
"""

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar

from deal_tracker.config.settings import Settings
from deal_tracker.models.product import ScrapeResult, TrackedProduct
from deal_tracker.notifications.notifier import Notifier
from deal_tracker.services.reconciler import (
    ReconciliationDecision,
    reconcile,
)
from deal_tracker.storage.tracker_db import AdminStore

logger = logging.getLogger("deal_tracker.price_check")

T = TypeVar("T")


class Fetcher(Protocol):
    """Anything able to turn a product URL into a scrape result."""

    def fetch(self, url: str) -> ScrapeResult:
        ...


@dataclass
class ProductCheckOutcome:
    """Result of checking one product."""

    product_id: int
    success: bool
    price_changed: bool = False
    alert_detected: bool = False
    alert_delivered: bool = False
    error: str | None = None


@dataclass
class BatchRunReport:
    """Aggregate counters for one batch run."""

    total: int = 0
    updated: int = 0
    failed: int = 0
    price_changes: int = 0
    alerts_sent: int = 0
    alerts_delivered: int = 0
    errors: list[str] = field(default_factory=list)

    def record(self, outcome: ProductCheckOutcome) -> None:
        """Fold one product outcome into the counters."""
        if not outcome.success:
            self.failed += 1
            if outcome.error:
                self.errors.append(outcome.error)
            return
        self.updated += 1
        if outcome.price_changed:
            self.price_changes += 1
        if outcome.alert_detected:
            self.alerts_sent += 1
        if outcome.alert_delivered:
            self.alerts_delivered += 1

    def to_dict(self) -> dict[str, int]:
        """Serialise the counters in the trigger response shape."""
        return {
            "total": self.total,
            "updated": self.updated,
            "failed": self.failed,
            "priceChanges": self.price_changes,
            "alertsSent": self.alerts_sent,
            "alertsDelivered": self.alerts_delivered,
        }

    def summary_message(self) -> str:
        return (
            f"Price check completed. {self.updated} products updated, "
            f"{self.price_changes} price changes, "
            f"{self.alerts_sent} alerts sent"
        )


class PriceCheckRunner:
    """Drive one price-check pass over all tracked products."""

    def __init__(
        self,
        store: AdminStore,
        fetcher: Fetcher,
        notifier: Notifier | None = None,
        concurrency: int | None = None,
    ) -> None:
        self.settings = Settings()
        self.store = store
        self.fetcher = fetcher
        self.notifier = notifier
        if concurrency is None:
            concurrency = self.settings.BATCH_CONCURRENCY
        if concurrency < 1:
            raise ValueError(
                f"concurrency must be at least 1, got {concurrency}"
            )
        self.concurrency = concurrency

    # ── Private helpers ──────────────────────────────────

    async def _call(
        self,
        func: Callable[..., T],
        *args: Any,
        timeout: float,
        pending: list["asyncio.Future[Any]"] | None = None,
    ) -> T:
        """Run a blocking collaborator call in a thread with a timeout.

        On timeout the worker thread cannot be stopped.  Its future is
        appended to *pending* so the caller can keep the product's pool
        slot until the thread has really finished; the eventual result
        is discarded.
        """
        future = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except BaseException:
            if not future.done() and pending is not None:
                pending.append(future)
            raise

    async def _send_alert(
        self,
        product: TrackedProduct,
        decision: ReconciliationDecision,
        pending: list["asyncio.Future[Any]"],
    ) -> bool:
        """Best-effort alert delivery; returns True once delivered."""
        if self.notifier is None:
            logger.info(
                "No notifier configured, alert for product %s skipped",
                product.id,
            )
            return False
        try:
            email = await self._call(
                self.store.get_user_email,
                product.user_id,
                timeout=self.settings.STORE_TIMEOUT,
                pending=pending,
            )
            if not email:
                logger.info(
                    "No contact address for user %s, alert skipped",
                    product.user_id,
                )
                return False
            refreshed = dataclasses.replace(
                product,
                current_price=decision.price,
                currency=decision.currency,
                image_url=decision.image_url,
            )
            result = await self._call(
                self.notifier.send_price_drop_alert,
                email,
                refreshed,
                decision.previous_price,
                decision.price,
                timeout=self.settings.NOTIFY_TIMEOUT,
                pending=pending,
            )
        except Exception as exc:
            logger.error(
                "Alert for product %s failed: %s",
                product.id,
                exc,
                exc_info=True,
            )
            return False

        if not result.success:
            logger.warning(
                "Alert for product %s not delivered: %s",
                product.id,
                result.error,
            )
        return result.success

    async def _process_product(
        self,
        product: TrackedProduct,
        pending: list["asyncio.Future[Any]"],
    ) -> ProductCheckOutcome:
        """Fetch, reconcile, persist and alert for one product."""
        scraped = await self._call(
            self.fetcher.fetch,
            product.url,
            timeout=self.settings.FETCH_TIMEOUT,
            pending=pending,
        )
        decision = reconcile(product, scraped)
        now = datetime.now(UTC)

        await self._call(
            self.store.update_product_price,
            product.id,
            decision.price,
            decision.currency,
            decision.image_url,
            now,
            timeout=self.settings.STORE_TIMEOUT,
            pending=pending,
        )
        if decision.record_history:
            await self._call(
                self.store.insert_history,
                product.id,
                decision.price,
                decision.currency,
                now,
                timeout=self.settings.STORE_TIMEOUT,
                pending=pending,
            )
            logger.info(
                "Price change for product %s: %s -> %s %s",
                product.id,
                product.current_price,
                decision.price,
                decision.currency,
            )

        outcome = ProductCheckOutcome(
            product_id=product.id,
            success=True,
            price_changed=decision.record_history,
        )
        if decision.send_alert:
            outcome.alert_detected = True
            outcome.alert_delivered = await self._send_alert(
                product, decision, pending,
            )
        return outcome

    async def check_product(
        self,
        product: TrackedProduct,
        pending: list["asyncio.Future[Any]"] | None = None,
    ) -> ProductCheckOutcome:
        """Check one product; never raises.

        Calls abandoned on timeout are appended to *pending* when given.
        """
        if pending is None:
            pending = []
        try:
            return await self._process_product(product, pending)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error(
                "Error checking price for product %s: %s",
                product.id,
                message,
                exc_info=True,
            )
            return ProductCheckOutcome(
                product_id=product.id,
                success=False,
                error=f"product {product.id}: {message}",
            )

    @staticmethod
    def _release_when_done(
        semaphore: asyncio.Semaphore,
        pending: list["asyncio.Future[Any]"],
    ) -> None:
        """Release *semaphore* once every abandoned call has finished."""
        if not pending:
            semaphore.release()
            return
        remaining = len(pending)

        def finished(future: "asyncio.Future[Any]") -> None:
            nonlocal remaining
            if not future.cancelled():
                # Retrieved so a late failure is not reported as unhandled
                future.exception()
            remaining -= 1
            if remaining == 0:
                semaphore.release()

        for future in pending:
            future.add_done_callback(finished)

    # ── Entry point ──────────────────────────────────────

    async def run_batch(self) -> BatchRunReport:
        """Check every tracked product and return the run report.

        A failure while loading the product list propagates; every
        later failure is counted per product.  At most ``concurrency``
        products hold a worker slot at once, and a product whose call
        timed out keeps its slot until the abandoned thread returns.
        """
        products = await self._call(
            self.store.list_all_products,
            timeout=self.settings.STORE_TIMEOUT,
        )
        logger.info("Found %d products to check", len(products))

        report = BatchRunReport(total=len(products))
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(product: TrackedProduct) -> None:
            pending: list[asyncio.Future[Any]] = []
            await semaphore.acquire()
            try:
                outcome = await self.check_product(product, pending)
            finally:
                self._release_when_done(semaphore, pending)
            # Recorded as each finishes so a truncated run keeps its tally
            report.record(outcome)

        await asyncio.gather(*(run_one(p) for p in products))

        logger.info(
            "%s (%d failed of %d)",
            report.summary_message(),
            report.failed,
            report.total,
        )
        return report
