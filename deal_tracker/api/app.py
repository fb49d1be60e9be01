# deal_tracker/api/app.py

"""HTTP trigger for the scheduled price check.

An external timer (cron, platform scheduler) POSTs to
``/api/cron/check-price`` with ``Authorization: Bearer <CRON_SECRET>``.
"""

import hmac
import logging

from fastapi import FastAPI, Header
from fastapi.responses import JSONResponse

from deal_tracker.config.settings import Settings
from deal_tracker.fetchers.page_fetcher import PageFetcher
from deal_tracker.notifications.notifier import EmailNotifier, Notifier
from deal_tracker.services.price_checker import Fetcher, PriceCheckRunner
from deal_tracker.storage.tracker_db import TrackerDB

logger = logging.getLogger("deal_tracker.api")


def is_authorized(
    authorization: str | None, secret: str,
) -> bool:
    """Compare a bearer header against the configured secret."""
    if not secret or not authorization:
        return False
    return hmac.compare_digest(
        authorization.encode(), f"Bearer {secret}".encode(),
    )


def create_app(
    settings: Settings | None = None,
    db: TrackerDB | None = None,
    fetcher: Fetcher | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    """Build the trigger app; collaborators default to real ones."""
    settings = settings or Settings()
    db = db or TrackerDB(
        settings.DB_PATH, service_key=settings.SERVICE_ROLE_KEY,
    )
    app = FastAPI(title="deal_tracker")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/cron/check-price")
    async def check_price_info() -> dict[str, str]:
        return {
            "message": (
                "Price check endpoint is working. "
                "Use POST to trigger a price check"
            ),
        }

    @app.post("/api/cron/check-price")
    async def check_price(
        authorization: str | None = Header(None),
    ) -> JSONResponse:
        if not is_authorized(authorization, settings.CRON_SECRET):
            logger.warning("Rejected price check trigger: bad credential")
            return JSONResponse(
                {"error": "Unauthorized"}, status_code=401,
            )

        try:
            runner = PriceCheckRunner(
                store=db.admin(settings.SERVICE_ROLE_KEY),
                fetcher=fetcher or PageFetcher(),
                notifier=notifier or EmailNotifier(),
                concurrency=settings.BATCH_CONCURRENCY,
            )
            report = await runner.run_batch()
        except Exception as exc:
            logger.critical("Price check job failed: %s", exc, exc_info=True)
            return JSONResponse(
                {
                    "success": False,
                    "message": "Error checking prices",
                    "error": str(exc) or "Unknown error",
                },
                status_code=500,
            )

        return JSONResponse({
            "success": True,
            "message": report.summary_message(),
            "results": report.to_dict(),
        })

    return app
