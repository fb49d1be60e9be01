# deal_tracker/fetchers/base_fetcher.py

"""Abstract base class for product page fetchers."""

import logging
import re
import time
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlparse

import cloudscraper  # type: ignore[import-untyped]
from bs4 import BeautifulSoup
from curl_cffi import requests as curl_requests

from deal_tracker.config.settings import Settings
from deal_tracker.models.product import ScrapeResult


class BaseFetcher(ABC):
    """Fetch a product URL and turn it into a :class:`ScrapeResult`."""

    def __init__(self, fetcher_name: str) -> None:
        self.fetcher_name = fetcher_name
        self.logger = logging.getLogger(
            f"deal_tracker.fetch.{fetcher_name}"
        )
        self.settings = Settings()
        self.session = curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )
        self._current_delay: float = (
            self.settings.REQUEST_DELAY
        )
        self._request_timeout: int = (
            self.settings.REQUEST_TIMEOUT
        )

    def _wait(self) -> None:
        """Sleep using the current (possibly escalated) delay."""
        time.sleep(self._current_delay)

    # Cloudflare challenge page markers (checked before keyword scan)
    _CF_CHALLENGE_MARKERS: list[str] = [
        "challenges.cloudflare.com",
        "cdn-cgi/challenge-platform",
        "just a moment",
        "cf-turnstile",
        "cf_chl_opt",
    ]

    def _validate_response(
        self, resp: curl_requests.Response,
    ) -> bool:
        """Check for Cloudflare challenge pages and CAPTCHA indicators."""
        text = resp.text
        lower = text.lower()

        for marker in self._CF_CHALLENGE_MARKERS:
            if marker in lower:
                self.logger.warning(
                    "[%s] Cloudflare challenge detected "
                    "(marker: '%s')",
                    self.fetcher_name,
                    marker,
                )
                return False

        # Skip the keyword scan on real product pages to avoid
        # false positives from footer text
        has_body_content = (
            "<body" in lower and len(text) > 5000
        )
        if not has_body_content:
            for keyword in self.settings.CAPTCHA_KEYWORDS:
                if keyword in lower:
                    self.logger.warning(
                        "[%s] CAPTCHA keyword '%s' "
                        "detected",
                        self.fetcher_name,
                        keyword,
                    )
                    return False
        return True

    def _escalate_delay(self) -> None:
        """Double the current delay up to the configured max."""
        max_delay = (
            self.settings.REQUEST_DELAY
            * self.settings.MAX_DELAY_MULTIPLIER
        )
        self._current_delay = min(
            self._current_delay * 2, max_delay
        )
        self.logger.warning(
            "[%s] Rate-limited, delay escalated to %.1fs",
            self.fetcher_name,
            self._current_delay,
        )

    def _fetch_get(
        self,
        url: str,
        headers: dict[str, str],
    ) -> curl_requests.Response | None:
        """GET with transport retries and adaptive delay."""
        for attempt in range(self.settings.MAX_RETRIES):
            try:
                resp = self.session.get(
                    url,
                    headers=headers,
                    timeout=self._request_timeout,
                )
                if resp.status_code == 200:
                    if not self._validate_response(resp):
                        self._escalate_delay()
                        time.sleep(self._current_delay)
                        continue
                    self._current_delay = self.settings.REQUEST_DELAY
                    return resp
                self.logger.warning(
                    "[%s] HTTP %d on attempt %d for %s",
                    self.fetcher_name,
                    resp.status_code,
                    attempt + 1,
                    url,
                )
                if resp.status_code in (429, 403):
                    self._escalate_delay()
                    time.sleep(self._current_delay)
                elif resp.status_code == 404:
                    return None
            except Exception as exc:
                self.logger.warning(
                    "[%s] Request error on attempt %d: %s",
                    self.fetcher_name,
                    attempt + 1,
                    exc,
                    exc_info=True,
                )
                time.sleep(
                    self._current_delay * (attempt + 1)
                )
        return None

    def _get_page(self, url: str) -> BeautifulSoup | None:
        """Fetch a page, falling back to cloudscraper on failure."""
        parsed = urlparse(url)
        headers: dict[str, str] = {
            **self.settings.DEFAULT_HEADERS,
            "Referer": f"{parsed.scheme}://{parsed.netloc}/",
        }
        self._wait()

        # Primary: curl_cffi (browser-impersonating TLS)
        resp = self._fetch_get(url, headers)
        if resp:
            return BeautifulSoup(resp.text, "lxml")

        # Fallback: cloudscraper (JS challenge solver)
        self.logger.info(
            "[%s] curl_cffi exhausted, falling back to cloudscraper",
            self.fetcher_name,
        )
        try:
            _cs: Any = cloudscraper
            scraper: Any = _cs.create_scraper()
            fallback_resp: Any = scraper.get(
                url,
                headers=headers,
                timeout=self._request_timeout,
            )
            if fallback_resp.status_code == 200:
                return BeautifulSoup(
                    str(fallback_resp.text), "lxml"
                )
        except Exception as e:
            self.logger.error(
                "[%s] cloudscraper fallback also failed: %s",
                self.fetcher_name,
                e,
                exc_info=True,
            )

        return None

    @staticmethod
    def extract_price(text: str | None) -> Decimal | None:
        """Extract a numeric price from a string like 'Tk 1,299.00'."""
        if not text:
            return None
        cleaned = text.replace(",", "")
        numbers = re.findall(r"\d+(?:\.\d+)?", cleaned)
        if not numbers:
            return None
        try:
            return Decimal(numbers[0])
        except InvalidOperation:
            return None

    @abstractmethod
    def fetch(self, url: str) -> ScrapeResult:
        """Fetch *url* and return its product data.

        Raises :class:`~deal_tracker.errors.ExtractionError` on any
        failure.
        """
        ...
