# deal_tracker/fetchers/page_fetcher.py

"""Generic product page fetcher driven by structured page metadata.

Most shop fronts publish their product data for search engines.  The
fetcher reads, in order of preference, schema.org ``Product`` JSON-LD,
OpenGraph / ``product:`` meta tags, and schema.org microdata, and fills
each field from the first source that has it.
"""

import json
import re
from decimal import Decimal
from typing import Any

from bs4 import BeautifulSoup, Tag

from deal_tracker.errors import ExtractionError
from deal_tracker.fetchers.base_fetcher import BaseFetcher
from deal_tracker.models.product import ScrapeResult

_FIELDS = ("name", "price", "currency", "image")

# Only used when the page carries no explicit ISO code.  Sign characters
# are tried before the letter abbreviations.
_CURRENCY_SYMBOLS: dict[str, str] = {
    "৳": "BDT",
    "₹": "INR",
    "€": "EUR",
    "£": "GBP",
    "$": "USD",
    "tk": "BDT",
    "rs": "INR",
}

_CURRENCY_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(rf"(?<![a-z]){re.escape(symbol)}(?![a-z])"), code)
    for symbol, code in _CURRENCY_SYMBOLS.items()
]


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _is_product(node: dict[str, Any]) -> bool:
    types = _as_list(node.get("@type"))
    return any(str(t).lower() == "product" for t in types)


def _iter_json_ld_nodes(data: Any) -> list[dict[str, Any]]:
    """Flatten JSON-LD payloads, including ``@graph`` containers."""
    nodes: list[dict[str, Any]] = []
    for item in _as_list(data):
        if not isinstance(item, dict):
            continue
        nodes.append(item)
        nodes.extend(_iter_json_ld_nodes(item.get("@graph")))
    return nodes


def _image_url(value: Any) -> str | None:
    for item in _as_list(value):
        if isinstance(item, str) and item.strip():
            return item.strip()
        if isinstance(item, dict) and item.get("url"):
            return str(item["url"])
    return None


def normalize_currency(
    raw: str | None, price_text: str | None = None,
) -> str | None:
    """Return an upper-case ISO code, mapping symbols as a last resort."""
    if raw:
        code = raw.strip()
        if len(code) == 3 and code.isalpha():
            return code.upper()
    for text in (raw, price_text):
        if not text:
            continue
        lower = text.lower()
        for pattern, code in _CURRENCY_PATTERNS:
            if pattern.search(lower):
                return code
    return None


class PageFetcher(BaseFetcher):
    """Fetch any product page exposing structured product metadata."""

    def __init__(self) -> None:
        super().__init__("page")

    # ── Sources ──────────────────────────────────────────

    def _from_json_ld(self, soup: BeautifulSoup) -> dict[str, Any]:
        """Read the first schema.org Product found in JSON-LD."""
        for script in soup.find_all(
            "script", attrs={"type": "application/ld+json"},
        ):
            raw = script.string or script.get_text()
            if not raw or not raw.strip():
                continue
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                self.logger.debug("Skipping malformed JSON-LD block")
                continue

            for node in _iter_json_ld_nodes(payload):
                if not _is_product(node):
                    continue
                offers = [
                    o for o in _as_list(node.get("offers"))
                    if isinstance(o, dict)
                ]
                offer = offers[0] if offers else {}
                price = offer.get("price", offer.get("lowPrice"))
                return {
                    "name": node.get("name"),
                    "price": price,
                    "currency": offer.get("priceCurrency"),
                    "image": _image_url(node.get("image")),
                }
        return {}

    def _from_meta(self, soup: BeautifulSoup) -> dict[str, Any]:
        """Read OpenGraph and ``product:`` meta tags."""

        def meta(*names: str) -> str | None:
            for name in names:
                tag = soup.find("meta", attrs={"property": name}) or (
                    soup.find("meta", attrs={"name": name})
                )
                if isinstance(tag, Tag) and tag.get("content"):
                    return str(tag["content"]).strip()
            return None

        return {
            "name": meta("og:title", "twitter:title"),
            "price": meta("product:price:amount", "og:price:amount"),
            "currency": meta(
                "product:price:currency", "og:price:currency",
            ),
            "image": meta("og:image", "twitter:image"),
        }

    def _from_microdata(self, soup: BeautifulSoup) -> dict[str, Any]:
        """Read schema.org microdata attributes."""

        def prop(name: str) -> str | None:
            el = soup.select_one(f'[itemprop="{name}"]')
            if el is None:
                return None
            value = el.get("content") or el.get_text(strip=True)
            return str(value).strip() if value else None

        image = soup.select_one('[itemprop="image"]')
        image_url = None
        if image is not None:
            image_url = image.get("src") or image.get("content")
        return {
            "name": prop("name"),
            "price": prop("price"),
            "currency": prop("priceCurrency"),
            "image": str(image_url) if image_url else None,
        }

    # ── Parsing ──────────────────────────────────────────

    def _parse_price(self, value: Any) -> Decimal | None:
        if isinstance(value, bool) or value is None:
            return None
        if isinstance(value, (int, float, Decimal)):
            return Decimal(str(value))
        return self.extract_price(str(value))

    def parse(self, soup: BeautifulSoup) -> ScrapeResult:
        """Merge all metadata sources into one :class:`ScrapeResult`."""
        merged: dict[str, Any] = dict.fromkeys(_FIELDS)
        for source in (
            self._from_json_ld(soup),
            self._from_meta(soup),
            self._from_microdata(soup),
        ):
            for key in _FIELDS:
                # A price of 0 is a value, only None and "" are gaps
                value = source.get(key)
                if merged[key] in (None, "") and value not in (None, ""):
                    merged[key] = value

        name = str(merged["name"] or "").strip()
        price = self._parse_price(merged["price"])
        if not name or price is None:
            raise ExtractionError("No product data extracted from URL")

        price_text = (
            merged["price"] if isinstance(merged["price"], str) else None
        )
        return ScrapeResult(
            product_name=name,
            current_price=price,
            currency_code=normalize_currency(
                merged["currency"], price_text,
            ),
            product_image_url=merged["image"],
        )

    def fetch(self, url: str) -> ScrapeResult:
        """Fetch *url* and extract its product name, price and image."""
        soup = self._get_page(url)
        if soup is None:
            raise ExtractionError(
                f"Failed to extract product details from URL: {url}"
            )
        result = self.parse(soup)
        self.logger.info(
            "[%s] %s -> %s %s",
            self.fetcher_name,
            url,
            result.current_price,
            result.currency_code or "?",
        )
        return result
