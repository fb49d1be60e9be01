# tests/test_page_fetcher.py

"""Tests for PageFetcher metadata extraction and fetch resilience."""

import json
import unittest
from decimal import Decimal
from unittest.mock import MagicMock, patch

from bs4 import BeautifulSoup

from deal_tracker.errors import ExtractionError
from deal_tracker.fetchers.base_fetcher import BaseFetcher
from deal_tracker.fetchers.page_fetcher import (
    PageFetcher,
    normalize_currency,
)


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def _json_ld(payload: object) -> str:
    return (
        '<html><head><script type="application/ld+json">'
        f"{json.dumps(payload)}"
        "</script></head><body></body></html>"
    )


def _mock_response(status: int, text: str) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    return resp


class TestParse(unittest.TestCase):
    """Extraction from structured page metadata."""

    def setUp(self) -> None:
        self.fetcher = PageFetcher()

    def test_json_ld_product(self) -> None:
        """schema.org Product JSON-LD is the primary source."""
        html = _json_ld({
            "@context": "https://schema.org",
            "@type": "Product",
            "name": "Rice Cooker 1.8L",
            "image": ["https://shop.example/rc.jpg"],
            "offers": {
                "@type": "Offer",
                "price": "3450.00",
                "priceCurrency": "bdt",
            },
        })
        result = self.fetcher.parse(_soup(html))
        self.assertEqual(result.product_name, "Rice Cooker 1.8L")
        self.assertEqual(result.current_price, Decimal("3450.00"))
        self.assertEqual(result.currency_code, "BDT")
        self.assertEqual(
            result.product_image_url, "https://shop.example/rc.jpg",
        )

    def test_json_ld_graph_and_offer_list(self) -> None:
        """Products nested in @graph with offer lists are found."""
        html = _json_ld({
            "@graph": [
                {"@type": "WebPage", "name": "Shop"},
                {
                    "@type": ["Product", "Thing"],
                    "name": "Kettle",
                    "image": {"url": "https://shop.example/k.jpg"},
                    "offers": [
                        {"lowPrice": 1200, "priceCurrency": "INR"},
                    ],
                },
            ],
        })
        result = self.fetcher.parse(_soup(html))
        self.assertEqual(result.product_name, "Kettle")
        self.assertEqual(result.current_price, Decimal("1200"))
        self.assertEqual(result.currency_code, "INR")
        self.assertEqual(
            result.product_image_url, "https://shop.example/k.jpg",
        )

    def test_meta_tags_fallback(self) -> None:
        """OpenGraph product tags fill in when JSON-LD is absent."""
        html = (
            "<html><head>"
            '<meta property="og:title" content="Desk Lamp">'
            '<meta property="product:price:amount" content="19.99">'
            '<meta property="product:price:currency" content="USD">'
            '<meta property="og:image" content="https://x/lamp.jpg">'
            "</head><body></body></html>"
        )
        result = self.fetcher.parse(_soup(html))
        self.assertEqual(result.product_name, "Desk Lamp")
        self.assertEqual(result.current_price, Decimal("19.99"))
        self.assertEqual(result.currency_code, "USD")
        self.assertEqual(result.product_image_url, "https://x/lamp.jpg")

    def test_microdata_fallback_with_symbol(self) -> None:
        """Microdata price text with a taka sign maps to BDT."""
        html = (
            '<html><body><div itemscope itemtype="https://schema.org/Product">'
            '<h1 itemprop="name">Ceiling Fan</h1>'
            '<span itemprop="price">৳ 4,250</span>'
            "</div></body></html>"
        )
        result = self.fetcher.parse(_soup(html))
        self.assertEqual(result.product_name, "Ceiling Fan")
        self.assertEqual(result.current_price, Decimal("4250"))
        self.assertEqual(result.currency_code, "BDT")

    def test_sources_are_merged(self) -> None:
        """Missing JSON-LD fields are filled from meta tags."""
        html = (
            "<html><head>"
            '<script type="application/ld+json">'
            '{"@type": "Product", "name": "Blender"}'
            "</script>"
            '<meta property="og:price:amount" content="2500">'
            "</head><body></body></html>"
        )
        result = self.fetcher.parse(_soup(html))
        self.assertEqual(result.product_name, "Blender")
        self.assertEqual(result.current_price, Decimal("2500"))
        self.assertIsNone(result.currency_code)

    def test_malformed_json_ld_is_skipped(self) -> None:
        """Broken JSON-LD blocks do not stop extraction."""
        html = (
            "<html><head>"
            '<script type="application/ld+json">{not json</script>'
            '<meta property="og:title" content="Iron">'
            '<meta property="og:price:amount" content="900">'
            "</head><body></body></html>"
        )
        result = self.fetcher.parse(_soup(html))
        self.assertEqual(result.product_name, "Iron")

    def test_zero_price_is_kept(self) -> None:
        """A JSON-LD price of 0 is a price, not a gap."""
        html = _json_ld({
            "@type": "Product",
            "name": "Free Sample",
            "offers": {"price": 0, "priceCurrency": "BDT"},
        })
        result = self.fetcher.parse(_soup(html))
        self.assertEqual(result.current_price, Decimal("0"))
        self.assertEqual(result.product_name, "Free Sample")

    def test_zero_price_not_overridden_by_meta(self) -> None:
        """A later source does not replace an earlier 0 price."""
        html = (
            "<html><head>"
            '<script type="application/ld+json">'
            '{"@type": "Product", "name": "Promo", '
            '"offers": {"price": 0}}'
            "</script>"
            '<meta property="og:price:amount" content="99">'
            "</head><body></body></html>"
        )
        result = self.fetcher.parse(_soup(html))
        self.assertEqual(result.current_price, Decimal("0"))

    def test_missing_price_raises(self) -> None:
        """A page without a price is unusable."""
        html = (
            '<html><head><meta property="og:title" content="Thing">'
            "</head></html>"
        )
        with self.assertRaises(ExtractionError):
            self.fetcher.parse(_soup(html))

    def test_missing_name_raises(self) -> None:
        """A page without a name is unusable."""
        html = (
            '<html><head><meta property="og:price:amount" content="5">'
            "</head></html>"
        )
        with self.assertRaises(ExtractionError):
            self.fetcher.parse(_soup(html))


class TestNormalizeCurrency(unittest.TestCase):
    """ISO codes win; symbols are a fallback."""

    def test_iso_code_upper_cased(self) -> None:
        """Lower-case ISO codes are upper-cased."""
        self.assertEqual(normalize_currency("eur"), "EUR")

    def test_symbol_mapping(self) -> None:
        """Known symbols map to their ISO code."""
        for raw, code in (("৳", "BDT"), ("₹", "INR"), ("$", "USD")):
            with self.subTest(raw=raw):
                self.assertEqual(normalize_currency(raw), code)

    def test_price_text_symbol(self) -> None:
        """The price text is scanned when no code is given."""
        self.assertEqual(normalize_currency(None, "Tk 1,200"), "BDT")

    def test_letter_abbreviation_needs_word_boundary(self) -> None:
        """'rs' inside a word is not a rupee sign."""
        self.assertIsNone(normalize_currency(None, "Dollars 20"))
        self.assertEqual(normalize_currency(None, "Dollars $20"), "USD")
        self.assertEqual(normalize_currency(None, "Rs. 1,500"), "INR")
        self.assertEqual(normalize_currency(None, "Tk1200"), "BDT")

    def test_sign_wins_over_abbreviation(self) -> None:
        """A currency sign is preferred over a letter abbreviation."""
        self.assertEqual(normalize_currency(None, "$25 (Rs 2,000)"), "USD")

    def test_unknown_returns_none(self) -> None:
        """No code and no symbol yields None."""
        self.assertIsNone(normalize_currency(None, "1200"))


class TestExtractPrice(unittest.TestCase):
    """Price text parsing."""

    def test_thousands_separator(self) -> None:
        """Commas are stripped before parsing."""
        self.assertEqual(
            BaseFetcher.extract_price("Tk 1,299.00"), Decimal("1299.00"),
        )

    def test_empty_and_non_numeric(self) -> None:
        """Empty or number-free text yields None."""
        self.assertIsNone(BaseFetcher.extract_price(""))
        self.assertIsNone(BaseFetcher.extract_price(None))
        self.assertIsNone(BaseFetcher.extract_price("Out of stock"))


class TestFetch(unittest.TestCase):
    """HTTP behaviour of fetch() with the session mocked."""

    PRODUCT_HTML = (
        "<html><head>"
        '<meta property="og:title" content="Toaster">'
        '<meta property="og:price:amount" content="1500">'
        "</head><body></body></html>"
    )

    def setUp(self) -> None:
        self.fetcher = PageFetcher()
        self.fetcher.session = MagicMock()

    def test_fetch_success(self) -> None:
        """A 200 product page yields a ScrapeResult."""
        self.fetcher.session.get.return_value = _mock_response(
            200, self.PRODUCT_HTML,
        )
        result = self.fetcher.fetch("https://shop.example/p/1")
        self.assertEqual(result.product_name, "Toaster")
        self.assertEqual(result.current_price, Decimal("1500"))

    def test_retries_then_succeeds(self) -> None:
        """A transient 503 is retried inside one fetch."""
        self.fetcher.session.get.side_effect = [
            _mock_response(503, ""),
            _mock_response(200, self.PRODUCT_HTML),
        ]
        result = self.fetcher.fetch("https://shop.example/p/1")
        self.assertEqual(result.product_name, "Toaster")
        self.assertEqual(self.fetcher.session.get.call_count, 2)

    def test_rate_limit_escalates_delay(self) -> None:
        """429 responses double the delay and exhaust retries."""
        self.fetcher.session.get.return_value = _mock_response(429, "")
        before = self.fetcher._current_delay
        resp = self.fetcher._fetch_get("https://shop.example/p/1", {})
        self.assertIsNone(resp)
        self.assertGreater(self.fetcher._current_delay, before)

    def test_success_resets_delay(self) -> None:
        """A good response after a 429 restores the base delay."""
        self.fetcher.session.get.side_effect = [
            _mock_response(429, ""),
            _mock_response(200, self.PRODUCT_HTML),
        ]
        before = self.fetcher._current_delay
        self.fetcher._fetch_get("https://shop.example/p/1", {})
        self.assertEqual(self.fetcher.session.get.call_count, 2)
        self.assertEqual(self.fetcher._current_delay, before)

    @patch("deal_tracker.fetchers.base_fetcher.cloudscraper")
    def test_challenge_page_falls_back_then_fails(
        self, mock_cs: MagicMock,
    ) -> None:
        """Cloudflare pages trigger cloudscraper; failure raises."""
        self.fetcher.session.get.return_value = _mock_response(
            200, "<html>Just a moment...</html>",
        )
        mock_cs.create_scraper.return_value.get.return_value = (
            _mock_response(403, "")
        )
        with self.assertRaises(ExtractionError):
            self.fetcher.fetch("https://shop.example/p/1")
        mock_cs.create_scraper.assert_called_once()

    @patch("deal_tracker.fetchers.base_fetcher.cloudscraper")
    def test_cloudscraper_fallback_success(
        self, mock_cs: MagicMock,
    ) -> None:
        """cloudscraper output is parsed when curl_cffi is exhausted."""
        self.fetcher.session.get.side_effect = ConnectionError("reset")
        mock_cs.create_scraper.return_value.get.return_value = (
            _mock_response(200, self.PRODUCT_HTML)
        )
        result = self.fetcher.fetch("https://shop.example/p/1")
        self.assertEqual(result.product_name, "Toaster")


if __name__ == "__main__":
    unittest.main()
