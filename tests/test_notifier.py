# tests/test_notifier.py

"""Tests for the Resend price-drop email notifier."""

import unittest
from decimal import Decimal
from unittest.mock import MagicMock

from deal_tracker.models.product import TrackedProduct
from deal_tracker.notifications.notifier import (
    EmailNotifier,
    build_alert_bodies,
    build_alert_subject,
)


def _product(image: str | None = "https://shop.example/i.jpg") -> TrackedProduct:
    return TrackedProduct(
        id=7,
        user_id="alice",
        url="https://shop.example/p/7",
        name="Rice Cooker <XL>",
        current_price=Decimal("80"),
        currency="BDT",
        image_url=image,
    )


def _response(status: int, text: str = "{}") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    return resp


class TestAlertContent(unittest.TestCase):
    """Subject and body rendering."""

    def test_subject_names_product(self) -> None:
        """The subject carries the product name."""
        self.assertEqual(
            build_alert_subject(_product()),
            "Price drop alert: Rice Cooker <XL>",
        )

    def test_bodies_include_prices_and_saving(self) -> None:
        """Both bodies show old, new and the saving."""
        plain, body = build_alert_bodies(
            _product(), Decimal("100"), Decimal("80"),
        )
        self.assertIn("BDT 100.00", plain)
        self.assertIn("BDT 80.00", plain)
        self.assertIn("BDT 20.00 (20.0%)", plain)
        self.assertIn("https://shop.example/p/7", plain)
        self.assertIn("BDT 20.00 (20.0%)", body)

    def test_html_is_escaped(self) -> None:
        """Product names cannot inject markup."""
        _, body = build_alert_bodies(
            _product(), Decimal("100"), Decimal("80"),
        )
        self.assertIn("Rice Cooker &lt;XL&gt;", body)
        self.assertNotIn("<XL>", body)

    def test_image_optional(self) -> None:
        """No image tag is rendered without an image URL."""
        _, body = build_alert_bodies(
            _product(image=None), Decimal("100"), Decimal("80"),
        )
        self.assertNotIn("<img", body)


class TestEmailNotifier(unittest.TestCase):
    """Delivery through a mocked HTTP session."""

    def _notifier(self, api_key: str = "re_test") -> EmailNotifier:
        notifier = EmailNotifier(
            api_key=api_key, from_email="alerts@example.com",
        )
        notifier.session = MagicMock()
        return notifier

    def test_successful_delivery(self) -> None:
        """A 200 from the API is a success."""
        notifier = self._notifier()
        notifier.session.post.return_value = _response(200)

        result = notifier.send_price_drop_alert(
            "alice@example.com", _product(), Decimal("100"), Decimal("80"),
        )

        self.assertTrue(result.success)
        _, kwargs = notifier.session.post.call_args
        self.assertEqual(
            kwargs["headers"]["Authorization"], "Bearer re_test",
        )
        self.assertEqual(kwargs["json"]["to"], ["alice@example.com"])
        self.assertEqual(kwargs["json"]["from"], "alerts@example.com")

    def test_api_rejection_is_failure_result(self) -> None:
        """Non-2xx responses return a failure, never raise."""
        notifier = self._notifier()
        notifier.session.post.return_value = _response(422, "bad address")

        result = notifier.send_price_drop_alert(
            "nope", _product(), Decimal("100"), Decimal("80"),
        )

        self.assertFalse(result.success)
        self.assertIn("422", result.error or "")

    def test_transport_error_is_failure_result(self) -> None:
        """Network errors return a failure, never raise."""
        notifier = self._notifier()
        notifier.session.post.side_effect = ConnectionError("reset")

        result = notifier.send_price_drop_alert(
            "alice@example.com", _product(), Decimal("100"), Decimal("80"),
        )

        self.assertFalse(result.success)
        self.assertIn("reset", result.error or "")

    def test_unconfigured_key_skips_delivery(self) -> None:
        """Without an API key nothing is sent."""
        notifier = self._notifier(api_key="")

        result = notifier.send_price_drop_alert(
            "alice@example.com", _product(), Decimal("100"), Decimal("80"),
        )

        self.assertFalse(result.success)
        self.assertEqual(result.error, "Email delivery not configured")
        notifier.session.post.assert_not_called()


if __name__ == "__main__":
    unittest.main()
