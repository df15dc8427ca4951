from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests

from shared.email import RESEND_URL, NotificationError, Notifier


@pytest.fixture
def notifier(settings) -> Notifier:
    return Notifier(settings.notifier)


def _ok(email_id: str = "email_1") -> MagicMock:
    resp = MagicMock()
    resp.status_code = 200
    resp.json.return_value = {"id": email_id}
    return resp


class TestTrackingEmail:
    def test_posts_to_resend(self, notifier: Notifier) -> None:
        with patch("shared.email.requests.post", return_value=_ok()) as mock_post:
            email_id = notifier.send_tracking_email("Jane Doe", "jane@ubc.ca", "329014521622", "UBC Bookstore")

        assert email_id == "email_1"
        assert mock_post.call_args[0][0] == RESEND_URL
        body = mock_post.call_args.kwargs["json"]
        assert body["to"] == ["jane@ubc.ca"]
        assert "329014521622" in body["subject"]
        assert "pin=329014521622" in body["html"]
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer re_test_123"

    def test_user_text_is_escaped(self, notifier: Notifier) -> None:
        with patch("shared.email.requests.post", return_value=_ok()) as mock_post:
            notifier.send_tracking_email("<b>Jane</b>", "jane@ubc.ca", "329014521622", "A & B")

        html = mock_post.call_args.kwargs["json"]["html"]
        assert "<b>Jane</b>" not in html
        assert "&lt;b&gt;Jane&lt;/b&gt;" in html
        assert "A &amp; B" in html


class TestShipmentNotification:
    def test_goes_to_office(self, notifier: Notifier) -> None:
        with patch("shared.email.requests.post", return_value=_ok()) as mock_post:
            notifier.send_shipment_notification(
                tracking_number="ERROR-1700000000000",
                contact_name="Jane Doe",
                contact_email="jane@ubc.ca",
                organization_name="UBC Bookstore",
                destination_address="6200 University Blvd, Vancouver, BC V6T1Z4",
                estimated_cost=Decimal("42.1"),
                billing_type="csc",
                billing_account="12345678",
                has_label=False,
            )

        body = mock_post.call_args.kwargs["json"]
        assert body["to"] == ["office@campusstores.ca"]
        assert "$42.10" in body["html"]
        assert "CSC Account" in body["html"]


class TestFailures:
    def test_http_error_status(self, notifier: Notifier) -> None:
        resp = MagicMock(status_code=422, text="invalid from")
        with patch("shared.email.requests.post", return_value=resp):
            with pytest.raises(NotificationError, match="422"):
                notifier.send_tracking_email("Jane", "jane@ubc.ca", "1", "Org")

    def test_network_error(self, notifier: Notifier) -> None:
        with patch("shared.email.requests.post", side_effect=requests.ConnectionError("down")):
            with pytest.raises(NotificationError):
                notifier.send_tracking_email("Jane", "jane@ubc.ca", "1", "Org")
