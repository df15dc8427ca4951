import base64
import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock, patch

import pytest

from payments.handler import lambda_handler
from payments.service import ShipmentNotFoundError
from shared.database import StoreError
from shared.stripe_billing import InvoiceError

SECRET = "whsec_test_secret"


def _sign(payload: str, secret: str = SECRET) -> str:
    t = int(time.time())
    digest = hmac.new(secret.encode("utf-8"), f"{t}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={t},v1={digest}"


def _stripe_payload(event_type: str = "invoice.paid") -> str:
    return json.dumps({
        "id": "evt_1",
        "type": event_type,
        "created": 1767225600,
        "data": {"object": {"id": "in_1", "metadata": {"shipmentId": "s1"}}},
    })


def _webhook_event(payload: str, signature: str | None, base64_encoded: bool = False) -> dict:
    headers = {"content-type": "application/json"}
    if signature is not None:
        headers["stripe-signature"] = signature
    return {
        "requestContext": {"http": {"method": "POST"}},
        "rawPath": "/payments/webhook",
        "headers": headers,
        "isBase64Encoded": base64_encoded,
        "body": base64.b64encode(payload.encode("utf-8")).decode("ascii") if base64_encoded else payload,
    }


def _event(method: str, raw_path: str, body: dict | None = None) -> dict:
    e = {"requestContext": {"http": {"method": method}}, "rawPath": raw_path}
    if body is not None:
        e["body"] = json.dumps(body)
    return e


@pytest.fixture
def repo():
    with patch("payments.service.PaymentRepository") as mock_cls:
        instance = MagicMock()
        instance.get_shipment.return_value = {
            "id": "s1",
            "billing_type": "csc",
            "stripe_invoice_id": "in_1",
            "payment_status": "pending",
            "payment_event_at": None,
        }
        mock_cls.return_value = instance
        yield instance


class TestWebhookRoute:
    def test_valid_event_is_applied(self, repo: MagicMock, lambda_context) -> None:
        payload = _stripe_payload()

        resp = lambda_handler(_webhook_event(payload, _sign(payload)), lambda_context)

        assert resp["statusCode"] == 200
        assert json.loads(resp["body"]) == {"received": True}
        shipment_id, fields = repo.update_payment_fields.call_args[0]
        assert shipment_id == "s1"
        assert fields["payment_status"] == "paid"
        assert fields["paid_at"] == "2026-01-01T00:00:00+00:00"

    def test_base64_body_is_verified_on_raw_bytes(self, repo: MagicMock, lambda_context) -> None:
        payload = _stripe_payload()

        resp = lambda_handler(_webhook_event(payload, _sign(payload), base64_encoded=True), lambda_context)

        assert resp["statusCode"] == 200
        repo.update_payment_fields.assert_called_once()

    def test_signature_header_case_insensitive(self, repo: MagicMock, lambda_context) -> None:
        payload = _stripe_payload()
        event = _webhook_event(payload, None)
        event["headers"]["Stripe-Signature"] = _sign(payload)

        assert lambda_handler(event, lambda_context)["statusCode"] == 200

    def test_bad_signature_is_400_without_side_effects(self, repo: MagicMock, lambda_context) -> None:
        payload = _stripe_payload()

        resp = lambda_handler(_webhook_event(payload, _sign(payload, secret="whsec_wrong")), lambda_context)

        assert resp["statusCode"] == 400
        repo.get_shipment.assert_not_called()
        repo.update_payment_fields.assert_not_called()

    def test_missing_signature_is_400(self, repo: MagicMock, lambda_context) -> None:
        resp = lambda_handler(_webhook_event(_stripe_payload(), None), lambda_context)
        assert resp["statusCode"] == 400

    def test_store_failure_is_500(self, repo: MagicMock, lambda_context) -> None:
        repo.update_payment_fields.side_effect = StoreError("timeout")
        payload = _stripe_payload()

        resp = lambda_handler(_webhook_event(payload, _sign(payload)), lambda_context)

        assert resp["statusCode"] == 500


@pytest.fixture
def admin():
    with patch("payments.handler.InvoiceAdminService") as mock_cls:
        instance = MagicMock()
        mock_cls.return_value = instance
        yield instance


class TestAdminRoutes:
    def test_mode(self, admin: MagicMock, lambda_context) -> None:
        admin.mode.return_value = {"mode": "test", "live": False, "publishable_key": "pk_test_123"}

        resp = lambda_handler(_event("GET", "/payments/mode"), lambda_context)

        assert resp["statusCode"] == 200
        assert json.loads(resp["body"])["mode"] == "test"

    def test_create_invoice(self, admin: MagicMock, lambda_context) -> None:
        admin.create_invoice.return_value = {"invoice_id": "in_9"}

        resp = lambda_handler(_event("POST", "/payments/invoices/s1", {"due_days": 14}), lambda_context)

        assert resp["statusCode"] == 201
        admin.create_invoice.assert_called_once_with("s1", 14)

    def test_create_invoice_default_due_days(self, admin: MagicMock, lambda_context) -> None:
        admin.create_invoice.return_value = {"invoice_id": "in_9"}

        lambda_handler(_event("POST", "/payments/invoices/s1"), lambda_context)

        admin.create_invoice.assert_called_once_with("s1", 30)

    def test_guard_failure_is_400(self, admin: MagicMock, lambda_context) -> None:
        admin.create_invoice.side_effect = ValueError("Only CSC-billed shipments are invoiced")

        resp = lambda_handler(_event("POST", "/payments/invoices/s1"), lambda_context)

        assert resp["statusCode"] == 400

    def test_stripe_failure_is_502(self, admin: MagicMock, lambda_context) -> None:
        admin.send_reminder.side_effect = InvoiceError("Reminder for invoice in_1 failed")

        resp = lambda_handler(_event("POST", "/payments/invoices/s1/remind"), lambda_context)

        assert resp["statusCode"] == 502

    def test_void_unknown_shipment_is_404(self, admin: MagicMock, lambda_context) -> None:
        admin.void_invoice.side_effect = ShipmentNotFoundError("Shipment s9 not found")

        resp = lambda_handler(_event("POST", "/payments/invoices/s9/void"), lambda_context)

        assert resp["statusCode"] == 404

    def test_invoice_status(self, admin: MagicMock, lambda_context) -> None:
        admin.get_invoice_status.return_value = {"status": "open"}

        resp = lambda_handler(_event("GET", "/payments/invoices/s1"), lambda_context)

        assert resp["statusCode"] == 200
        admin.get_invoice_status.assert_called_once_with("s1")
