"""
Stripe invoicing for CSC-billed shipments.

Each invoice gets its own freshly created customer so that the contact and
organization printed on it are the ones captured at the kiosk for that
shipment (no lookup by email).
"""

import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import stripe
from aws_lambda_powertools import Logger

from shared.config import StripeSettings

logger = Logger(service="stripe_billing")

CURRENCY = "cad"
SOURCE = "csc-conference-shipping"
CUSTOM_FIELD_MAX = 30
TRACKING_URL = "https://www.purolator.com/en/shipping/tracker?pin={pin}&sdate={ship_date}"

# Stripe event type -> shipment payment_status
EVENT_PAYMENT_STATUS = {
    "invoice.paid": "paid",
    "invoice.payment_failed": "payment_failed",
    "invoice.voided": "voided",
    "invoice.marked_uncollectible": "uncollectible",
}


class InvoiceError(Exception):
    """Raised when Stripe rejects or fails an invoicing call."""

    pass


class WebhookAuthError(Exception):
    """Missing or invalid Stripe-Signature header."""

    pass


@dataclass(frozen=True)
class InvoiceResult:
    invoice_id: str
    hosted_url: Optional[str]
    pdf_url: Optional[str]


@dataclass(frozen=True)
class PaymentStatusUpdate:
    shipment_id: str
    invoice_id: Optional[str]
    payment_status: str
    event_id: Optional[str]
    event_at: datetime
    paid_at: Optional[datetime] = None


def tracking_url(pin: str, ship_date: Optional[date] = None) -> str:
    ship_date = ship_date or datetime.now(timezone.utc).date()
    return TRACKING_URL.format(pin=pin, ship_date=ship_date.isoformat())


def to_cents(amount: Decimal) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_webhook_event(event: dict[str, Any]) -> Optional[PaymentStatusUpdate]:
    """
    Project a Stripe event onto a shipment payment status.

    Returns None for event kinds we do not consume and for invoices without
    a shipmentId in their metadata.
    """
    event_type = event.get("type")
    status = EVENT_PAYMENT_STATUS.get(event_type)
    if status is None:
        return None

    invoice = (event.get("data") or {}).get("object") or {}
    metadata = invoice.get("metadata") or {}
    shipment_id = metadata.get("shipmentId")
    if not shipment_id:
        logger.warning("Invoice event without shipmentId metadata", extra={"event_type": event_type, "invoice_id": invoice.get("id")})
        return None

    created = event.get("created")
    event_at = (
        datetime.fromtimestamp(int(created), tz=timezone.utc)
        if created is not None
        else datetime.now(timezone.utc)
    )
    return PaymentStatusUpdate(
        shipment_id=str(shipment_id),
        invoice_id=invoice.get("id"),
        payment_status=status,
        event_id=event.get("id"),
        event_at=event_at,
        paid_at=event_at if status == "paid" else None,
    )


class StripeInvoiceClient:
    def __init__(self, settings: StripeSettings):
        self.settings = settings
        self.mode = settings.mode

    def _opts(self) -> dict[str, str]:
        return {"api_key": self.settings.secret_key}

    def create_invoice_for_shipment(
        self,
        shipment_id: str,
        tracking_number: str,
        contact: dict[str, str],
        organization: str,
        amount: Decimal,
        destination_summary: str,
        due_days: int = 30,
    ) -> InvoiceResult:
        """
        Create a customer, an invoice and its single line, then finalize.

        Args:
            contact: {"name": ..., "email": ...}; Stripe emails the finalized
                invoice to this address.
            amount: Shipping cost in CAD.

        Raises:
            InvoiceError: Any Stripe failure.
        """
        metadata = {"shipmentId": shipment_id, "trackingNumber": tracking_number, "source": SOURCE}
        try:
            customer = stripe.Customer.create(
                email=contact["email"],
                name=contact["name"],
                description=f"{contact['name']} - {organization}" if organization else contact["name"],
                metadata={"organization": organization or "", **metadata},
                **self._opts(),
            )
            invoice = stripe.Invoice.create(
                customer=customer.id,
                auto_advance=True,
                collection_method="send_invoice",
                days_until_due=due_days,
                description="CSC Conference - Shipping Services",
                footer="Thank you for using CSC Campus Stores shipping services.",
                metadata={**metadata, "organizationName": organization or ""},
                custom_fields=[
                    {"name": "Tracking Number", "value": tracking_number[:CUSTOM_FIELD_MAX]},
                    {"name": "Ship To", "value": destination_summary[:CUSTOM_FIELD_MAX]},
                ],
                **self._opts(),
            )
            stripe.InvoiceItem.create(
                customer=customer.id,
                invoice=invoice.id,
                amount=to_cents(amount),
                currency=CURRENCY,
                description=f"Purolator Ground Shipping - {tracking_number} ({tracking_url(tracking_number)})",
                metadata={**metadata, "destination": destination_summary},
                **self._opts(),
            )
            finalized = stripe.Invoice.finalize_invoice(invoice.id, **self._opts())
        except stripe.StripeError as e:
            raise InvoiceError(f"Stripe invoice for shipment {shipment_id} failed: {e.user_message or e}") from e

        logger.info("Stripe invoice created", extra={
            "shipment_id": shipment_id,
            "invoice_id": finalized.id,
            "amount": str(amount),
            "mode": self.mode,
        })
        return InvoiceResult(
            invoice_id=finalized.id,
            hosted_url=finalized.hosted_invoice_url,
            pdf_url=finalized.invoice_pdf,
        )

    def send_reminder(self, invoice_id: str) -> None:
        try:
            stripe.Invoice.send_invoice(invoice_id, **self._opts())
        except stripe.StripeError as e:
            raise InvoiceError(f"Reminder for invoice {invoice_id} failed: {e.user_message or e}") from e
        logger.info("Invoice reminder sent", extra={"invoice_id": invoice_id})

    def void_invoice(self, invoice_id: str) -> None:
        try:
            stripe.Invoice.void_invoice(invoice_id, **self._opts())
        except stripe.StripeError as e:
            raise InvoiceError(f"Voiding invoice {invoice_id} failed: {e.user_message or e}") from e
        logger.info("Invoice voided", extra={"invoice_id": invoice_id})

    def get_invoice_status(self, invoice_id: str) -> dict[str, Any]:
        try:
            invoice = stripe.Invoice.retrieve(invoice_id, **self._opts())
        except stripe.StripeError as e:
            raise InvoiceError(f"Fetching invoice {invoice_id} failed: {e.user_message or e}") from e
        return {
            "invoice_id": invoice_id,
            "status": invoice.status,
            "paid": invoice.status == "paid",
            "amount_paid": Decimal(invoice.amount_paid) / 100,
            "amount_due": Decimal(invoice.amount_due) / 100,
        }

    def construct_event(self, payload: bytes | str, signature: Optional[str]) -> dict[str, Any]:
        """
        Verify the Stripe-Signature header and only then decode the event.

        Raises:
            WebhookAuthError: Missing header, bad signature or stale timestamp.
        """
        if not signature:
            raise WebhookAuthError("Missing stripe-signature header")
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(
                text, signature, self.settings.webhook_secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookAuthError(f"Webhook signature verification failed: {e}") from e
        return json.loads(text)
