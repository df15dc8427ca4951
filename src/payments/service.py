"""Business logic for payments: Stripe webhook projection and invoice admin actions."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from aws_lambda_powertools import Logger

from payments.repository import PaymentRepository
from payments.schemas import StripeEvent
from shared.config import Settings, get_settings
from shared.stripe_billing import StripeInvoiceClient, apply_webhook_event

logger = Logger(service="payments")

ERROR_TRACKING_PREFIX = "ERROR-"


class ShipmentNotFoundError(LookupError):
    pass


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _is_stale(event_at: datetime, payment_status: str, last_event_at: datetime, shipment: dict[str, Any]) -> bool:
    """
    Older events never apply. Stripe timestamps are whole seconds, so an event
    in the same second as the last applied one may not move a row off paid.
    """
    if event_at < last_event_at:
        return True
    return event_at == last_event_at and shipment.get("payment_status") == "paid" and payment_status != "paid"


class PaymentWebhookService:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.repo = PaymentRepository()
        self.stripe = StripeInvoiceClient(self.settings.stripe)

    def handle(self, payload: bytes | str, signature: Optional[str]) -> dict[str, Any]:
        """
        Verify, decode and apply one Stripe event.

        Unknown event kinds, invoices without a shipmentId, unknown shipments
        and events older than the last applied one are acknowledged and ignored.

        Raises:
            WebhookAuthError: Signature missing or invalid; nothing is written.
            StoreError: The shipment could not be read or updated.
        """
        event = StripeEvent.model_validate(self.stripe.construct_event(payload, signature))
        logger.info("Stripe event received", extra={"event_id": event.id, "event_type": event.type})

        update = apply_webhook_event(event.model_dump())
        if update is None:
            return {"received": True}

        shipment = self.repo.get_shipment(update.shipment_id)
        if not shipment:
            logger.warning("Stripe event for unknown shipment", extra={
                "event_id": event.id,
                "shipment_id": update.shipment_id,
            })
            return {"received": True}
        if shipment.get("billing_type") != "csc":
            logger.warning("Stripe event for non-CSC shipment ignored", extra={"shipment_id": update.shipment_id})
            return {"received": True}

        last_event_at = _parse_timestamp(shipment.get("payment_event_at"))
        if last_event_at and _is_stale(update.event_at, update.payment_status, last_event_at, shipment):
            logger.info("Stale Stripe event ignored", extra={
                "event_id": event.id,
                "shipment_id": update.shipment_id,
                "event_at": update.event_at.isoformat(),
                "last_event_at": last_event_at.isoformat(),
            })
            return {"received": True}

        fields: dict[str, Any] = {
            "payment_status": update.payment_status,
            "payment_event_at": update.event_at.isoformat(),
        }
        if update.paid_at:
            fields["paid_at"] = update.paid_at.isoformat()
        if update.invoice_id and not shipment.get("stripe_invoice_id"):
            fields["stripe_invoice_id"] = update.invoice_id

        self.repo.update_payment_fields(update.shipment_id, fields)
        logger.info("Shipment payment status updated", extra={
            "shipment_id": update.shipment_id,
            "payment_status": update.payment_status,
            "event_id": event.id,
        })
        return {"received": True}


class InvoiceAdminService:
    """Office actions on the invoice of an existing shipment."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.repo = PaymentRepository()
        self.stripe = StripeInvoiceClient(self.settings.stripe)

    def mode(self) -> dict[str, Any]:
        return {
            "mode": self.settings.stripe.mode,
            "live": self.settings.stripe.mode == "live",
            "publishable_key": self.settings.stripe.publishable_key,
        }

    def _get_shipment(self, shipment_id: str) -> dict[str, Any]:
        shipment = self.repo.get_shipment(shipment_id)
        if not shipment:
            raise ShipmentNotFoundError(f"Shipment {shipment_id} not found")
        return shipment

    def _require_invoice(self, shipment: dict[str, Any]) -> str:
        invoice_id = shipment.get("stripe_invoice_id")
        if not invoice_id:
            raise ValueError(f"Shipment {shipment['id']} has no invoice")
        return invoice_id

    def create_invoice(self, shipment_id: str, due_days: int = 30) -> dict[str, Any]:
        """
        Invoice a shipment that was recorded without one (e.g. Stripe was down).

        Raises:
            ValueError: Not CSC-billed, already invoiced, no positive cost, or
                the shipment never reached Purolator.
        """
        shipment = self._get_shipment(shipment_id)
        if shipment.get("billing_type") != "csc":
            raise ValueError("Only CSC-billed shipments are invoiced")
        if shipment.get("stripe_invoice_id"):
            raise ValueError(f"Shipment already has invoice {shipment['stripe_invoice_id']}")
        tracking_number = shipment.get("tracking_number") or ""
        if tracking_number.startswith(ERROR_TRACKING_PREFIX):
            raise ValueError("Shipment was not created with Purolator")
        cost = Decimal(str(shipment.get("estimated_cost") or 0))
        if cost <= 0:
            raise ValueError("Shipment has no positive estimated cost")

        result = self.stripe.create_invoice_for_shipment(
            shipment_id=shipment_id,
            tracking_number=tracking_number,
            contact={"name": shipment.get("contact_name") or "", "email": shipment.get("contact_email") or ""},
            organization=shipment.get("organization_name") or "",
            amount=cost,
            destination_summary=(
                f"{shipment.get('destination_city')}, {shipment.get('destination_province')} "
                f"{shipment.get('destination_postal_code')}"
            ),
            due_days=due_days,
        )
        fields = {
            "stripe_invoice_id": result.invoice_id,
            "stripe_invoice_url": result.hosted_url,
            "stripe_invoice_pdf_url": result.pdf_url,
        }
        updated = self.repo.update_payment_fields(
            shipment_id, {**fields, "payment_status": "pending"}, only_if={"payment_status": "none"}
        )
        if updated is None:
            updated = self.repo.update_payment_fields(shipment_id, fields)
        logger.info("Invoice created from admin", extra={"shipment_id": shipment_id, "invoice_id": result.invoice_id})
        return {
            "shipment_id": shipment_id,
            "invoice_id": result.invoice_id,
            "invoice_url": result.hosted_url,
            "invoice_pdf_url": result.pdf_url,
            "payment_status": (updated or {}).get("payment_status", "pending"),
        }

    def get_invoice_status(self, shipment_id: str) -> dict[str, Any]:
        shipment = self._get_shipment(shipment_id)
        status = self.stripe.get_invoice_status(self._require_invoice(shipment))
        return {**status, "shipment_id": shipment_id, "payment_status": shipment.get("payment_status")}

    def send_reminder(self, shipment_id: str) -> dict[str, Any]:
        shipment = self._get_shipment(shipment_id)
        if shipment.get("payment_status") == "paid":
            raise ValueError("Invoice is already paid")
        invoice_id = self._require_invoice(shipment)
        self.stripe.send_reminder(invoice_id)
        return {"shipment_id": shipment_id, "invoice_id": invoice_id, "reminder_sent": True}

    def void_invoice(self, shipment_id: str) -> dict[str, Any]:
        """Voids in Stripe; payment_status follows when invoice.voided arrives."""
        shipment = self._get_shipment(shipment_id)
        if shipment.get("payment_status") == "paid":
            raise ValueError("A paid invoice cannot be voided")
        invoice_id = self._require_invoice(shipment)
        self.stripe.void_invoice(invoice_id)
        return {"shipment_id": shipment_id, "invoice_id": invoice_id, "voided": True}
