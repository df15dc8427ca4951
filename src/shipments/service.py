"""
Business logic for shipments: the kiosk's create-shipment orchestration.

create_shipment always records the operator's submission. When Purolator
refuses or is unreachable the row is stored with an ERROR-<ms> tracking
number so the CSC office can redo the shipment from the portal; invoice and
email failures never fail the request.
"""

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from aws_lambda_powertools import Logger

from shared.address import parse_street_address
from shared.config import Settings, get_settings
from shared.database import StoreError
from shared.email import NotificationError, Notifier
from shared.purolator import (
    CarrierError,
    Package,
    Party,
    PurolatorClient,
    ShipmentRequest,
)
from shared.stripe_billing import InvoiceError, StripeInvoiceClient
from shipments.repository import ShipmentRepository
from shipments.schemas import (
    ERROR_TRACKING_PREFIX,
    EstimateInput,
    Shipment,
    ShipmentInput,
)

logger = Logger(service="shipments")

# Fallback pricing when no carrier estimate is available
BASE_RATE = Decimal("15.00")
WEIGHT_RATE = Decimal("2.50")
HOME_PROVINCE = "ON"
OUT_OF_PROVINCE_FACTOR = Decimal("1.2")

CREATED_BY = "conference-station"
STATUS_ORDER = ("pending", "printed", "picked_up", "delivered")
CENTS = Decimal("0.01")


class ShipmentNotFoundError(LookupError):
    pass


def calculate_fallback_cost(weight: Decimal, province: str) -> Decimal:
    """15 + weight * 2.5, times 1.2 outside Ontario."""
    factor = Decimal("1.0") if province == HOME_PROVINCE else OUT_OF_PROVINCE_FACTOR
    cost = BASE_RATE + Decimal(str(weight)) * WEIGHT_RATE * factor
    return cost.quantize(CENTS, rounding=ROUND_HALF_UP)


def error_tracking_number() -> str:
    return f"{ERROR_TRACKING_PREFIX}{int(time.time() * 1000)}"


class ShipmentService:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.repo = ShipmentRepository()
        self.carrier = PurolatorClient(self.settings.purolator)
        self.invoices = StripeInvoiceClient(self.settings.stripe)
        self.notifier = Notifier(self.settings.notifier)

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _sender(self) -> Party:
        sender = self.settings.purolator.sender
        return Party(
            name=sender.name,
            company=sender.company,
            street=sender.address.street,
            city=sender.address.city,
            province=sender.address.province,
            postal_code=sender.address.postal_code,
            country=sender.address.country,
            phone=sender.phone,
        )

    @staticmethod
    def _receiver(payload: ShipmentInput) -> Party:
        return Party(
            name=payload.contact_name,
            company=payload.organization_name or None,
            street=payload.destination_street,
            city=payload.destination_city,
            province=payload.destination_province,
            postal_code=payload.destination_postal_code,
            country=payload.destination_country,
            phone=payload.contact_phone,
        )

    def _shipment_request(self, payload: ShipmentInput) -> ShipmentRequest:
        return ShipmentRequest(
            sender=self._sender(),
            receiver=self._receiver(payload),
            package=Package(
                length=payload.box_length,
                width=payload.box_width,
                height=payload.box_height,
                weight=payload.weight,
            ),
            billing_account=payload.billing_account,
            sender_account=self.settings.purolator.billing_account,
            reference=f"CSC-{int(time.time() * 1000)}",
        )

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    def _quote(self, receiver: Party, billing_account: str, weight: Decimal) -> tuple[Decimal, bool]:
        """Returns (cost, from_carrier)."""
        sender_postal_code = self.settings.purolator.sender.address.postal_code
        try:
            cost = self.carrier.quick_estimate(sender_postal_code, receiver, billing_account, weight)
        except CarrierError as e:
            logger.warning("Purolator estimate failed, using fallback pricing", extra={"error": str(e)})
            cost = None
        if cost is None or cost <= 0:
            return calculate_fallback_cost(weight, receiver.province), False
        return Decimal(cost).quantize(CENTS, rounding=ROUND_HALF_UP), True

    def estimate(self, payload: EstimateInput) -> dict[str, Any]:
        """Quote both billing options for the same destination and weight."""
        receiver = Party(
            name="Recipient",
            street="",
            city=payload.destination_city,
            province=payload.destination_province,
            postal_code=payload.destination_postal_code,
        )
        csc_account = payload.csc_account or self.settings.purolator.billing_account
        csc_cost, csc_live = self._quote(receiver, csc_account, payload.weight)
        result: dict[str, Any] = {
            "csc_cost": csc_cost,
            "csc_estimated": not csc_live,
            "institution_cost": None,
            "institution_estimated": None,
        }
        if payload.institution_account:
            cost, live = self._quote(receiver, payload.institution_account, payload.weight)
            result["institution_cost"] = cost
            result["institution_estimated"] = not live
        return result

    # ------------------------------------------------------------------
    # Create shipment
    # ------------------------------------------------------------------

    def _create_with_carrier(self, request: ShipmentRequest) -> tuple[str, dict[str, Any], Optional[str]]:
        """Returns (tracking_number, purolator_response, label_base64)."""
        try:
            if not self.settings.purolator.skip_validation:
                self.carrier.validate_shipment(request)
            result = self.carrier.create_shipment(request)
        except CarrierError as e:
            tracking_number = error_tracking_number()
            logger.error("Purolator shipment creation failed", extra={
                "reference": request.reference,
                "tracking_number": tracking_number,
                "error": str(e),
                "status_code": e.status_code,
            })
            return tracking_number, {
                "error": True,
                "message": str(e),
                "raw_response": e.raw_response,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }, None

        response = {
            "shipment_pin": result.shipment_pin,
            "piece_pins": result.piece_pins,
            "raw_response": result.raw_response,
        }
        try:
            label = self.carrier.get_documents(result.shipment_pin).label_base64
        except CarrierError as e:
            logger.warning("Label retrieval failed; shipment kept without label", extra={
                "tracking_number": result.shipment_pin,
                "error": str(e),
            })
            label = None
        return result.shipment_pin, response, label

    def create_shipment(self, payload: ShipmentInput) -> dict[str, Any]:
        """
        Estimate, create with Purolator, fetch the label, persist, then run
        invoice and notifications.

        Raises:
            StoreError: The row could not be written; nothing else happens.
        """
        shipment_id = str(uuid.uuid4())
        request = self._shipment_request(payload)
        estimated_cost, _ = self._quote(request.receiver, payload.billing_account, payload.weight)

        tracking_number, purolator_response, label = self._create_with_carrier(request)

        street_number, street_name = parse_street_address(payload.destination_street)
        now = datetime.now(timezone.utc)
        shipment = Shipment(
            id=shipment_id,
            tracking_number=tracking_number,
            contact_id=payload.contact_id,
            organization_id=payload.organization_id,
            contact_name=payload.contact_name,
            contact_email=payload.contact_email,
            contact_phone=payload.contact_phone,
            organization_name=payload.organization_name,
            destination_street=payload.destination_street,
            destination_street_number=street_number,
            destination_street_name=street_name,
            destination_city=payload.destination_city,
            destination_province=payload.destination_province,
            destination_postal_code=payload.destination_postal_code,
            destination_country=payload.destination_country,
            box_type=payload.box_type,
            box_length=payload.box_length,
            box_width=payload.box_width,
            box_height=payload.box_height,
            weight=payload.weight,
            billing_type=payload.billing_type,
            billing_account=payload.billing_account,
            estimated_cost=estimated_cost,
            label_base64=label,
            purolator_response=purolator_response,
            notes=payload.notes,
            created_by=CREATED_BY,
            created_at=now,
            updated_at=now,
        )

        row = self.repo.insert_shipment(shipment.model_dump(mode="json"))
        logger.info("Shipment recorded", extra={
            "shipment_id": shipment_id,
            "tracking_number": tracking_number,
            "billing_type": payload.billing_type,
            "has_label": label is not None,
        })

        row.update(self._run_side_effects(shipment))
        return row

    def _run_side_effects(self, shipment: Shipment) -> dict[str, Any]:
        """Invoice and the two emails run concurrently; all are awaited before returning."""
        with ThreadPoolExecutor(max_workers=3) as pool:
            invoice = pool.submit(self._invoice, shipment)
            emails = [
                pool.submit(self._send_tracking_email, shipment),
                pool.submit(self._send_office_notification, shipment),
            ]
        for future in [invoice, *emails]:
            error = future.exception()
            if error is not None:
                logger.error("Post-create step failed", extra={"shipment_id": shipment.id, "error": repr(error)})
        return invoice.result() if invoice.exception() is None else {}

    def _invoice(self, shipment: Shipment) -> dict[str, Any]:
        if shipment.billing_type != "csc":
            return {}
        if shipment.is_carrier_failure:
            logger.info("Skipping invoice for carrier-failure shipment", extra={"shipment_id": shipment.id})
            return {}
        if not shipment.estimated_cost or shipment.estimated_cost <= 0:
            return {}

        try:
            result = self.invoices.create_invoice_for_shipment(
                shipment_id=shipment.id,
                tracking_number=shipment.tracking_number,
                contact={"name": shipment.contact_name, "email": shipment.contact_email},
                organization=shipment.organization_name,
                amount=shipment.estimated_cost,
                destination_summary=(
                    f"{shipment.destination_city}, {shipment.destination_province} "
                    f"{shipment.destination_postal_code}"
                ),
            )
        except InvoiceError as e:
            logger.error("Invoice creation failed", extra={"shipment_id": shipment.id, "error": str(e)})
            return {}

        fields = {
            "stripe_invoice_id": result.invoice_id,
            "stripe_invoice_url": result.hosted_url,
            "stripe_invoice_pdf_url": result.pdf_url,
        }
        try:
            # A webhook may already have moved payment_status past "none"
            updated = self.repo.update_shipment_fields(
                shipment.id, {**fields, "payment_status": "pending"}, only_if={"payment_status": "none"}
            )
            if updated is None:
                updated = self.repo.update_shipment_fields(shipment.id, fields)
        except StoreError as e:
            logger.error("Invoice created but not linked to shipment", extra={
                "shipment_id": shipment.id,
                "invoice_id": result.invoice_id,
                "error": str(e),
            })
            return {}
        return {k: (updated or {}).get(k, v) for k, v in {**fields, "payment_status": "pending"}.items()}

    def _send_tracking_email(self, shipment: Shipment) -> None:
        if shipment.is_carrier_failure:
            return
        try:
            self.notifier.send_tracking_email(
                recipient_name=shipment.contact_name,
                recipient_email=shipment.contact_email,
                tracking_number=shipment.tracking_number,
                organization_name=shipment.organization_name,
            )
        except NotificationError as e:
            logger.warning("Tracking email failed", extra={"shipment_id": shipment.id, "error": str(e)})

    def _send_office_notification(self, shipment: Shipment) -> None:
        try:
            self.notifier.send_shipment_notification(
                tracking_number=shipment.tracking_number,
                contact_name=shipment.contact_name,
                contact_email=shipment.contact_email,
                organization_name=shipment.organization_name,
                destination_address=(
                    f"{shipment.destination_street}, {shipment.destination_city}, "
                    f"{shipment.destination_province} {shipment.destination_postal_code}"
                ),
                estimated_cost=shipment.estimated_cost,
                billing_type=shipment.billing_type,
                billing_account=shipment.billing_account,
                has_label=shipment.label_base64 is not None,
            )
        except NotificationError as e:
            logger.warning("Internal notification failed", extra={"shipment_id": shipment.id, "error": str(e)})

    # ------------------------------------------------------------------
    # Reads and status
    # ------------------------------------------------------------------

    def get_shipment(self, shipment_id: str) -> dict[str, Any]:
        shipment = self.repo.get_shipment_by_id(shipment_id)
        if not shipment:
            raise ShipmentNotFoundError(f"Shipment {shipment_id} not found")
        return shipment

    def track(self, tracking_number: str) -> dict[str, Any]:
        """Carrier tracking events plus the stored shipment, when we have one."""
        if tracking_number.startswith(ERROR_TRACKING_PREFIX):
            raise ValueError("Shipment was not created with Purolator; no tracking available")
        tracking = self.carrier.track_by_pin(tracking_number)
        shipment = self.repo.get_shipment_by_tracking_number(tracking_number)
        if shipment:
            tracking["shipment_id"] = shipment["id"]
            tracking["status"] = shipment.get("status")
        return tracking

    def update_status(self, shipment_id: str, status: str) -> dict[str, Any]:
        """Forward-only: pending -> printed -> picked_up -> delivered."""
        shipment = self.get_shipment(shipment_id)
        current = shipment.get("status") or "pending"
        if STATUS_ORDER.index(status) <= STATUS_ORDER.index(current):
            raise ValueError(f"Cannot move shipment from '{current}' to '{status}'")
        updated = self.repo.update_shipment_fields(shipment_id, {"status": status})
        if updated is None:
            raise ShipmentNotFoundError(f"Shipment {shipment_id} not found")
        logger.info("Shipment status updated", extra={"shipment_id": shipment_id, "from": current, "to": status})
        return updated
