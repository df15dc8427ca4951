"""DTOs and validation for the shipments microservice."""

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from shared.address import normalize_postal_code, normalize_province

STANDARD_BOX = {"length": Decimal("24"), "width": Decimal("12"), "height": Decimal("12")}
ERROR_TRACKING_PREFIX = "ERROR-"

BillingType = Literal["csc", "institution"]
PaymentStatus = Literal["none", "pending", "paid", "payment_failed", "voided", "uncollectible"]
ShipmentStatus = Literal["pending", "printed", "picked_up", "delivered"]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _billing_account(v: str) -> str:
    digits = str(v or "").strip()
    if not re.fullmatch(r"\d{8}", digits):
        raise ValueError("Billing account must be exactly 8 digits")
    return digits


class ShipmentInput(BaseModel):
    """Wizard submission: recipient, destination, box and billing."""

    contact_id: Optional[str] = None
    organization_id: Optional[str] = None
    contact_name: str = Field(..., min_length=1)
    contact_email: str
    contact_phone: Optional[str] = None
    organization_name: str = ""

    destination_street: str = Field(..., min_length=1)
    destination_city: str = Field(..., min_length=1)
    destination_province: str
    destination_postal_code: str
    destination_country: Literal["CA"] = "CA"

    box_type: Literal["standard", "custom"] = "standard"
    box_length: Decimal = Field(default=STANDARD_BOX["length"], gt=0, description="Inches")
    box_width: Decimal = Field(default=STANDARD_BOX["width"], gt=0, description="Inches")
    box_height: Decimal = Field(default=STANDARD_BOX["height"], gt=0, description="Inches")
    weight: Decimal = Field(..., gt=0, description="Pounds")

    billing_type: BillingType
    billing_account: str
    notes: Optional[str] = None

    @field_validator("contact_name", "destination_street", "destination_city")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Field must not be blank")
        return v

    @field_validator("contact_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if not _EMAIL_RE.match(v):
            raise ValueError("Invalid email address")
        return v

    @field_validator("destination_province", mode="before")
    @classmethod
    def validate_province(cls, v: str) -> str:
        return normalize_province(v)

    @field_validator("destination_postal_code", mode="before")
    @classmethod
    def validate_postal_code(cls, v: str) -> str:
        return normalize_postal_code(v)

    @field_validator("billing_account", mode="before")
    @classmethod
    def validate_billing_account(cls, v: str) -> str:
        return _billing_account(v)

    @model_validator(mode="after")
    def standard_box_dimensions(self):
        """A standard box always ships with the standard dimensions."""
        if self.box_type == "standard":
            self.box_length = STANDARD_BOX["length"]
            self.box_width = STANDARD_BOX["width"]
            self.box_height = STANDARD_BOX["height"]
        return self


class EstimateInput(BaseModel):
    """Price both billing options before the operator confirms."""

    destination_city: str = Field(..., min_length=1)
    destination_province: str
    destination_postal_code: str
    weight: Decimal = Field(..., gt=0)
    csc_account: Optional[str] = None
    institution_account: Optional[str] = None

    @field_validator("destination_province", mode="before")
    @classmethod
    def validate_province(cls, v: str) -> str:
        return normalize_province(v)

    @field_validator("destination_postal_code", mode="before")
    @classmethod
    def validate_postal_code(cls, v: str) -> str:
        return normalize_postal_code(v)

    @field_validator("csc_account", "institution_account", mode="before")
    @classmethod
    def validate_accounts(cls, v: Optional[str]) -> Optional[str]:
        if v is None or str(v).strip() == "":
            return None
        return _billing_account(v)


class ShipmentStatusUpdate(BaseModel):
    status: ShipmentStatus


class Shipment(BaseModel):
    """Row of the shipments table."""

    id: str
    tracking_number: str = Field(..., min_length=1)
    contact_id: Optional[str] = None
    organization_id: Optional[str] = None
    contact_name: str = Field(..., min_length=1)
    contact_email: str = Field(..., min_length=1)
    contact_phone: Optional[str] = None
    organization_name: str = ""

    destination_street: str = Field(..., min_length=1)
    destination_street_number: str
    destination_street_name: str
    destination_city: str = Field(..., min_length=1)
    destination_province: str = Field(..., min_length=2, max_length=2)
    destination_postal_code: str = Field(..., min_length=6, max_length=6)
    destination_country: str = "CA"

    box_type: Literal["standard", "custom"]
    box_length: Decimal
    box_width: Decimal
    box_height: Decimal
    weight: Decimal

    billing_type: BillingType
    billing_account: str

    estimated_cost: Optional[Decimal] = None
    label_base64: Optional[str] = None
    purolator_response: Any = None

    stripe_invoice_id: Optional[str] = None
    stripe_invoice_url: Optional[str] = None
    stripe_invoice_pdf_url: Optional[str] = None
    payment_status: PaymentStatus = "none"
    payment_event_at: Optional[datetime] = None

    status: ShipmentStatus = "pending"
    notes: Optional[str] = None
    created_by: str = "conference-station"
    created_at: datetime
    updated_at: datetime
    paid_at: Optional[datetime] = None

    @property
    def is_carrier_failure(self) -> bool:
        return self.tracking_number.startswith(ERROR_TRACKING_PREFIX)

    @model_validator(mode="after")
    def check_invariants(self):
        if self.payment_status != "none" and self.billing_type != "csc":
            raise ValueError("payment_status must be 'none' unless billing_type is 'csc'")
        if self.is_carrier_failure and self.label_base64:
            raise ValueError("A carrier-failure shipment cannot carry a label")
        return self
