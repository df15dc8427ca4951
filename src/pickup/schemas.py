import re
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class PickupInput(BaseModel):
    billing_account: str
    pickup_date: date = Field(..., description="YYYY-MM-DD")
    ready_time: str = Field(..., description="HH:MM")
    until_time: str = Field(..., description="HH:MM")
    total_pieces: int = Field(..., gt=0)
    total_weight: Decimal = Field(..., gt=0, description="Pounds")
    pickup_location: str = "Reception"
    additional_instructions: str = ""
    loading_dock_available: bool = False
    validate_only: bool = False

    @field_validator("billing_account")
    @classmethod
    def validate_billing_account(cls, v: str) -> str:
        v = v.strip()
        if not re.fullmatch(r"\d{8}", v):
            raise ValueError("Billing account must be exactly 8 digits")
        return v

    @field_validator("ready_time", "until_time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        v = v.strip()
        if not _TIME_RE.match(v):
            raise ValueError("Time must be HH:MM (24h)")
        return v

    @model_validator(mode="after")
    def window_is_ordered(self):
        if self.until_time <= self.ready_time:
            raise ValueError("until_time must be later than ready_time")
        return self
