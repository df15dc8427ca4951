from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class StripeEvent(BaseModel):
    """Envelope of a verified Stripe event; only the fields we route on are typed."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    type: str
    created: Optional[int] = None
    livemode: Optional[bool] = None
    data: dict[str, Any] = Field(default_factory=dict)


class CreateInvoiceInput(BaseModel):
    due_days: int = Field(default=30, ge=1, le=90, description="Days until the invoice is due")
