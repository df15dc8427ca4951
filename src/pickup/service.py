"""Carrier pickup at the conference venue: validate the window, then book it."""

from typing import Any, Optional

from aws_lambda_powertools import Logger

from pickup.schemas import PickupInput
from shared.config import Settings, get_settings
from shared.purolator import Party, PickupRequest, PurolatorClient

logger = Logger(service="pickup")


class PickupService:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.carrier = PurolatorClient(self.settings.purolator)

    def _pickup_address(self) -> Party:
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

    def schedule(self, payload: PickupInput) -> dict[str, Any]:
        """
        ValidatePickUp, then SchedulePickUp unless validate_only.

        Scheduling is never retried; a timeout leaves the booking state unknown
        and the operator must check the Purolator portal before trying again.
        """
        request = PickupRequest(
            billing_account=payload.billing_account,
            pickup_date=payload.pickup_date.isoformat(),
            ready_time=payload.ready_time,
            until_time=payload.until_time,
            total_pieces=payload.total_pieces,
            total_weight=payload.total_weight,
            location=payload.pickup_location,
            instructions=payload.additional_instructions,
            loading_dock_available=payload.loading_dock_available,
        )
        address = self._pickup_address()
        logger.info("Pickup requested", extra={
            "pickup_date": request.pickup_date,
            "window": f"{request.ready_time}-{request.until_time}",
            "pieces": request.total_pieces,
            "validate_only": payload.validate_only,
        })

        validation = self.carrier.validate_pickup(request, address)
        if payload.validate_only:
            return {"success": True, "validation_result": validation}

        result = self.carrier.schedule_pickup(request, address)
        logger.info("Pickup scheduled", extra={"confirmation_number": result.confirmation_number})
        return {"success": True, "confirmation_number": result.confirmation_number}
