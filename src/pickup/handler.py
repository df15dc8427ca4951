"""
Handler for the pickup microservice.

Routes:
- POST /pickup  Validate (validate_only=true) or schedule a Purolator pickup at the venue
"""

import json

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.parser import parse
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import ValidationError

from pickup.schemas import PickupInput
from pickup.service import PickupService
from shared.purolator import CarrierError
from shared.responses import body_json, get_method, http_response

logger = Logger(service="pickup")


@logger.inject_lambda_context
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    method = get_method(event)

    if method == "OPTIONS":
        return http_response(200, {})
    if method != "POST":
        return http_response(405, {"error": "Method not allowed"})

    try:
        payload = parse(event=body_json(event), model=PickupInput)
        result = PickupService().schedule(payload)
        return http_response(200, result)
    except ValidationError as e:
        details = json.loads(e.json(include_url=False))
        logger.warning("Invalid pickup payload", extra={"errors": details})
        return http_response(400, {"success": False, "error": "Invalid data", "details": details})
    except CarrierError as e:
        logger.warning("Purolator pickup failed", extra={"error": str(e), "raw_response": e.raw_response})
        return http_response(502, {"success": False, "error": str(e)})
    except Exception as e:
        logger.exception("Pickup scheduling error")
        return http_response(500, {"success": False, "error": str(e)})
