"""
Handler for the shipments microservice (kiosk API).

Routes:
- POST /shipments                Create shipment (estimate, Purolator, label, store, invoice, emails)
- POST /shipments/estimate       Price CSC and institution billing for a destination
- GET  /shipments/{id}           Stored shipment
- PUT  /shipments/{id}/status    Forward-only status change
- GET  /shipments/track/{pin}    Purolator tracking events
"""

import json

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.parser import parse
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import ValidationError

from shared.config import ConfigurationError
from shared.database import StoreError
from shared.purolator import CarrierError, CarrierNotFoundError
from shared.responses import body_json, get_method, get_raw_path, http_response
from shipments.schemas import EstimateInput, ShipmentInput, ShipmentStatusUpdate
from shipments.service import ShipmentNotFoundError, ShipmentService

logger = Logger(service="shipments")


def _route_segments(raw_path: str) -> list[str]:
    """Path segments after /shipments, e.g. ['abc', 'status']."""
    parts = [p for p in raw_path.split("/") if p]
    if "shipments" in parts:
        parts = parts[parts.index("shipments") + 1:]
    return parts


@logger.inject_lambda_context
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    method = get_method(event)
    raw_path = get_raw_path(event)
    segments = _route_segments(raw_path)
    logger.info("shipments request", extra={"method": method, "raw_path": raw_path})

    if method == "OPTIONS":
        return http_response(200, {})

    try:
        service = ShipmentService()

        if method == "POST" and segments == ["estimate"]:
            payload = parse(event=body_json(event), model=EstimateInput)
            return http_response(200, service.estimate(payload))

        if method == "POST" and not segments:
            payload = parse(event=body_json(event), model=ShipmentInput)
            result = service.create_shipment(payload)
            return http_response(201, result)

        if method == "GET" and len(segments) == 2 and segments[0] == "track":
            return http_response(200, service.track(segments[1]))

        if method == "GET" and len(segments) == 1:
            return http_response(200, service.get_shipment(segments[0]))

        if method == "PUT" and len(segments) == 2 and segments[1] == "status":
            payload = parse(event=body_json(event), model=ShipmentStatusUpdate)
            return http_response(200, service.update_status(segments[0], payload.status))

        logger.info("route not found", extra={"method": method, "raw_path": raw_path})
        return http_response(404, {"error": "Route not found"})

    except ValidationError as e:
        details = json.loads(e.json(include_url=False))
        logger.warning("Invalid payload", extra={"errors": details})
        return http_response(400, {"error": "Invalid data", "details": details})
    except ValueError as e:
        logger.warning("Validation: %s", e)
        return http_response(400, {"error": "Invalid data", "details": str(e)})
    except (ShipmentNotFoundError, CarrierNotFoundError) as e:
        return http_response(404, {"error": str(e)})
    except CarrierError as e:
        logger.warning(f"Purolator API: {e!s}")
        return http_response(502, {"error": str(e)})
    except StoreError as e:
        logger.exception("Shipment store failure")
        return http_response(500, {"error": "Failed to save shipment", "details": str(e)})
    except ConfigurationError as e:
        logger.exception("Configuration error")
        return http_response(500, {"error": str(e)})
    except Exception as e:
        logger.exception("Unhandled error")
        return http_response(500, {"error": str(e)})
