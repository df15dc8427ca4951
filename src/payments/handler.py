"""
Handler for the payments microservice.

Routes:
- POST /payments/webhook                       Public: Stripe events (signature-verified)
- GET  /payments/mode                          Active Stripe mode
- POST /payments/invoices/{shipment_id}        Create invoice for an existing shipment
- GET  /payments/invoices/{shipment_id}        Invoice status from Stripe
- POST /payments/invoices/{shipment_id}/remind Re-send the invoice email
- POST /payments/invoices/{shipment_id}/void   Void the invoice
"""

import base64
import json

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.parser import parse
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import ValidationError

from payments.schemas import CreateInvoiceInput
from payments.service import InvoiceAdminService, PaymentWebhookService, ShipmentNotFoundError
from shared.config import ConfigurationError
from shared.database import StoreError
from shared.responses import body_json, get_method, get_raw_path, http_response
from shared.stripe_billing import InvoiceError, WebhookAuthError

logger = Logger(service="payments")


def _route_segments(raw_path: str) -> list[str]:
    parts = [p for p in raw_path.split("/") if p]
    if "payments" in parts:
        parts = parts[parts.index("payments") + 1:]
    return parts


def _header(event: dict, name: str) -> str | None:
    for key, value in (event.get("headers") or {}).items():
        if key.lower() == name:
            return value
    return None


def _raw_body(event: dict) -> bytes:
    """The exact bytes Stripe signed; API Gateway may base64-encode them."""
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        return base64.b64decode(body)
    return body.encode("utf-8") if isinstance(body, str) else json.dumps(body).encode("utf-8")


def _handle_webhook(event: dict) -> dict:
    try:
        result = PaymentWebhookService().handle(_raw_body(event), _header(event, "stripe-signature"))
        return http_response(200, result)
    except WebhookAuthError as e:
        logger.warning("Webhook rejected: %s", e)
        return http_response(400, {"error": "Webhook signature verification failed"})
    except ValidationError as e:
        logger.warning("Malformed Stripe event", extra={"errors": json.loads(e.json(include_url=False))})
        return http_response(400, {"error": "Malformed event"})
    except Exception as e:
        logger.exception("Webhook processing failed")
        return http_response(500, {"error": "Webhook handler failed", "details": str(e)})


@logger.inject_lambda_context
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    method = get_method(event)
    raw_path = get_raw_path(event)
    segments = _route_segments(raw_path)
    logger.info("payments request", extra={"method": method, "raw_path": raw_path})

    if method == "OPTIONS":
        return http_response(200, {})

    if method == "POST" and segments == ["webhook"]:
        return _handle_webhook(event)

    try:
        service = InvoiceAdminService()

        if method == "GET" and segments == ["mode"]:
            return http_response(200, service.mode())

        if len(segments) >= 2 and segments[0] == "invoices":
            shipment_id = segments[1]
            action = segments[2] if len(segments) > 2 else None

            if method == "POST" and action is None:
                payload = parse(event=body_json(event), model=CreateInvoiceInput)
                return http_response(201, service.create_invoice(shipment_id, payload.due_days))
            if method == "GET" and action is None:
                return http_response(200, service.get_invoice_status(shipment_id))
            if method == "POST" and action == "remind":
                return http_response(200, service.send_reminder(shipment_id))
            if method == "POST" and action == "void":
                return http_response(200, service.void_invoice(shipment_id))

        logger.info("route not found", extra={"method": method, "raw_path": raw_path})
        return http_response(404, {"error": "Route not found"})

    except ValidationError as e:
        details = json.loads(e.json(include_url=False))
        return http_response(400, {"error": "Invalid data", "details": details})
    except ValueError as e:
        logger.warning("Invoice guard: %s", e)
        return http_response(400, {"error": str(e)})
    except ShipmentNotFoundError as e:
        return http_response(404, {"error": str(e)})
    except InvoiceError as e:
        logger.warning(f"Stripe API: {e!s}")
        return http_response(502, {"error": str(e)})
    except (StoreError, ConfigurationError) as e:
        logger.exception("Payments failure")
        return http_response(500, {"error": str(e)})
    except Exception as e:
        logger.exception("Unhandled error")
        return http_response(500, {"error": str(e)})
