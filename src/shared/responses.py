import json
from decimal import Decimal
from datetime import datetime, date


class DecimalEncoder(json.JSONEncoder):
    """
    JSON encoder for shipment payloads.

    Decimal amounts are emitted as strings with their exact digits ("40.00"),
    datetime/date as ISO 8601.
    """
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        elif isinstance(obj, (datetime, date)):
            return obj.isoformat()
        return super().default(obj)


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, Stripe-Signature",
}


def http_response(status_code: int, body: dict) -> dict:
    headers = {"Content-Type": "application/json", **CORS_HEADERS}
    return {
        "statusCode": status_code,
        "headers": headers,
        "body": json.dumps(body, cls=DecimalEncoder)
    }


def get_method(event: dict) -> str | None:
    """Payload format 2.0 (http.method) with 1.0 (httpMethod) fallback."""
    ctx = event.get("requestContext") or {}
    return ctx.get("http", {}).get("method") or ctx.get("httpMethod") or event.get("httpMethod")


def get_raw_path(event: dict) -> str:
    return event.get("rawPath", "") or event.get("path", "") or ""


def body_json(event: dict) -> dict:
    body = event.get("body")
    if body is None:
        return {}
    if isinstance(body, str):
        try:
            return json.loads(body) if body else {}
        except json.JSONDecodeError:
            return {}
    return body if isinstance(body, dict) else {}
