"""
Purolator E-Ship web services client: estimate, validate, ship, documents,
tracking and pickup.

The carrier rejects body elements in a default namespace, so requests are
rendered as literal XML where every element carries an explicit v1:/v2:
prefix. Responses are parsed by local name, ignoring namespaces.
"""

import base64
import http.client
import ssl
import urllib.error
import urllib.request
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from xml.sax.saxutils import escape

from aws_lambda_powertools import Logger

from shared.address import (
    normalize_postal_code,
    normalize_province,
    parse_phone_number,
    parse_street_address,
)
from shared.config import PurolatorSettings

logger = Logger(service="purolator")

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
DATATYPES_NS = {
    "v1": "http://purolator.com/pws/datatypes/v1",
    "v2": "http://purolator.com/pws/datatypes/v2",
}
SERVICE_VERSION = {"v1": "1.2", "v2": "2.2"}
SOAP_ACTION = "http://purolator.com/pws/service/{version}/{operation}"

_DEV_BASE = "https://devwebservices.purolator.com/EWS"
_PROD_BASE = "https://webservices.purolator.com/EWS"
_PATHS = {
    "estimating": "/V2/Estimating/EstimatingService.asmx",
    "shipping": "/V2/Shipping/ShippingService.asmx",
    "documents": "/V1/ShippingDocuments/ShippingDocumentsService.asmx",
    "tracking": "/V2/Tracking/TrackingService.asmx",
    "pickup": "/V1/PickUp/PickUpService.asmx",
}
ENDPOINTS = {
    "development": {name: _DEV_BASE + path for name, path in _PATHS.items()},
    "production": {name: _PROD_BASE + path for name, path in _PATHS.items()},
}

# operation -> (service endpoint, datatypes version, retried on network errors)
OPERATIONS = {
    "GetQuickEstimate": ("estimating", "v2", True),
    "GetFullEstimate": ("estimating", "v2", True),
    "ValidateShipment": ("shipping", "v2", True),
    "CreateShipment": ("shipping", "v2", False),
    "GetDocuments": ("documents", "v1", True),
    "TrackPackagesByPin": ("tracking", "v2", True),
    "ValidatePickUp": ("pickup", "v1", True),
    "SchedulePickUp": ("pickup", "v1", False),
}

SERVICE_ID = "PurolatorGround"
DOCUMENT_TYPE = "DomesticBillOfLading"
PICKUP_TYPE = "PreScheduled"
PRINTER_TYPE = "Thermal"


class CarrierError(Exception):
    """Base for every Purolator failure; carries the raw response for logging."""

    def __init__(self, message: str, raw_response: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.raw_response = raw_response
        self.status_code = status_code


class CarrierProtocolError(CarrierError):
    """SOAP Fault, non-empty Errors element, or a response missing the expected data."""

    def __init__(self, message: str, raw_response: Optional[str] = None, status_code: Optional[int] = None,
                 errors: Optional[list[dict[str, str]]] = None):
        super().__init__(message, raw_response, status_code)
        self.errors = errors or []


class CarrierNotFoundError(CarrierProtocolError):
    pass


class CarrierNetworkError(CarrierError):
    """Timeout, TLS/DNS failure or HTTP status other than 200."""

    pass


@dataclass(frozen=True)
class Party:
    name: str
    street: str
    city: str
    province: str
    postal_code: str
    company: Optional[str] = None
    phone: Optional[str] = None
    country: str = "CA"


@dataclass(frozen=True)
class Package:
    length: Decimal
    width: Decimal
    height: Decimal
    weight: Decimal


@dataclass(frozen=True)
class ShipmentRequest:
    sender: Party
    receiver: Party
    package: Package
    billing_account: str
    sender_account: str
    reference: str
    description: str = "Package"
    printer_type: str = PRINTER_TYPE


@dataclass(frozen=True)
class Estimate:
    service_id: str
    total_price: Decimal


@dataclass(frozen=True)
class ShipmentResult:
    shipment_pin: str
    piece_pins: list[str]
    raw_response: str


@dataclass(frozen=True)
class DocumentsResult:
    label_base64: str


@dataclass(frozen=True)
class PickupRequest:
    billing_account: str
    pickup_date: str
    ready_time: str
    until_time: str
    total_pieces: int
    total_weight: Decimal
    location: str = "Reception"
    instructions: str = ""
    loading_dock_available: bool = False


@dataclass(frozen=True)
class PickupResult:
    confirmation_number: str
    raw_response: str
    details: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Request rendering
# ---------------------------------------------------------------------------

def format_number(value: Any) -> str:
    """Serialize weights and dimensions as plain strings: 10.0 -> '10', 2.50 -> '2.5'."""
    try:
        number = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid numeric value: {value!r}") from e
    if number == number.to_integral_value():
        return str(number.quantize(Decimal(1)))
    return format(number.normalize(), "f")


def render_element(prefix: str, name: str, value: Any) -> str:
    """
    Render one element and its children with the given prefix.

    dict -> nested elements (insertion order), list -> repeated elements,
    bool -> true/false, None -> omitted, anything else -> escaped text.
    """
    if value is None:
        return ""
    if isinstance(value, list):
        return "".join(render_element(prefix, name, item) for item in value)
    if isinstance(value, dict):
        inner = "".join(render_element(prefix, key, child) for key, child in value.items())
    elif isinstance(value, bool):
        inner = "true" if value else "false"
    elif isinstance(value, (int, float, Decimal)):
        inner = format_number(value)
    else:
        inner = escape(str(value))
    return f"<{prefix}:{name}>{inner}</{prefix}:{name}>"


def build_envelope(version: str, request_name: str, body: dict[str, Any], reference: str) -> str:
    """Full SOAP envelope with the RequestContext header for the service version."""
    header = render_element(version, "RequestContext", {
        "Version": SERVICE_VERSION[version],
        "Language": "en",
        "GroupID": "",
        "RequestReference": reference,
    })
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<soapenv:Envelope xmlns:soapenv="{SOAP_ENV_NS}" xmlns:{version}="{DATATYPES_NS[version]}">'
        f"<soapenv:Header>{header}</soapenv:Header>"
        f"<soapenv:Body>{render_element(version, request_name, body)}</soapenv:Body>"
        "</soapenv:Envelope>"
    )


def _locality(party: Party) -> dict[str, str]:
    return {
        "City": party.city,
        "Province": normalize_province(party.province),
        "Country": party.country or "CA",
        "PostalCode": normalize_postal_code(party.postal_code),
    }


def _address(party: Party) -> dict[str, Any]:
    street_number, street_name = parse_street_address(party.street)
    area_code, phone = parse_phone_number(party.phone)
    return {
        "Name": party.name,
        "Company": party.company or party.name,
        "StreetNumber": street_number,
        "StreetName": street_name,
        **_locality(party),
        "PhoneNumber": {"CountryCode": "1", "AreaCode": area_code, "Phone": phone},
    }


def _package_information(package: Package, description: Optional[str] = None) -> dict[str, Any]:
    weight = {"Value": format_number(package.weight), "WeightUnit": "lb"}
    info: dict[str, Any] = {"ServiceID": SERVICE_ID}
    if description:
        info["Description"] = description
    info.update({
        "TotalWeight": weight,
        "TotalPieces": "1",
        "PiecesInformation": {
            "Piece": {
                "Weight": dict(weight),
                "Length": {"Value": format_number(package.length), "DimensionUnit": "in"},
                "Width": {"Value": format_number(package.width), "DimensionUnit": "in"},
                "Height": {"Value": format_number(package.height), "DimensionUnit": "in"},
            }
        },
    })
    return info


def _payment_information(billing_account: str) -> dict[str, str]:
    return {
        "PaymentType": "Sender",
        "RegisteredAccountNumber": billing_account,
        "BillingAccountNumber": billing_account,
    }


def shipment_body(request: ShipmentRequest) -> dict[str, Any]:
    """Shipment element shared by ValidateShipment and CreateShipment."""
    return {
        "Shipment": {
            "SenderInformation": {
                "Address": _address(request.sender),
                # Purolator expects the sender billing account here despite the name.
                "TaxNumber": request.sender_account,
            },
            "ReceiverInformation": {"Address": _address(request.receiver)},
            "PackageInformation": _package_information(request.package, request.description),
            "PaymentInformation": _payment_information(request.billing_account),
            "PickupInformation": {"PickupType": PICKUP_TYPE},
            "TrackingReferenceInformation": {"Reference1": request.reference},
        },
        "PrinterType": request.printer_type,
    }


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


def _iter_local(root: ET.Element, name: str):
    return (el for el in root.iter() if _local(el.tag) == name)


def _find_local(root: ET.Element, name: str) -> Optional[ET.Element]:
    return next(_iter_local(root, name), None)


def _child(el: ET.Element, name: str) -> Optional[ET.Element]:
    return next((c for c in el if _local(c.tag) == name), None)


def _child_text(el: ET.Element, name: str) -> str:
    child = _child(el, name)
    return (child.text or "").strip() if child is not None else ""


def element_to_dict(el: ET.Element) -> Any:
    """Namespace-free dict view of an element; repeated children become lists."""
    children = list(el)
    if not children:
        return (el.text or "").strip()
    out: dict[str, Any] = {}
    for child in children:
        key = _local(child.tag)
        value = element_to_dict(child)
        if key in out:
            if not isinstance(out[key], list):
                out[key] = [out[key]]
            out[key].append(value)
        else:
            out[key] = value
    return out


def parse_xml(raw: str) -> ET.Element:
    try:
        return ET.fromstring(raw.encode("utf-8"))
    except ET.ParseError as e:
        raise CarrierProtocolError("Invalid XML in Purolator response", raw_response=raw) from e


def _is_nil(el: ET.Element) -> bool:
    return any(_local(attr) == "nil" and value == "true" for attr, value in el.attrib.items())


def raise_for_errors(root: ET.Element, raw: str, operation: str) -> None:
    """
    A SOAP Fault, or an Errors element with content, fails the operation.

    <Errors/> and <Errors i:nil="true"/> mean success.
    """
    fault = _find_local(root, "Fault")
    if fault is not None:
        message = _child_text(fault, "faultstring") or "SOAP Fault"
        raise CarrierProtocolError(f"{operation}: {message}", raw_response=raw)

    for errors in _iter_local(root, "Errors"):
        if _is_nil(errors):
            continue
        if len(errors) == 0 and not (errors.text or "").strip():
            continue
        details = [
            {
                "code": _child_text(err, "Code"),
                "description": _child_text(err, "Description"),
                "additional_information": _child_text(err, "AdditionalInformation"),
            }
            for err in errors
            if _local(err.tag) == "Error"
        ]
        messages = [d["description"] or d["code"] for d in details if d["description"] or d["code"]]
        text = "; ".join(messages) or (errors.text or "").strip() or "Errors returned"
        raise CarrierProtocolError(f"{operation}: {text}", raw_response=raw, errors=details)


def parse_estimates(root: ET.Element) -> list[Estimate]:
    estimates = []
    for el in _iter_local(root, "ShipmentEstimate"):
        service_id = _child_text(el, "ServiceID")
        price = _child_text(el, "TotalPrice")
        if not service_id or not price:
            continue
        try:
            estimates.append(Estimate(service_id=service_id, total_price=Decimal(price)))
        except InvalidOperation:
            logger.warning("Ignoring estimate with invalid price", extra={"service_id": service_id, "price": price})
    return estimates


def select_ground(estimates: list[Estimate]) -> Optional[Estimate]:
    """PurolatorGround is the only service considered; alternatives are ignored."""
    return next((e for e in estimates if e.service_id == SERVICE_ID), None)


def parse_shipment_pins(root: ET.Element) -> tuple[str, list[str]]:
    """
    (ShipmentPIN/Value, [PiecePINs/PIN/Value, ...]); the shipment PIN is ''
    when absent. Return shipment PINs are not pieces and are skipped.
    """
    shipment_pin = ""
    pin_el = _find_local(root, "ShipmentPIN")
    if pin_el is not None:
        shipment_pin = _child_text(pin_el, "Value")
    piece_pins = []
    pieces_el = _find_local(root, "PiecePINs")
    if pieces_el is not None:
        piece_pins = [
            _child_text(el, "Value")
            for el in pieces_el
            if _local(el.tag) == "PIN" and _child_text(el, "Value")
        ]
    return shipment_pin, piece_pins


def parse_document_data(root: ET.Element) -> str:
    for el in _iter_local(root, "Data"):
        text = (el.text or "").strip()
        if text:
            return text
    return ""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class PurolatorClient:
    """Stateless client; every call builds its own request and connection."""

    def __init__(self, settings: PurolatorSettings):
        self.settings = settings
        self.environment = "production" if settings.production else "development"
        self.endpoints = ENDPOINTS[self.environment]
        token = base64.b64encode(f"{settings.key}:{settings.password}".encode("utf-8")).decode("ascii")
        self._authorization = f"Basic {token}"

    def _post(self, url: str, payload: str, action: str) -> str:
        req = urllib.request.Request(
            url,
            data=payload.encode("utf-8"),
            method="POST",
            headers={
                "Content-Type": "text/xml; charset=utf-8",
                "SOAPAction": action,
                "Authorization": self._authorization,
            },
        )
        try:
            with urllib.request.urlopen(
                req, timeout=self.settings.timeout_sec, context=ssl.create_default_context()
            ) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
                if resp.status != 200:
                    raise CarrierNetworkError(
                        f"Purolator returned HTTP {resp.status}", raw_response=raw, status_code=resp.status
                    )
                return raw
        except urllib.error.HTTPError as e:
            raw = e.read().decode("utf-8", errors="replace") if e.fp else ""
            if "Fault" in raw:
                try:
                    raise_for_errors(parse_xml(raw), raw, action.rsplit("/", 1)[-1])
                except CarrierProtocolError as fault:
                    fault.status_code = e.code
                    raise fault from e
            raise CarrierNetworkError(
                f"Purolator returned HTTP {e.code}", raw_response=raw, status_code=e.code
            ) from e
        except urllib.error.URLError as e:
            reason = getattr(e, "reason", None)
            if isinstance(reason, TimeoutError) or (reason and "timed out" in str(reason).lower()):
                raise CarrierNetworkError("Timeout connecting to Purolator") from e
            raise CarrierNetworkError(f"Connection to Purolator failed: {reason}") from e
        except TimeoutError as e:
            raise CarrierNetworkError("Timeout connecting to Purolator") from e
        except OSError as e:
            raise CarrierNetworkError(f"Connection to Purolator failed: {e}") from e
        except http.client.HTTPException as e:
            # BadStatusLine, IncompleteRead, LineTooLong: broken or truncated reply
            raise CarrierNetworkError(f"Invalid HTTP response from Purolator: {e!r}") from e

    def call(self, operation: str, body: dict[str, Any], reference: Optional[str] = None) -> tuple[ET.Element, str]:
        """
        Send one SOAP operation and return (parsed root, raw text).

        Raises:
            CarrierNetworkError: transport failure, after the configured retries
                for idempotent operations.
            CarrierProtocolError: Fault or Errors in the response.
        """
        service, version, retryable = OPERATIONS[operation]
        url = self.endpoints[service]
        action = SOAP_ACTION.format(version=version, operation=operation)
        payload = build_envelope(version, f"{operation}Request", body, reference or operation)

        attempts = 1 + (max(self.settings.network_retries, 0) if retryable else 0)
        for attempt in range(1, attempts + 1):
            try:
                raw = self._post(url, payload, action)
                break
            except CarrierNetworkError as e:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "Purolator network error, retrying",
                    extra={"operation": operation, "attempt": attempt, "error": str(e)},
                )

        root = parse_xml(raw)
        raise_for_errors(root, raw, operation)
        return root, raw

    def quick_estimate(
        self,
        sender_postal_code: str,
        receiver: Party,
        billing_account: str,
        weight: Optional[Decimal] = None,
    ) -> Optional[Decimal]:
        """PurolatorGround price, or None when that service is not offered or priced at zero."""
        body: dict[str, Any] = {
            "BillingAccountNumber": billing_account,
            "SenderPostalCode": normalize_postal_code(sender_postal_code),
            "ReceiverAddress": _locality(receiver),
            "PackageType": "CustomerPackaging",
        }
        if weight is not None:
            body["TotalWeight"] = {"Value": format_number(weight), "WeightUnit": "lb"}

        root, _ = self.call("GetQuickEstimate", body)
        ground = select_ground(parse_estimates(root))
        if ground is None:
            logger.info("No PurolatorGround estimate returned")
            return None
        return ground.total_price if ground.total_price > 0 else None

    def full_estimates(self, request: ShipmentRequest) -> list[Estimate]:
        """Every service GetFullEstimate prices, alternatives included."""
        body = {
            "Shipment": {
                "SenderInformation": {"Address": _locality(request.sender)},
                "ReceiverInformation": {"Address": _locality(request.receiver)},
                "PackageInformation": _package_information(request.package),
                "PaymentInformation": _payment_information(request.billing_account),
                "PickupInformation": {"PickupType": PICKUP_TYPE},
            },
            "ShowAlternativeServicesIndicator": True,
        }
        root, _ = self.call("GetFullEstimate", body)
        return parse_estimates(root)

    def full_estimate(self, request: ShipmentRequest) -> Optional[Decimal]:
        """PurolatorGround price for the full shipment, or None when not offered or free."""
        ground = select_ground(self.full_estimates(request))
        if ground is None:
            logger.info("No PurolatorGround estimate returned", extra={"reference": request.reference})
            return None
        return ground.total_price if ground.total_price > 0 else None

    def validate_shipment(self, request: ShipmentRequest) -> dict[str, Any]:
        """Raises CarrierProtocolError with the carrier's field messages when invalid."""
        root, raw = self.call("ValidateShipment", shipment_body(request), reference=request.reference)
        valid_el = _find_local(root, "ValidShipment")
        if valid_el is not None and (valid_el.text or "").strip().lower() == "false":
            raise CarrierProtocolError("ValidateShipment: shipment is not valid", raw_response=raw)
        return {"valid": True}

    def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        root, raw = self.call("CreateShipment", shipment_body(request), reference=request.reference)
        shipment_pin, piece_pins = parse_shipment_pins(root)
        if not shipment_pin and piece_pins:
            shipment_pin = piece_pins[0]
        if not shipment_pin:
            raise CarrierProtocolError("CreateShipment: no tracking number received", raw_response=raw)
        logger.info("Purolator shipment created", extra={"shipment_pin": shipment_pin, "pieces": len(piece_pins)})
        return ShipmentResult(shipment_pin=shipment_pin, piece_pins=piece_pins, raw_response=raw)

    def get_documents(self, shipment_pin: str) -> DocumentsResult:
        body = {
            "DocumentCriterium": {
                "DocumentCriteria": {
                    "PIN": {"Value": shipment_pin},
                    "DocumentTypes": {"DocumentType": DOCUMENT_TYPE},
                }
            }
        }
        root, raw = self.call("GetDocuments", body, reference=shipment_pin)
        data = parse_document_data(root)
        if not data:
            raise CarrierProtocolError("GetDocuments: no document data in response", raw_response=raw)
        return DocumentsResult(label_base64=data)

    def track_by_pin(self, pin: str) -> dict[str, Any]:
        root, raw = self.call("TrackPackagesByPin", {"PINs": {"PIN": {"Value": pin}}}, reference=pin)
        info = [element_to_dict(el) for el in _iter_local(root, "TrackingInformation")]
        if not info:
            raise CarrierNotFoundError(f"No tracking information for {pin}", raw_response=raw)
        return {"pin": pin, "tracking_information": info}

    def _pickup_body(self, request: PickupRequest, address: Party, full: bool) -> dict[str, Any]:
        instruction: dict[str, Any] = {
            "Date": request.pickup_date,
            "AnyTimeAfter": request.ready_time,
            "UntilTime": request.until_time,
            "TotalWeight": {"Value": format_number(request.total_weight), "WeightUnit": "lb"},
            "TotalPieces": request.total_pieces,
        }
        if full:
            instruction.update({
                "PickUpLocation": request.location,
                "AdditionalInstructions": request.instructions,
                "LoadingDockAvailable": request.loading_dock_available,
                "TrailerAccessible": False,
                "ShipmentOnSkids": False,
            })
        return {
            "BillingAccountNumber": request.billing_account,
            "PickupInstruction": instruction,
            "Address": _address(address),
        }

    def validate_pickup(self, request: PickupRequest, address: Party) -> dict[str, Any]:
        root, _ = self.call("ValidatePickUp", self._pickup_body(request, address, full=False))
        response = _find_local(root, "ValidatePickUpResponse")
        return element_to_dict(response) if response is not None else {}

    def schedule_pickup(self, request: PickupRequest, address: Party) -> PickupResult:
        root, raw = self.call("SchedulePickUp", self._pickup_body(request, address, full=True))
        confirmation_el = _find_local(root, "PickUpConfirmationNumber")
        confirmation = (confirmation_el.text or "").strip() if confirmation_el is not None else ""
        if not confirmation:
            raise CarrierProtocolError("SchedulePickUp: no confirmation number received", raw_response=raw)
        response = _find_local(root, "SchedulePickUpResponse")
        details = element_to_dict(response) if response is not None else {}
        return PickupResult(confirmation_number=confirmation, raw_response=raw, details=details)
