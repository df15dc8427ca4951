import json
from unittest.mock import MagicMock, patch

import pytest

from shared.database import StoreError
from shared.purolator import CarrierNetworkError, CarrierNotFoundError
from shipments.handler import lambda_handler
from shipments.service import ShipmentNotFoundError

VALID_BODY = {
    "contact_name": "Jane Doe",
    "contact_email": "jane@ubc.ca",
    "organization_name": "UBC Bookstore",
    "destination_street": "6200 University Blvd",
    "destination_city": "Vancouver",
    "destination_province": "BC",
    "destination_postal_code": "V6T 1Z4",
    "weight": 10,
    "billing_type": "csc",
    "billing_account": "12345678",
}


def _event(method: str, raw_path: str, body=None) -> dict:
    e = {"requestContext": {"http": {"method": method}}, "rawPath": raw_path}
    if body is not None:
        e["body"] = json.dumps(body) if isinstance(body, dict) else body
    return e


@pytest.fixture
def mock_service():
    with patch("shipments.handler.ShipmentService") as mock_cls:
        instance = MagicMock()
        mock_cls.return_value = instance
        yield instance


class TestCreate:
    def test_created(self, mock_service: MagicMock, lambda_context) -> None:
        mock_service.create_shipment.return_value = {"id": "s1", "tracking_number": "329014521622"}

        resp = lambda_handler(_event("POST", "/shipments", VALID_BODY), lambda_context)

        assert resp["statusCode"] == 201
        assert json.loads(resp["body"])["tracking_number"] == "329014521622"
        payload = mock_service.create_shipment.call_args[0][0]
        assert payload.destination_postal_code == "V6T1Z4"
        assert resp["headers"]["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.parametrize(
        "override",
        [
            {"destination_postal_code": "12345"},
            {"destination_province": "New York"},
            {"billing_account": "1234"},
            {"weight": 0},
            {"billing_type": "paypal"},
            {"contact_name": "   "},
        ],
    )
    def test_invalid_payload_is_400(self, mock_service: MagicMock, lambda_context, override: dict) -> None:
        resp = lambda_handler(_event("POST", "/shipments", {**VALID_BODY, **override}), lambda_context)

        assert resp["statusCode"] == 400
        body = json.loads(resp["body"])
        assert body["error"] == "Invalid data"
        assert body["details"]
        mock_service.create_shipment.assert_not_called()

    def test_store_failure_is_500(self, mock_service: MagicMock, lambda_context) -> None:
        mock_service.create_shipment.side_effect = StoreError("connection refused")

        resp = lambda_handler(_event("POST", "/shipments", VALID_BODY), lambda_context)

        assert resp["statusCode"] == 500
        assert json.loads(resp["body"])["error"] == "Failed to save shipment"


class TestOtherRoutes:
    def test_estimate(self, mock_service: MagicMock, lambda_context) -> None:
        mock_service.estimate.return_value = {"csc_cost": "22.35", "institution_cost": None}
        body = {"destination_city": "Vancouver", "destination_province": "BC", "destination_postal_code": "V6T1Z4", "weight": 5}

        resp = lambda_handler(_event("POST", "/shipments/estimate", body), lambda_context)

        assert resp["statusCode"] == 200
        mock_service.create_shipment.assert_not_called()

    def test_get_shipment(self, mock_service: MagicMock, lambda_context) -> None:
        mock_service.get_shipment.return_value = {"id": "s1"}

        resp = lambda_handler(_event("GET", "/shipments/s1"), lambda_context)

        assert resp["statusCode"] == 200
        mock_service.get_shipment.assert_called_once_with("s1")

    def test_get_shipment_not_found(self, mock_service: MagicMock, lambda_context) -> None:
        mock_service.get_shipment.side_effect = ShipmentNotFoundError("Shipment s1 not found")

        resp = lambda_handler(_event("GET", "/shipments/s1"), lambda_context)

        assert resp["statusCode"] == 404

    def test_track_carrier_failure_is_502(self, mock_service: MagicMock, lambda_context) -> None:
        mock_service.track.side_effect = CarrierNetworkError("Timeout connecting to Purolator")

        resp = lambda_handler(_event("GET", "/shipments/track/329014521622"), lambda_context)

        assert resp["statusCode"] == 502
        mock_service.track.assert_called_once_with("329014521622")

    def test_track_unknown_pin_is_404(self, mock_service: MagicMock, lambda_context) -> None:
        mock_service.track.side_effect = CarrierNotFoundError("No tracking information for 1")

        resp = lambda_handler(_event("GET", "/shipments/track/1"), lambda_context)

        assert resp["statusCode"] == 404

    def test_update_status(self, mock_service: MagicMock, lambda_context) -> None:
        mock_service.update_status.return_value = {"id": "s1", "status": "printed"}

        resp = lambda_handler(_event("PUT", "/shipments/s1/status", {"status": "printed"}), lambda_context)

        assert resp["statusCode"] == 200
        mock_service.update_status.assert_called_once_with("s1", "printed")

    def test_backwards_status_is_400(self, mock_service: MagicMock, lambda_context) -> None:
        mock_service.update_status.side_effect = ValueError("Cannot move shipment from 'printed' to 'pending'")

        resp = lambda_handler(_event("PUT", "/shipments/s1/status", {"status": "pending"}), lambda_context)

        assert resp["statusCode"] == 400

    def test_options(self, mock_service: MagicMock, lambda_context) -> None:
        resp = lambda_handler(_event("OPTIONS", "/shipments"), lambda_context)
        assert resp["statusCode"] == 200

    def test_unknown_route(self, mock_service: MagicMock, lambda_context) -> None:
        resp = lambda_handler(_event("DELETE", "/shipments/s1"), lambda_context)
        assert resp["statusCode"] == 404
