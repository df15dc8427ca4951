from unittest.mock import MagicMock, patch

import pytest

from shared.database import StoreError
from shipments.repository import ShipmentRepository


@pytest.fixture
def db():
    with patch("shipments.repository.get_supabase_client") as get_client:
        client = MagicMock()
        get_client.return_value = client
        yield client


def test_insert_returns_row(db: MagicMock) -> None:
    db.table.return_value.insert.return_value.execute.return_value = MagicMock(data=[{"id": "s1"}])

    row = ShipmentRepository().insert_shipment({"id": "s1", "tracking_number": "329014521622"})

    assert row == {"id": "s1"}
    db.table.assert_called_with("shipments")


def test_insert_failure_raises_store_error(db: MagicMock) -> None:
    db.table.return_value.insert.return_value.execute.side_effect = RuntimeError("duplicate key")

    with pytest.raises(StoreError, match="duplicate key"):
        ShipmentRepository().insert_shipment({"id": "s1"})


def test_insert_without_returned_row(db: MagicMock) -> None:
    db.table.return_value.insert.return_value.execute.return_value = MagicMock(data=[])

    with pytest.raises(StoreError):
        ShipmentRepository().insert_shipment({"id": "s1"})


def test_update_stamps_updated_at_and_applies_filters(db: MagicMock) -> None:
    update = db.table.return_value.update
    first_eq = update.return_value.eq
    second_eq = first_eq.return_value.eq
    second_eq.return_value.execute.return_value = MagicMock(data=[{"id": "s1", "payment_status": "pending"}])

    row = ShipmentRepository().update_shipment_fields(
        "s1", {"payment_status": "pending"}, only_if={"payment_status": "none"}
    )

    data = update.call_args[0][0]
    assert data["payment_status"] == "pending"
    assert "updated_at" in data
    first_eq.assert_called_once_with("id", "s1")
    second_eq.assert_called_once_with("payment_status", "none")
    assert row["payment_status"] == "pending"


def test_update_matching_nothing_returns_none(db: MagicMock) -> None:
    db.table.return_value.update.return_value.eq.return_value.execute.return_value = MagicMock(data=[])

    assert ShipmentRepository().update_shipment_fields("missing", {"status": "printed"}) is None


def test_get_by_tracking_number(db: MagicMock) -> None:
    select = db.table.return_value.select
    select.return_value.eq.return_value.execute.return_value = MagicMock(data=[{"id": "s1"}])

    assert ShipmentRepository().get_shipment_by_tracking_number("329014521622") == {"id": "s1"}
    select.return_value.eq.assert_called_once_with("tracking_number", "329014521622")
