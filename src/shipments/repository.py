"""Shipment store: the only code that knows how shipments are persisted (Supabase table `shipments`)."""

from datetime import datetime, timezone
from typing import Any, Optional

from aws_lambda_powertools import Logger

from shared.database import StoreError, get_supabase_client

logger = Logger(service="shipments")

TABLE = "shipments"


class ShipmentRepository:
    def __init__(self):
        self.db = get_supabase_client()

    def insert_shipment(self, row: dict[str, Any]) -> dict[str, Any]:
        """
        Strict insert; there is deliberately no upsert on tracking_number.

        Raises:
            StoreError: The insert failed or returned no row.
        """
        try:
            result = self.db.table(TABLE).insert(row).execute()
        except Exception as e:
            logger.exception("Shipment insert failed", extra={"shipment_id": row.get("id")})
            raise StoreError(f"Failed to save shipment: {e}") from e
        if not result.data:
            raise StoreError("Failed to save shipment: no row returned")
        return result.data[0]

    def update_shipment_fields(
        self,
        shipment_id: str,
        fields: dict[str, Any],
        only_if: Optional[dict[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        """
        Update the given columns and stamp updated_at.

        Args:
            only_if: Extra equality filters; when they do not match nothing is
                written and None is returned.
        """
        data = {**fields, "updated_at": datetime.now(timezone.utc).isoformat()}
        try:
            query = self.db.table(TABLE).update(data).eq("id", shipment_id)
            for column, value in (only_if or {}).items():
                query = query.eq(column, value)
            result = query.execute()
        except Exception as e:
            logger.exception("Shipment update failed", extra={"shipment_id": shipment_id})
            raise StoreError(f"Failed to update shipment {shipment_id}: {e}") from e
        return result.data[0] if result.data else None

    def get_shipment_by_id(self, shipment_id: str) -> Optional[dict[str, Any]]:
        try:
            result = self.db.table(TABLE).select("*").eq("id", shipment_id).execute()
        except Exception as e:
            raise StoreError(f"Failed to read shipment {shipment_id}: {e}") from e
        return result.data[0] if result.data else None

    def get_shipment_by_tracking_number(self, tracking_number: str) -> Optional[dict[str, Any]]:
        try:
            result = self.db.table(TABLE).select("*").eq("tracking_number", tracking_number).execute()
        except Exception as e:
            raise StoreError(f"Failed to read shipment {tracking_number}: {e}") from e
        return result.data[0] if result.data else None
