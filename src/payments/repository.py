from datetime import datetime, timezone
from typing import Any, Optional

from shared.database import StoreError, get_supabase_client

TABLE = "shipments"
PAYMENT_COLUMNS = (
    "id, tracking_number, billing_type, estimated_cost, contact_name, contact_email, "
    "organization_name, destination_city, destination_province, destination_postal_code, "
    "stripe_invoice_id, stripe_invoice_url, stripe_invoice_pdf_url, payment_status, "
    "payment_event_at, paid_at"
)


class PaymentRepository:
    def __init__(self):
        self.db = get_supabase_client()

    def get_shipment(self, shipment_id: str) -> Optional[dict[str, Any]]:
        try:
            res = self.db.table(TABLE).select(PAYMENT_COLUMNS).eq("id", shipment_id).execute()
        except Exception as e:
            raise StoreError(f"Failed to read shipment {shipment_id}: {e}") from e
        return res.data[0] if res.data else None

    def update_payment_fields(
        self,
        shipment_id: str,
        fields: dict[str, Any],
        only_if: Optional[dict[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        """Writes invoice/payment columns; None when only_if did not match."""
        data = {**fields, "updated_at": datetime.now(timezone.utc).isoformat()}
        try:
            query = self.db.table(TABLE).update(data).eq("id", shipment_id)
            for column, value in (only_if or {}).items():
                query = query.eq(column, value)
            res = query.execute()
        except Exception as e:
            raise StoreError(f"Failed to update shipment {shipment_id}: {e}") from e
        return res.data[0] if res.data else None
