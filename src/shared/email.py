"""
Transactional mail through the Resend REST API.

Callers treat every send as best effort: failures raise NotificationError and
are never retried here.
"""

from decimal import Decimal
from html import escape
from typing import Optional

import requests
from aws_lambda_powertools import Logger

from shared.config import NotifierSettings
from shared.stripe_billing import tracking_url

logger = Logger(service="email")

RESEND_URL = "https://api.resend.com/emails"
REQUEST_TIMEOUT_SEC = 10


class NotificationError(Exception):
    pass


class Notifier:
    def __init__(self, settings: NotifierSettings):
        self.settings = settings

    def _send(self, to: list[str], subject: str, html: str, text: Optional[str] = None) -> str:
        body = {"from": self.settings.from_address, "to": to, "subject": subject, "html": html}
        if text:
            body["text"] = text
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }
        try:
            resp = requests.post(RESEND_URL, json=body, headers=headers, timeout=REQUEST_TIMEOUT_SEC)
        except requests.RequestException as e:
            raise NotificationError(f"Resend unreachable: {e}") from e
        if resp.status_code not in (200, 201):
            raise NotificationError(f"Resend returned HTTP {resp.status_code}: {resp.text}")
        return (resp.json() or {}).get("id", "")

    def send_tracking_email(
        self,
        recipient_name: str,
        recipient_email: str,
        tracking_number: str,
        organization_name: str,
    ) -> str:
        """Tell the recipient their package left the conference floor."""
        url = tracking_url(tracking_number)
        name, org, pin = escape(recipient_name), escape(organization_name), escape(tracking_number)
        text = (
            f"Hi {recipient_name},\n\n"
            f"Your package from {organization_name} has been shipped via Purolator Ground.\n\n"
            f"Tracking Number: {tracking_number}\n"
            f"Track your package: {url}\n\n"
            "Purolator Ground shipping typically takes 2-5 business days.\n\n"
            "This is an automated message from Campus Stores Canada."
        )
        html = (
            f"<p>Hi {name},</p>"
            f"<p>Your package from <strong>{org}</strong> has been shipped via Purolator Ground.</p>"
            f'<p>Tracking Number: <a href="{escape(url)}">{pin}</a></p>'
            "<p>Purolator Ground shipping typically takes 2-5 business days.</p>"
        )
        email_id = self._send(
            [recipient_email],
            f"Your Package is on the Way - Tracking #{tracking_number}",
            html,
            text,
        )
        logger.info("Tracking email sent", extra={"tracking_number": tracking_number, "email_id": email_id})
        return email_id

    def send_shipment_notification(
        self,
        tracking_number: str,
        contact_name: str,
        contact_email: str,
        organization_name: str,
        destination_address: str,
        estimated_cost: Optional[Decimal],
        billing_type: str,
        billing_account: str,
        has_label: bool,
    ) -> str:
        """Internal notice to the CSC office for every recorded shipment, including failed ones."""
        cost = f"${Decimal(estimated_cost):.2f}" if estimated_cost is not None else "n/a"
        billing = "CSC Account" if billing_type == "csc" else "Institution Account"
        label = "available" if has_label else "not retrieved (use the Purolator portal)"
        html = (
            "<h2>New Shipment Created</h2>"
            "<ul>"
            f'<li><strong>Tracking Number:</strong> <a href="{escape(tracking_url(tracking_number))}">{escape(tracking_number)}</a></li>'
            f"<li><strong>Recipient:</strong> {escape(contact_name)} ({escape(contact_email)})</li>"
            f"<li><strong>Organization:</strong> {escape(organization_name)}</li>"
            f"<li><strong>Destination:</strong> {escape(destination_address)}</li>"
            f"<li><strong>Estimated Cost:</strong> {cost}</li>"
            f"<li><strong>Billing:</strong> {billing} #{billing_account}</li>"
            f"<li><strong>Label:</strong> {label}</li>"
            "</ul>"
        )
        email_id = self._send(
            [self.settings.notification_email],
            f"New Shipment: {tracking_number} - {contact_name}",
            html,
        )
        logger.info("Internal shipment notification sent", extra={"tracking_number": tracking_number, "email_id": email_id})
        return email_id
