"""
WhatsApp delivery through the Evolution API, plus message rendering
"""
from decimal import Decimal
from typing import Optional

import requests

from app.common.validators import format_bangladesh_phone
from app.core.config import settings
from app.modules.notifications.events import ReceivablesEvent
import logging

logger = logging.getLogger(__name__)


class NotificationDeliveryError(Exception):
    pass


class WhatsAppClient:

    def __init__(self, api_url: Optional[str] = None, api_key: Optional[str] = None,
                 instance: Optional[str] = None, timeout: Optional[float] = None):
        self.api_url = (api_url or settings.WHATSAPP_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.WHATSAPP_API_KEY
        self.instance = instance or settings.WHATSAPP_INSTANCE
        self.timeout = timeout or settings.WHATSAPP_TIMEOUT_SECONDS

    def send_text(self, phone: str, text: str) -> str:
        """Send a text message; returns the provider message id."""
        number = format_bangladesh_phone(phone)
        if number is None:
            raise NotificationDeliveryError(f"Invalid Bangladesh phone number: {phone}")

        try:
            response = requests.post(
                f"{self.api_url}/message/sendText/{self.instance}",
                json={"number": number, "text": text},
                headers={"apikey": self.api_key},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise NotificationDeliveryError(f"Evolution API unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.ok and isinstance(data, dict) and data.get("key"):
            return data["key"].get("id", "")
        raise NotificationDeliveryError(
            data.get("message") or data.get("error") or f"Evolution API returned {response.status_code}"
            if isinstance(data, dict) else f"Evolution API returned {response.status_code}"
        )


def _format_amount(event: ReceivablesEvent, value: Decimal) -> str:
    if event.receivable_type == "CYLINDER":
        return f"{int(value)} cylinders"
    return f"{settings.CURRENCY_SYMBOL}{Decimal(value):,.2f}"


def render_message(event: ReceivablesEvent) -> str:
    old_amount = _format_amount(event, event.old_amount)
    new_amount = _format_amount(event, event.new_amount)
    change = _format_amount(event, abs(Decimal(event.old_amount) - Decimal(event.new_amount)))
    when = event.timestamp.strftime("%d/%m/%Y %I:%M %p")

    if event.event_type == "payment_received":
        title = "💰 Payment Received"
        body = f"Your payment of {change} has been received."
    elif event.event_type == "cylinder_returned":
        sizes = ", ".join(f"{size}: {qty}" for size, qty in sorted(event.change_by_size.items()))
        title = "🔄 Cylinders Returned"
        body = f"We received {change} back" + (f" ({sizes})." if sizes else ".")
    else:
        increased = Decimal(event.new_amount) > Decimal(event.old_amount)
        title = "🔴 Receivables Increased" if increased else "🟢 Receivables Decreased"
        body = f"Your receivables have {'increased' if increased else 'decreased'} by {change}."

    return (
        f"{title}\n\n"
        f"Dear {event.customer_name},\n\n"
        f"{body}\n\n"
        f"Previous: {old_amount}\n"
        f"Current: {new_amount}\n"
        f"Reason: {event.reason}\n"
        f"Driver: {event.driver_name}\n\n"
        f"Time: {when}\n\n"
        f"Thank you."
    )
