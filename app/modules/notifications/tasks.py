"""
Celery tasks for WhatsApp notifications.
"""
import logging
from typing import Any, Dict

from app.core.celery import celery_app
from app.modules.notifications.events import ReceivablesEvent
from app.modules.notifications.service import WhatsAppClient, NotificationDeliveryError, render_message

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def send_receivables_notification(self, payload: Dict[str, Any]):
    """
    Deliver one receivables event to the customer over WhatsApp.
    Retries with exponential backoff; the ledger never waits on this.
    """
    receivables_event = ReceivablesEvent.model_validate(payload)

    if not receivables_event.customer_phone:
        logger.info(f"No phone for customer {receivables_event.customer_name}; notification skipped")
        return {"status": "skipped", "reason": "no_phone"}

    try:
        message_id = WhatsAppClient().send_text(
            receivables_event.customer_phone, render_message(receivables_event)
        )
        logger.info(f"{receivables_event.event_type} notification sent to {receivables_event.customer_name}")
        return {"status": "success", "message_id": message_id}

    except NotificationDeliveryError as exc:
        logger.error(f"WhatsApp notification failed: {str(exc)}")

        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))

        return {"status": "failed", "error": str(exc)}
