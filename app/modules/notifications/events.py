"""
Domain events emitted by the receivables ledger.

Events are queued on the SQLAlchemy session and only dispatched once the
transaction commits; a rollback discards them. Dispatch errors are logged
and never reach the ledger code path.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy import event
from sqlalchemy.orm import Session
import logging

logger = logging.getLogger(__name__)

PENDING_EVENTS_KEY = "pending_receivables_events"


class ReceivablesEvent(BaseModel):
    event_type: Literal["payment_received", "cylinder_returned", "receivables_changed"]
    tenant_id: UUID
    driver_id: UUID
    driver_name: str
    customer_receivable_id: Optional[UUID] = None
    customer_id: Optional[UUID] = None
    customer_name: str
    customer_phone: Optional[str] = None
    receivable_type: str
    old_amount: Decimal
    new_amount: Decimal
    change_by_size: Dict[str, int] = {}
    reason: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


Dispatcher = Callable[[ReceivablesEvent], None]


class EventPublisher:
    """Holds the dispatcher; one instance per application."""

    def __init__(self, dispatcher: Optional[Dispatcher] = None):
        self.dispatcher = dispatcher or celery_dispatcher

    def publish_after_commit(self, session: Session, receivables_event: ReceivablesEvent):
        session.info.setdefault(PENDING_EVENTS_KEY, []).append((self, receivables_event))

    def dispatch(self, receivables_event: ReceivablesEvent):
        try:
            self.dispatcher(receivables_event)
        except Exception as e:
            logger.error(
                f"Notification dispatch failed for {receivables_event.event_type} "
                f"(driver {receivables_event.driver_id}): {e}",
                exc_info=True,
            )


def celery_dispatcher(receivables_event: ReceivablesEvent):
    from app.core.config import settings
    if not settings.NOTIFICATIONS_ENABLED:
        logger.debug(f"Notifications disabled; dropping {receivables_event.event_type} event")
        return
    from app.modules.notifications.tasks import send_receivables_notification
    send_receivables_notification.delay(receivables_event.model_dump(mode="json"))


class EventCollector:
    """Dispatcher that keeps events in memory (tests, local tooling)."""

    def __init__(self):
        self.events: List[ReceivablesEvent] = []

    def __call__(self, receivables_event: ReceivablesEvent):
        self.events.append(receivables_event)


@event.listens_for(Session, "after_commit")
def _dispatch_pending(session: Session):
    # Savepoint releases fire after_commit too; only the outermost commit dispatches
    if session.in_nested_transaction():
        return
    pending = session.info.pop(PENDING_EVENTS_KEY, [])
    for publisher, receivables_event in pending:
        publisher.dispatch(receivables_event)


@event.listens_for(Session, "after_rollback")
def _discard_pending(session: Session):
    if session.in_nested_transaction():
        return
    discarded = session.info.pop(PENDING_EVENTS_KEY, [])
    if discarded:
        logger.debug(f"Discarded {len(discarded)} receivables events after rollback")
