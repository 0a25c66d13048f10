"""
Tests for the notifications module

- events only leave the process after the outermost commit
- WhatsApp client against a stubbed HTTP layer
- message rendering and the Celery task
"""
from decimal import Decimal
from uuid import uuid4

import pytest
import requests

from app.core.config import settings
from app.modules.drivers.models import Driver
from app.modules.notifications import service, tasks
from app.modules.notifications.events import EventCollector, EventPublisher, ReceivablesEvent, celery_dispatcher
from app.modules.notifications.service import NotificationDeliveryError, WhatsAppClient, render_message


def make_event(**overrides):
    data = dict(
        event_type="payment_received",
        tenant_id=uuid4(),
        driver_id=uuid4(),
        driver_name="Rahim",
        customer_name="Karim Store",
        customer_phone="01811223344",
        receivable_type="CASH",
        old_amount=Decimal("500"),
        new_amount=Decimal("300"),
        reason="Payment received (cash)",
    )
    data.update(overrides)
    return ReceivablesEvent(**data)


class FakeResponse:

    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.ok = status_code < 400
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON")
        return self._payload


# ===== POST-COMMIT DISPATCH =====

class TestEventPublisher:

    def _touch(self, db_session, tenant_id, name="Rahim"):
        db_session.add(Driver(tenant_id=tenant_id, name=name))

    def test_dispatched_after_commit(self, db_session, tenant_id):
        collector = EventCollector()
        publisher = EventPublisher(collector)
        self._touch(db_session, tenant_id)

        publisher.publish_after_commit(db_session, make_event())
        assert collector.events == []
        db_session.commit()

        assert len(collector.events) == 1

    def test_rollback_discards(self, db_session, tenant_id):
        collector = EventCollector()
        publisher = EventPublisher(collector)
        self._touch(db_session, tenant_id)

        publisher.publish_after_commit(db_session, make_event())
        db_session.rollback()
        self._touch(db_session, tenant_id, "Jamal")
        db_session.commit()

        assert collector.events == []

    def test_savepoint_release_does_not_dispatch(self, db_session, tenant_id):
        collector = EventCollector()
        publisher = EventPublisher(collector)
        self._touch(db_session, tenant_id)

        with db_session.begin_nested():
            publisher.publish_after_commit(db_session, make_event())
        assert collector.events == []

        db_session.commit()
        assert len(collector.events) == 1

    def test_dispatch_errors_are_contained(self):
        def broken(event):
            raise RuntimeError("provider down")

        EventPublisher(broken).dispatch(make_event())

    def test_celery_dispatcher_is_noop_when_disabled(self, monkeypatch):
        sent = []
        monkeypatch.setattr(settings, "NOTIFICATIONS_ENABLED", False)
        monkeypatch.setattr(tasks.send_receivables_notification, "delay", sent.append)

        celery_dispatcher(make_event())

        assert sent == []

    def test_celery_dispatcher_enqueues_json_payload(self, monkeypatch):
        sent = []
        monkeypatch.setattr(settings, "NOTIFICATIONS_ENABLED", True)
        monkeypatch.setattr(tasks.send_receivables_notification, "delay", sent.append)

        celery_dispatcher(make_event())

        assert len(sent) == 1
        assert sent[0]["event_type"] == "payment_received"
        assert isinstance(sent[0]["tenant_id"], str)


# ===== WHATSAPP CLIENT =====

class TestWhatsAppClient:

    def test_sends_to_normalized_number(self, monkeypatch):
        calls = []

        def fake_post(url, json=None, headers=None, timeout=None):
            calls.append((url, json, headers, timeout))
            return FakeResponse(201, {"key": {"id": "MSG-1"}})

        monkeypatch.setattr(service.requests, "post", fake_post)

        message_id = WhatsAppClient(api_url="http://evo:8080/", api_key="k", instance="depot").send_text(
            "01811-223344", "hello"
        )

        assert message_id == "MSG-1"
        url, body, headers, _ = calls[0]
        assert url == "http://evo:8080/message/sendText/depot"
        assert body == {"number": "+8801811223344", "text": "hello"}
        assert headers == {"apikey": "k"}

    def test_provider_error_is_raised(self, monkeypatch):
        monkeypatch.setattr(service.requests, "post",
                            lambda *args, **kwargs: FakeResponse(400, {"message": "instance not connected"}))

        with pytest.raises(NotificationDeliveryError, match="instance not connected"):
            WhatsAppClient().send_text("01811223344", "hello")

    def test_non_json_error(self, monkeypatch):
        monkeypatch.setattr(service.requests, "post", lambda *args, **kwargs: FakeResponse(502))

        with pytest.raises(NotificationDeliveryError, match="502"):
            WhatsAppClient().send_text("01811223344", "hello")

    def test_unreachable_provider(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise requests.exceptions.ConnectionError("refused")

        monkeypatch.setattr(service.requests, "post", refuse)

        with pytest.raises(NotificationDeliveryError, match="unreachable"):
            WhatsAppClient().send_text("01811223344", "hello")

    def test_invalid_phone_never_calls_provider(self, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("provider called")

        monkeypatch.setattr(service.requests, "post", fail)

        with pytest.raises(NotificationDeliveryError, match="Invalid"):
            WhatsAppClient().send_text("12345", "hello")


# ===== RENDERING / TASK =====

class TestRenderMessage:

    def test_payment(self):
        text = render_message(make_event())

        assert "Payment Received" in text
        assert "Dear Karim Store" in text
        assert f"{settings.CURRENCY_SYMBOL}200.00" in text
        assert f"Current: {settings.CURRENCY_SYMBOL}300.00" in text
        assert "Driver: Rahim" in text

    def test_cylinder_return(self):
        text = render_message(make_event(
            event_type="cylinder_returned", receivable_type="CYLINDER",
            old_amount=Decimal("3"), new_amount=Decimal("1"), change_by_size={"12L": -2},
        ))

        assert "Cylinders Returned" in text
        assert "2 cylinders" in text
        assert "Previous: 3 cylinders" in text

    def test_generic_change_direction(self):
        text = render_message(make_event(event_type="receivables_changed",
                                         old_amount=Decimal("100"), new_amount=Decimal("250")))

        assert "Receivables Increased" in text


class TestSendReceivablesNotificationTask:

    def test_skips_without_phone(self):
        payload = make_event(customer_phone=None).model_dump(mode="json")

        assert tasks.send_receivables_notification(payload) == {"status": "skipped", "reason": "no_phone"}

    def test_success(self, monkeypatch):
        class StubClient:
            def send_text(self, phone, text):
                return "MSG-9"

        monkeypatch.setattr(tasks, "WhatsAppClient", StubClient)

        result = tasks.send_receivables_notification(make_event().model_dump(mode="json"))

        assert result == {"status": "success", "message_id": "MSG-9"}
