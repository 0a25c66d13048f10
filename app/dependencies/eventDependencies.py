from fastapi import Request
from app.modules.notifications.events import EventPublisher


def get_event_publisher(request: Request) -> EventPublisher:
    """Publisher configured by the app factory (tests swap in a collector)."""
    return request.app.state.event_publisher
