"""
Celery configuration for background tasks
"""
from celery import Celery
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)

celery_app = Celery(
    "gasledger",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "app.modules.notifications.tasks",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Dhaka",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # WhatsApp provider rate limit
    task_default_rate_limit="60/m",

    result_expires=3600,  # 1 hour

    task_routes={
        "app.modules.notifications.tasks.*": {"queue": "notifications"},
    },
)

if __name__ == "__main__":
    celery_app.start()
