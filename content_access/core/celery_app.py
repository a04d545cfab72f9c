"""
Celery application: broker and result backend from settings.
Только гигиенические задачи (sweep токенов и зависших заказов): для корректности не нужны.
"""
from celery import Celery
from celery.schedules import crontab

from content_access.core.config import settings

celery_app = Celery(
    "content_access",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "content_access.workers.tasks.sweep",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=600,
    result_expires=86400,
    beat_schedule={
        "sweep-expired-download-tokens": {
            "task": "content_access.workers.tasks.sweep.sweep_expired_tokens",
            "schedule": crontab(minute=0),
        },
        "expire-stale-pending-orders": {
            "task": "content_access.workers.tasks.sweep.expire_stale_pending_orders",
            "schedule": crontab(minute="*/30"),
        },
    },
)

celery_app.autodiscover_tasks(["content_access.workers.tasks"])
