"""
Celery application for publish jobs.

Broker/backend: Redis (REDIS_URL env).
Default queue: publish.
"""
from celery import Celery

from app.settings import get_settings

settings = get_settings()

celery_app = Celery(
    "publication_studio",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    # one publication may upload several files to several networks
    task_time_limit=2 * 3600,
    task_soft_time_limit=90 * 60,
    task_default_queue="publish",
    task_routes={"publish.*": {"queue": "publish"}},
    result_expires=24 * 3600,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # visibility_timeout MUST be > task_time_limit to prevent redelivery
    broker_transport_options={"visibility_timeout": 3 * 3600},
)

celery_app.autodiscover_tasks(["app.worker"])
