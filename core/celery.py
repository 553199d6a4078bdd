from celery import Celery

from core.config import settings

celery_app = Celery(
    "storefront_orders",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["tasks.email_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    task_routes={"tasks.email_tasks.*": {"queue": "email"}},
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    # Eager mode runs tasks inline, which is only wanted under test
    task_always_eager=settings.TESTING,
    task_eager_propagates=settings.TESTING,
)
