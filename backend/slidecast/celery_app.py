from celery import Celery

from slidecast.config import settings

celery_app = Celery("slidecast", broker=settings.redis_url, backend=settings.redis_url, include=["slidecast.tasks"])
celery_app.conf.update(
    task_track_started=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_default_queue=settings.celery_queue,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.worker_concurrency,
)
