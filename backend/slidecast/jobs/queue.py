from __future__ import annotations

import json
import logging
from typing import Protocol

from sqlalchemy.orm import Session

from slidecast.jobs.lifecycle import mark_job_failed
from slidecast.jobs.pipeline import descriptor_for
from slidecast.models import Job, JobStatus, JobType, new_id
from slidecast.schemas import JobPayload


logger = logging.getLogger("slidecast.jobs")


class JobQueue(Protocol):
    def enqueue(self, job_type: JobType, payload: JobPayload) -> None: ...


class CeleryJobQueue:
    """Durable at-least-once delivery through the Celery/Redis broker."""

    def __init__(self, celery_app, *, queue_name: str | None = None):
        self.celery_app = celery_app
        self.queue_name = queue_name

    def enqueue(self, job_type: JobType, payload: JobPayload) -> None:
        descriptor = descriptor_for(job_type)
        options = {"queue": self.queue_name} if self.queue_name else {}
        self.celery_app.send_task(
            descriptor.task_name,
            args=[payload.model_dump(mode="json")],
            task_id=payload.job_id,
            **options,
        )
        logger.info("enqueued job=%s type=%s deck=%s", payload.job_id, job_type.value, payload.deck_id)


def create_and_enqueue_job(
    db: Session,
    queue: JobQueue,
    *,
    job_type: JobType,
    deck_id: str,
    user_id: str,
    slide_ids: list[str] | None = None,
    trigger: str = "manual",
) -> Job:
    selection = list(dict.fromkeys(slide_ids)) if slide_ids else None
    body: dict = {"trigger": trigger}
    if selection:
        body["slide_ids"] = selection

    job = Job(
        id=new_id(),
        deck_id=deck_id,
        owner_id=user_id,
        type=job_type.value,
        status=JobStatus.QUEUED.value,
        progress=0.0,
        payload_json=json.dumps(body),
    )
    db.add(job)
    db.commit()

    payload = JobPayload(deck_id=deck_id, user_id=user_id, job_id=job.id, slide_ids=selection)
    try:
        queue.enqueue(job_type, payload)
    except Exception as exc:
        mark_job_failed(db, job.id, f"Unable to enqueue job: {exc}")
        raise
    return job
