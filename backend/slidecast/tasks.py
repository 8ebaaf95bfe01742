from __future__ import annotations

import logging
from functools import lru_cache

from slidecast.celery_app import celery_app
from slidecast.config import settings
from slidecast.db import SessionLocal
from slidecast.jobs.context import WorkerServices, build_worker_services
from slidecast.jobs.dispatch import run_job
from slidecast.jobs.queue import CeleryJobQueue
from slidecast.logging_utils import configure_logging
from slidecast.models import JobType


logger = logging.getLogger("slidecast.jobs")


@lru_cache(maxsize=1)
def get_worker_services() -> WorkerServices:
    return build_worker_services(
        settings=settings,
        session_factory=SessionLocal,
        queue=CeleryJobQueue(celery_app, queue_name=settings.celery_queue),
    )


def _run(job_type: JobType, payload: dict) -> dict:
    outcome = run_job(job_type, payload, get_worker_services())
    return {"job_id": payload.get("job_id"), "processed": outcome.processed}


configure_logging()


@celery_app.task(name="slidecast.tasks.ingest_deck")
def ingest_deck(payload: dict):
    return _run(JobType.INGEST_DECK, payload)


@celery_app.task(name="slidecast.tasks.generate_scripts")
def generate_scripts(payload: dict):
    return _run(JobType.GENERATE_SCRIPTS, payload)


@celery_app.task(name="slidecast.tasks.generate_audio")
def generate_audio(payload: dict):
    return _run(JobType.GENERATE_AUDIO, payload)


@celery_app.task(name="slidecast.tasks.generate_video")
def generate_video(payload: dict):
    return _run(JobType.GENERATE_VIDEO, payload)


@celery_app.task(name="slidecast.tasks.assemble_final")
def assemble_final(payload: dict):
    return _run(JobType.ASSEMBLE_FINAL, payload)
