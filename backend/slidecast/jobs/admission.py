from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from slidecast.errors import ConcurrencyLimitError, StageAlreadyActiveError
from slidecast.models import ACTIVE_JOB_STATUSES, Job, JobType
from slidecast.services.admin_settings import AdminSettings


logger = logging.getLogger("slidecast.jobs")


def count_active_jobs(db: Session, user_id: str) -> int:
    return int(
        db.scalar(
            select(func.count())
            .select_from(Job)
            .where(Job.owner_id == user_id, Job.status.in_(ACTIVE_JOB_STATUSES))
        )
        or 0
    )


def assert_within_concurrency_limit(db: Session, user_id: str, limit: int | None) -> None:
    if not limit or limit <= 0:
        return
    active = count_active_jobs(db, user_id)
    if active >= limit:
        logger.info("admission_rejected user=%s active=%s limit=%s", user_id, active, limit)
        raise ConcurrencyLimitError(active, limit)


def assert_stage_not_active(db: Session, deck_id: str, job_type: JobType) -> None:
    active_id = db.scalar(
        select(Job.id)
        .where(
            Job.deck_id == deck_id,
            Job.type == job_type.value,
            Job.status.in_(ACTIVE_JOB_STATUSES),
        )
        .limit(1)
    )
    if active_id:
        raise StageAlreadyActiveError(deck_id, job_type.value, active_id)


def admit_job(
    db: Session,
    admin: AdminSettings,
    *,
    user_id: str,
    deck_id: str | None,
    job_type: JobType,
    single_flight: bool = True,
) -> None:
    """Synchronous admission check; raises an ``AdmissionError`` instead of waiting."""
    assert_within_concurrency_limit(db, user_id, admin.concurrency_limit_per_user())
    if single_flight and deck_id:
        assert_stage_not_active(db, deck_id, job_type)
