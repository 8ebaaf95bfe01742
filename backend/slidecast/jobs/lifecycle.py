"""Job row state transitions.

Each call commits the session, so any pending Deck/Slide changes made by the caller
are persisted in the same transaction as the job update.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from slidecast.errors import format_error
from slidecast.models import Job, JobStatus, utcnow


def _load(db: Session, job_id: str) -> Job:
    job = db.get(Job, job_id)
    if job is None:
        raise LookupError(f"Job {job_id} not found")
    return job


def mark_job_running(db: Session, job_id: str) -> None:
    job = _load(db, job_id)
    job.status = JobStatus.RUNNING.value
    job.started_at = utcnow()
    job.completed_at = None
    job.progress = 0.0
    job.error = None
    db.commit()


def compute_progress(completed: float, total: float | None = None) -> float:
    if total and total > 0:
        return max(0.0, min(1.0, completed / total))
    return float(completed)


def mark_job_progress(db: Session, job_id: str, completed: float, total: float | None = None) -> None:
    job = _load(db, job_id)
    job.progress = compute_progress(completed, total)
    db.commit()


def mark_job_succeeded(db: Session, job_id: str) -> None:
    job = _load(db, job_id)
    job.status = JobStatus.SUCCEEDED.value
    job.progress = 1.0
    job.completed_at = utcnow()
    job.error = None
    db.commit()


def mark_job_failed(db: Session, job_id: str, error: object) -> None:
    job = _load(db, job_id)
    job.status = JobStatus.FAILED.value
    job.error = format_error(error)
    job.completed_at = utcnow()
    db.commit()
