from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from slidecast.config import settings
from slidecast.models import JobEvent, utcnow


logger = logging.getLogger("slidecast.jobs")


def _safe_json(value: Any) -> str:
    try:
        return json.dumps(value if value is not None else {}, ensure_ascii=False, default=str)
    except Exception:
        return "{}"


def preview_text(text: str | None, limit: int | None = None) -> str:
    raw = str(text or "").replace("\r", " ").replace("\n", " ").strip()
    if not raw:
        return ""
    cap = int(limit or settings.log_preview_chars)
    if len(raw) <= cap:
        return raw
    return raw[:cap].rstrip() + " ..."


def _severity(event_type: str) -> str:
    lower = event_type.lower()
    if "failed" in lower:
        return "error"
    if "warning" in lower:
        return "warning"
    return "info"


class JobTrace:
    def __init__(self, session_factory: Callable[[], Session], *, persist: bool | None = None):
        self._session_factory = session_factory
        self.persist = settings.persist_job_events if persist is None else persist

    def record(self, job_id: str, stage: str, event_type: str, payload: dict[str, Any] | None = None) -> None:
        if not self.persist:
            return
        db = self._session_factory()
        try:
            db.add(
                JobEvent(
                    job_id=job_id,
                    ts=utcnow(),
                    stage=stage,
                    event_type=event_type,
                    payload_json=_safe_json(payload),
                    severity=_severity(event_type),
                )
            )
            db.commit()
        except Exception:
            db.rollback()
        finally:
            db.close()

    def log(self, job_id: str, stage: str, message: str, **fields) -> None:
        self.record(job_id, stage, message, {key: value for key, value in fields.items() if value is not None})
        try:
            details = " ".join(
                f"{key}={json.dumps(value, ensure_ascii=False, default=str)}"
                for key, value in fields.items()
                if value is not None
            )
            if details:
                logger.info("job=%s %s | %s", job_id, message, details)
            else:
                logger.info("job=%s %s", job_id, message)
        except Exception:
            # Logging must never break task execution.
            logger.info("job=%s %s | log_error=true", job_id, message)

    def events(self, job_id: str, *, limit: int = 400) -> list[JobEvent]:
        db = self._session_factory()
        try:
            return list(
                db.scalars(
                    select(JobEvent)
                    .where(JobEvent.job_id == job_id)
                    .order_by(JobEvent.ts.asc(), JobEvent.id.asc())
                    .limit(max(1, limit))
                ).all()
            )
        finally:
            db.close()
