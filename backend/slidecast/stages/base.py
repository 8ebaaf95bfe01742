"""Shared state machine for every stage job.

Admitted -> Running -> Succeeded | Failed, with an optional auto-chain on success
when the deck runs in ONE_SHOT mode. Subclasses supply the scope and the per-slide
unit of work; this module owns every job/deck state transition.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from slidecast.errors import DeckNotFoundError, SelectionError, format_error
from slidecast.jobs.context import WorkerServices
from slidecast.jobs.lifecycle import mark_job_failed, mark_job_progress, mark_job_running, mark_job_succeeded
from slidecast.jobs.pipeline import descriptor_for
from slidecast.jobs.queue import create_and_enqueue_job
from slidecast.models import AssetStatus, AudioAsset, Deck, DeckStatus, Job, JobType, ProcessingMode, Slide, VideoAsset


logger = logging.getLogger("slidecast.jobs")

T = TypeVar("T")


@dataclass
class StageOutcome:
    processed: int
    message: str
    chain: bool = True


def requested_slide_ids(db: Session, payload) -> list[str] | None:
    if payload.slide_ids:
        return list(dict.fromkeys(payload.slide_ids))
    job = db.get(Job, payload.job_id)
    stored = job.payload.get("slide_ids") if job is not None else None
    if isinstance(stored, list) and stored:
        return list(dict.fromkeys(str(value) for value in stored))
    return None


def upsert_asset(
    db: Session,
    model: type[AudioAsset] | type[VideoAsset],
    *,
    slide: Slide,
    file_path: Path,
    status: AssetStatus,
    duration: float | None = None,
):
    asset = db.scalar(select(model).where(model.slide_id == slide.id))
    if asset is None:
        asset = model(slide_id=slide.id, deck_id=slide.deck_id, file_path=str(file_path))
        db.add(asset)
    asset.file_path = str(file_path)
    asset.status = status.value
    if duration is not None:
        asset.duration = duration
    db.commit()
    return asset


class StageProcessor:
    job_type: JobType
    stage: str = "job"
    running_status: DeckStatus = DeckStatus.GENERATING
    success_title: str = "Stage complete"
    failure_title: str = "Stage failed"

    def __init__(self, services: WorkerServices):
        self.services = services

    # Hooks

    def resolve_scope(self, db: Session, deck: Deck, selection: list[str] | None) -> list[Slide]:
        slides = sorted(deck.slides, key=lambda slide: slide.index)
        if selection:
            wanted = set(selection)
            slides = [slide for slide in slides if slide.id in wanted]
        if not slides:
            raise SelectionError("No slides matched the requested selection")
        return slides

    def execute(self, db: Session, deck: Deck, slides: list[Slide], job_id: str) -> StageOutcome:
        raise NotImplementedError

    def success_title_for(self, deck: Deck) -> str:
        return self.success_title

    def success_status(self, deck: Deck) -> DeckStatus:
        if deck.mode == ProcessingMode.ONE_SHOT.value:
            return DeckStatus.GENERATING
        return DeckStatus.READY_FOR_REVIEW

    # Driver

    def run(self, payload) -> StageOutcome:
        db = self.services.session_factory()
        try:
            return self._run(db, payload)
        finally:
            db.close()

    def _run(self, db: Session, payload) -> StageOutcome:
        trace = self.services.trace
        deck = db.get(Deck, payload.deck_id)
        if deck is None:
            error = DeckNotFoundError(payload.deck_id)
            mark_job_failed(db, payload.job_id, error)
            trace.log(payload.job_id, self.stage, f"{self.stage}_job_failed", reason=format_error(error))
            self.services.notifier.notify(payload.user_id, self.failure_title, format_error(error))
            raise error

        selection = requested_slide_ids(db, payload)
        try:
            slides = self.resolve_scope(db, deck, selection)
        except SelectionError as exc:
            mark_job_failed(db, payload.job_id, exc)
            trace.log(payload.job_id, self.stage, f"{self.stage}_job_failed", reason=format_error(exc))
            self.services.notifier.notify(payload.user_id, self.failure_title, format_error(exc))
            raise

        deck.status = self.running_status.value
        mark_job_running(db, payload.job_id)
        started = perf_counter()
        trace.log(
            payload.job_id,
            self.stage,
            f"{self.stage}_job_start",
            deck_id=deck.id,
            slide_count=len(slides),
            selection=selection,
        )

        try:
            outcome = self.execute(db, deck, slides, payload.job_id)
        except Exception as exc:
            self._record_failure(db, payload, exc)
            raise

        deck.status = self.success_status(deck).value
        mark_job_succeeded(db, payload.job_id)
        trace.log(
            payload.job_id,
            self.stage,
            f"{self.stage}_job_complete",
            processed=outcome.processed,
            duration_sec=f"{perf_counter() - started:.2f}",
        )
        self.services.notifier.notify(payload.user_id, self.success_title_for(deck), outcome.message)
        try:
            self._chain(db, deck, payload, selection, outcome)
        except Exception as exc:
            self._record_chain_failure(db, payload, exc)
            raise
        return outcome

    def run_units(self, db: Session, job_id: str, items: Iterable[T], unit: Callable[[T], None]) -> int:
        rows = list(items)
        total = len(rows)
        processed = 0
        for item in rows:
            unit(item)
            processed += 1
            mark_job_progress(db, job_id, processed, total)
        return processed

    def _record_failure(self, db: Session, payload, exc: Exception) -> None:
        reason = format_error(exc)
        try:
            db.rollback()
            deck = db.get(Deck, payload.deck_id)
            if deck is not None:
                deck.status = DeckStatus.FAILED.value
            mark_job_failed(db, payload.job_id, exc)
        except Exception:
            logger.exception("job=%s unable to persist failure state", payload.job_id)
        self.services.trace.log(payload.job_id, self.stage, f"{self.stage}_job_failed", reason=reason)
        self.services.notifier.notify(payload.user_id, self.failure_title, reason)

    def _record_chain_failure(self, db: Session, payload, exc: Exception) -> None:
        # The finished job stays SUCCEEDED; the deck cannot progress without its successor.
        successor = descriptor_for(self.job_type).successor
        label = descriptor_for(successor).label if successor is not None else self.stage
        reason = format_error(exc)
        try:
            db.rollback()
            deck = db.get(Deck, payload.deck_id)
            if deck is not None:
                deck.status = DeckStatus.FAILED.value
                db.commit()
        except Exception:
            logger.exception("job=%s unable to persist chain failure state", payload.job_id)
        self.services.trace.log(
            payload.job_id, self.stage, f"{self.stage}_auto_chain_failed", next_stage=label, reason=reason
        )
        self.services.notifier.notify(payload.user_id, f"{label} could not be queued", reason)

    def _chain(self, db: Session, deck: Deck, payload, selection: list[str] | None, outcome: StageOutcome) -> Job | None:
        descriptor = descriptor_for(self.job_type)
        if descriptor.successor is None or not outcome.chain:
            return None
        if deck.mode != ProcessingMode.ONE_SHOT.value:
            return None
        job = create_and_enqueue_job(
            db,
            self.services.queue,
            job_type=descriptor.successor,
            deck_id=deck.id,
            user_id=payload.user_id,
            slide_ids=selection if descriptor.forwards_selection else None,
            trigger="auto",
        )
        self.services.trace.log(
            payload.job_id,
            self.stage,
            f"{self.stage}_auto_chain",
            next_job_id=job.id,
            next_job_type=descriptor.successor.value,
            next_stage=descriptor_for(descriptor.successor).label,
        )
        return job
