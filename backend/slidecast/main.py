from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from slidecast.celery_app import celery_app
from slidecast.config import settings
from slidecast.db import SessionLocal, get_db, init_db
from slidecast.errors import AdmissionError, ConcurrencyLimitError, StageAlreadyActiveError
from slidecast.jobs.admission import admit_job
from slidecast.jobs.pipeline import ACTION_TARGETS
from slidecast.jobs.queue import CeleryJobQueue, JobQueue, create_and_enqueue_job
from slidecast.logging_utils import configure_logging
from slidecast.models import Deck, DeckStatus, Job, JobType, ProcessingMode
from slidecast.schemas import (
    DeckActionRequest,
    DeckCreatedOut,
    DeckWorkspaceOut,
    JobOut,
    JobQueuedOut,
    SystemOverviewOut,
)
from slidecast.services.admin_settings import AdminSettings
from slidecast.services.deck_summary import build_deck_workspace, build_system_overview
from slidecast.services.doc_extractor import SUPPORTED_EXTENSIONS, source_type_for
from slidecast.services.health import HealthFlagStore
from slidecast.services.notifications import Notifier
from slidecast.storage import StorageLayout


logger = logging.getLogger("slidecast.api")

app = FastAPI(title=settings.app_name)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    configure_logging(quiet_job_polls=True)
    init_db()


# Dependencies


def get_job_queue() -> JobQueue:
    return CeleryJobQueue(celery_app, queue_name=settings.celery_queue)


def get_admin_settings() -> AdminSettings:
    return AdminSettings(SessionLocal, settings)


def get_layout() -> StorageLayout:
    return StorageLayout(settings.storage_root)


def get_health_store() -> HealthFlagStore:
    return HealthFlagStore(SessionLocal)


def get_notifier() -> Notifier:
    return Notifier(SessionLocal)


def get_current_user_id(x_user_id: str = Header(...)) -> str:
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return user_id


def _admission_http_error(exc: AdmissionError) -> HTTPException:
    if isinstance(exc, ConcurrencyLimitError):
        return HTTPException(status_code=429, detail=str(exc))
    if isinstance(exc, StageAlreadyActiveError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _load_owned_deck(db: Session, deck_id: str, user_id: str) -> Deck:
    deck = db.get(Deck, deck_id)
    if not deck or deck.owner_id != user_id:
        raise HTTPException(status_code=404, detail="Deck not found")
    return deck


def _file_size_warning(size_bytes: int, limit_mb: float | None) -> str | None:
    if not limit_mb:
        return None
    size_mb = size_bytes / (1024 * 1024)
    if size_mb <= limit_mb:
        return None
    return (
        f"Uploaded file is {size_mb:.1f} MB which exceeds the soft limit of {limit_mb:g} MB. "
        "Processing may take longer."
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post(f"{settings.api_prefix}/decks", response_model=DeckCreatedOut, status_code=201)
async def upload_deck(
    file: UploadFile = File(...),
    title: str | None = Form(default=None),
    mode: str | None = Form(default=None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
    admin: AdminSettings = Depends(get_admin_settings),
    layout: StorageLayout = Depends(get_layout),
    notifier: Notifier = Depends(get_notifier),
):
    try:
        source_type = source_type_for(file.filename or "")
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unsupported extension. Allowed: {sorted(SUPPORTED_EXTENSIONS)}")

    if mode:
        if mode.upper() not in ProcessingMode.__members__:
            raise HTTPException(status_code=400, detail=f"Unknown processing mode: {mode}")
        processing_mode = ProcessingMode[mode.upper()]
    else:
        processing_mode = admin.default_processing_mode()

    try:
        admit_job(db, admin, user_id=user_id, deck_id=None, job_type=JobType.INGEST_DECK)
    except AdmissionError as exc:
        raise _admission_http_error(exc)

    content = await file.read()
    warnings: list[str] = []
    size_warning = _file_size_warning(len(content), admin.soft_limits().max_file_size_mb)
    if size_warning:
        warnings.append(size_warning)

    deck = Deck(
        owner_id=user_id,
        title=(title or "").strip() or (file.filename or "Untitled deck").rsplit(".", 1)[0],
        source_type=source_type,
        mode=processing_mode.value,
        status=DeckStatus.INGESTING.value,
    )
    db.add(deck)
    db.flush()

    layout.ensure_deck_storage(deck.id)
    source_path = layout.deck_source_path(deck.id, file.filename or f"source.{source_type.lower()}")
    source_path.write_bytes(content)
    deck.source_path = str(source_path)
    deck.warnings = warnings
    db.commit()

    if size_warning:
        notifier.notify(user_id, "Large upload detected", size_warning)

    try:
        job = create_and_enqueue_job(db, queue, job_type=JobType.INGEST_DECK, deck_id=deck.id, user_id=user_id)
    except Exception as exc:
        logger.exception("enqueue_failed deck=%s", deck.id)
        raise HTTPException(status_code=503, detail=f"Unable to queue ingestion: {exc}")

    logger.info("deck_uploaded deck=%s user=%s source_type=%s job=%s", deck.id, user_id, source_type, job.id)
    return DeckCreatedOut(deck_id=deck.id, job_id=job.id, warnings=deck.warnings)


@app.post(f"{settings.api_prefix}/decks/{{deck_id}}/actions", response_model=JobQueuedOut)
def run_deck_action(
    deck_id: str,
    req: DeckActionRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
    admin: AdminSettings = Depends(get_admin_settings),
):
    deck = _load_owned_deck(db, deck_id, user_id)
    job_type = ACTION_TARGETS[req.target]

    slide_ids = None if job_type == JobType.ASSEMBLE_FINAL else req.slide_ids
    if slide_ids:
        known = {slide.id for slide in deck.slides}
        unknown = [slide_id for slide_id in slide_ids if slide_id not in known]
        if unknown:
            raise HTTPException(status_code=400, detail=f"Slides not found in deck: {', '.join(unknown)}")
    elif job_type != JobType.ASSEMBLE_FINAL and not deck.slides:
        raise HTTPException(status_code=400, detail="Deck has no slides yet")

    try:
        admit_job(
            db,
            admin,
            user_id=user_id,
            deck_id=deck.id,
            job_type=job_type,
            single_flight=settings.enforce_single_flight,
        )
    except AdmissionError as exc:
        raise _admission_http_error(exc)

    try:
        job = create_and_enqueue_job(
            db,
            queue,
            job_type=job_type,
            deck_id=deck.id,
            user_id=user_id,
            slide_ids=slide_ids,
        )
    except Exception as exc:
        logger.exception("enqueue_failed deck=%s type=%s", deck.id, job_type.value)
        raise HTTPException(status_code=503, detail=f"Unable to queue job: {exc}")
    return JobQueuedOut(job_id=job.id, type=job.type)


@app.get(f"{settings.api_prefix}/decks/{{deck_id}}", response_model=DeckWorkspaceOut)
def get_deck(deck_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    deck = _load_owned_deck(db, deck_id, user_id)
    return build_deck_workspace(db, deck)


@app.get(f"{settings.api_prefix}/jobs/{{job_id}}", response_model=JobOut)
def get_job(job_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    job = db.get(Job, job_id)
    if not job or job.owner_id != user_id:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@app.get(f"{settings.api_prefix}/system/overview", response_model=SystemOverviewOut)
def system_overview(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    health_store: HealthFlagStore = Depends(get_health_store),
):
    return build_system_overview(db, health_store, user_id=user_id)
