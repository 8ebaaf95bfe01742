from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from slidecast.models import AssetStatus, Deck, DeckStatus, Job, Notification, ScriptStatus
from slidecast.schemas import (
    DeckWorkspaceOut,
    HealthFlagOut,
    JobOut,
    NotificationOut,
    SlideOut,
    StageProgressOut,
    SystemOverviewOut,
)
from slidecast.services.health import HealthFlagStore


def _stage(ready: int, total: int) -> StageProgressOut:
    return StageProgressOut(ready=ready, total=total, progress=(ready / total) if total else 0.0)


def build_deck_workspace(db: Session, deck: Deck, *, job_limit: int = 20) -> DeckWorkspaceOut:
    slides = sorted(deck.slides, key=lambda slide: slide.index)
    total = len(slides)

    scripts_ready = sum(1 for slide in slides if slide.script and slide.script.status == ScriptStatus.READY.value)
    audio_ready = [
        slide.audio_asset
        for slide in slides
        if slide.audio_asset is not None and slide.audio_asset.status == AssetStatus.READY.value
    ]
    video_ready = sum(
        1 for slide in slides if slide.video_asset is not None and slide.video_asset.status == AssetStatus.READY.value
    )
    final_done = 1 if deck.status == DeckStatus.COMPLETE.value and deck.final_video_path else 0

    progress = {
        "scripts": _stage(scripts_ready, total),
        "audio": _stage(len(audio_ready), total),
        "video": _stage(video_ready, total),
        "final": _stage(final_done, 1),
    }
    overall = sum(row.progress for row in progress.values()) / len(progress)

    jobs = db.scalars(
        select(Job).where(Job.deck_id == deck.id).order_by(Job.created_at.desc()).limit(max(1, job_limit))
    ).all()

    return DeckWorkspaceOut(
        id=deck.id,
        title=deck.title,
        source_type=deck.source_type,
        status=deck.status,
        mode=deck.mode,
        slide_count=deck.slide_count,
        final_video_path=deck.final_video_path,
        final_video_duration=deck.final_video_duration,
        estimated_seconds=round(sum(asset.duration or 0.0 for asset in audio_ready), 2),
        warnings=deck.warnings,
        progress=progress,
        overall_progress=overall,
        slides=[
            SlideOut(
                id=slide.id,
                index=slide.index,
                title=slide.title,
                body=slide.body,
                speaker_notes=slide.speaker_notes,
                needs_image_context=slide.needs_image_context,
                script=slide.script.content if slide.script else "",
                script_status=slide.script.status if slide.script else ScriptStatus.PENDING.value,
                audio_status=slide.audio_asset.status if slide.audio_asset else AssetStatus.PENDING.value,
                video_status=slide.video_asset.status if slide.video_asset else AssetStatus.PENDING.value,
            )
            for slide in slides
        ],
        jobs=[JobOut.model_validate(row) for row in jobs],
    )


def build_system_overview(db: Session, health: HealthFlagStore, *, user_id: str, limit: int = 10) -> SystemOverviewOut:
    flags = health.snapshot()
    notifications = db.scalars(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    ).all()
    jobs = db.scalars(select(Job).where(Job.owner_id == user_id).order_by(Job.created_at.desc()).limit(limit)).all()
    return SystemOverviewOut(
        out_of_order=any(flag.active for flag in flags),
        services=[
            HealthFlagOut(service=flag.service, active=flag.active, message=flag.message, updated_at=flag.updated_at)
            for flag in flags
        ],
        notifications=[NotificationOut.model_validate(row) for row in notifications],
        jobs=[JobOut.model_validate(row) for row in jobs],
    )
