from __future__ import annotations

from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session

from slidecast.errors import AssemblyError
from slidecast.models import AssetStatus, Deck, DeckStatus, JobType, Slide, VideoAsset
from slidecast.services.notifications import pluralize
from slidecast.stages.base import StageOutcome, StageProcessor


class AssembleProcessor(StageProcessor):
    """Concatenates every READY slide clip, in slide order, into the deck's final video."""

    job_type = JobType.ASSEMBLE_FINAL
    stage = "assemble"
    success_title = "Final video ready"
    failure_title = "Final assembly failed"

    def resolve_scope(self, db: Session, deck: Deck, selection: list[str] | None) -> list[Slide]:
        # Selections are ignored; an empty result fails inside execute() so the deck is marked FAILED.
        return list(
            db.scalars(
                select(Slide)
                .join(VideoAsset, VideoAsset.slide_id == Slide.id)
                .where(Slide.deck_id == deck.id, VideoAsset.status == AssetStatus.READY.value)
                .order_by(Slide.index.asc())
            ).all()
        )

    def success_status(self, deck: Deck) -> DeckStatus:
        return DeckStatus.COMPLETE

    def execute(self, db: Session, deck: Deck, slides: list[Slide], job_id: str) -> StageOutcome:
        if not slides:
            raise AssemblyError("No rendered slide videos available to assemble")

        services = self.services
        clips = [Path(slide.video_asset.file_path) for slide in slides]
        missing = [str(path) for path in clips if not path.exists()]
        if missing:
            raise AssemblyError(f"Missing slide clips: {', '.join(missing)}")

        target = services.layout.final_video_path(deck.id)
        services.media.concat_videos(clips, target)
        duration = services.media.probe_duration(target)

        deck.final_video_path = str(target)
        deck.final_video_duration = duration
        db.commit()
        services.trace.log(job_id, self.stage, "final_assembled", clips=len(clips), duration=duration)

        return StageOutcome(
            processed=len(clips),
            message=f'"{deck.title}" is ready to watch ({pluralize(len(clips), "slide")}).',
        )
