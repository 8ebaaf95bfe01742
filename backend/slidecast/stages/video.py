from __future__ import annotations

from pathlib import Path

from sqlalchemy.orm import Session

from slidecast.errors import MediaError
from slidecast.models import AssetStatus, Deck, JobType, Slide, VideoAsset
from slidecast.services.notifications import pluralize
from slidecast.stages.base import StageOutcome, StageProcessor, upsert_asset


class VideoProcessor(StageProcessor):
    job_type = JobType.GENERATE_VIDEO
    stage = "video"
    success_title = "Slide videos rendered"
    failure_title = "Slide rendering failed"

    def execute(self, db: Session, deck: Deck, slides: list[Slide], job_id: str) -> StageOutcome:
        services = self.services

        def _render(slide: Slide) -> None:
            target = services.layout.slide_video_path(deck.id, slide.index)
            upsert_asset(db, VideoAsset, slide=slide, file_path=target, status=AssetStatus.PROCESSING)
            try:
                image = services.layout.slide_image_path(deck.id, slide.index)
                if slide.image_path:
                    image = Path(slide.image_path)
                audio = services.layout.slide_audio_path(deck.id, slide.index)
                if slide.audio_asset is not None and slide.audio_asset.file_path:
                    audio = Path(slide.audio_asset.file_path)
                if not image.exists():
                    raise MediaError(f"Slide {slide.index} has no rendered image")
                if not audio.exists():
                    raise MediaError(f"Slide {slide.index} has no narration audio")
                services.media.render_slide_video(image, audio, target)
            except Exception:
                db.rollback()
                upsert_asset(db, VideoAsset, slide=slide, file_path=target, status=AssetStatus.FAILED)
                raise

            duration = services.media.probe_duration(target)
            upsert_asset(db, VideoAsset, slide=slide, file_path=target, status=AssetStatus.READY, duration=duration)
            services.trace.log(job_id, self.stage, "slide_rendered", slide_index=slide.index, duration=duration)

        processed = self.run_units(db, job_id, slides, _render)
        return StageOutcome(
            processed=processed,
            message=f'Rendered {pluralize(processed, "slide video")} for "{deck.title}".',
        )
