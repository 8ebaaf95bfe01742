from __future__ import annotations

from sqlalchemy.orm import Session

from slidecast.errors import ScriptGenerationError
from slidecast.models import AssetStatus, AudioAsset, Deck, JobType, Slide
from slidecast.services.notifications import pluralize
from slidecast.stages.base import StageOutcome, StageProcessor, upsert_asset


class AudioProcessor(StageProcessor):
    job_type = JobType.GENERATE_AUDIO
    stage = "audio"
    success_title = "Audio generated"
    failure_title = "Audio generation failed"

    def execute(self, db: Session, deck: Deck, slides: list[Slide], job_id: str) -> StageOutcome:
        services = self.services
        voice = services.admin.resolve_voice(deck.voice)
        tts_model = services.admin.resolve_tts_model(deck.tts_model)
        voice_settings = services.admin.voice_settings(voice)
        services.trace.log(job_id, self.stage, "audio_voice_resolved", voice=voice, model=tts_model)
        total_seconds = 0.0

        def _synthesize(slide: Slide) -> None:
            nonlocal total_seconds
            target = services.layout.slide_audio_path(deck.id, slide.index)
            upsert_asset(db, AudioAsset, slide=slide, file_path=target, status=AssetStatus.PROCESSING)
            try:
                text = (slide.script.content if slide.script is not None else "").strip()
                if not text:
                    raise ScriptGenerationError(f"Slide {slide.index} has no narration script to synthesize")
                audio = services.synthesizer.synthesize(
                    text=text,
                    voice_id=voice,
                    model_id=tts_model,
                    voice_settings=voice_settings,
                )
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(audio)
            except Exception:
                db.rollback()
                upsert_asset(db, AudioAsset, slide=slide, file_path=target, status=AssetStatus.FAILED)
                raise

            duration = services.media.probe_duration(target)
            upsert_asset(db, AudioAsset, slide=slide, file_path=target, status=AssetStatus.READY, duration=duration)
            total_seconds += duration or 0.0

        processed = self.run_units(db, job_id, slides, _synthesize)
        return StageOutcome(
            processed=processed,
            message=(
                f'Narration audio is ready for {pluralize(processed, "slide")} in "{deck.title}" '
                f"({total_seconds:.0f}s total)."
            ),
        )
