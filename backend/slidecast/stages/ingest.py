from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from slidecast.errors import IngestionError
from slidecast.models import AudioAsset, Deck, DeckStatus, JobType, ProcessingMode, Script, ScriptStatus, Slide, VideoAsset
from slidecast.services.doc_extractor import ExtractedSlide, extract_slides
from slidecast.services.notifications import pluralize
from slidecast.stages.base import StageOutcome, StageProcessor


logger = logging.getLogger("slidecast.jobs")

RESET_SEGMENTS = ("slides", "audio", "video", "final")


def soft_limit_warning(slide_count: int, max_slides: int | None) -> str | None:
    if not max_slides or slide_count <= max_slides:
        return None
    return (
        f"Deck contains {slide_count} slides which exceeds the soft limit of {max_slides}. "
        "Processing may take longer."
    )


class IngestProcessor(StageProcessor):
    job_type = JobType.INGEST_DECK
    stage = "ingest"
    running_status = DeckStatus.INGESTING
    success_title = "Deck ready for review"
    chained_title = "Deck ingestion complete"
    failure_title = "Deck ingestion failed"

    def resolve_scope(self, db: Session, deck: Deck, selection: list[str] | None) -> list[Slide]:
        # Ingest always rebuilds the whole deck; there is nothing to select yet.
        return []

    def success_title_for(self, deck: Deck) -> str:
        if deck.mode == ProcessingMode.ONE_SHOT.value:
            return self.chained_title
        return self.success_title

    def execute(self, db: Session, deck: Deck, slides: list[Slide], job_id: str) -> StageOutcome:
        services = self.services
        layout = services.layout

        layout.ensure_deck_storage(deck.id)
        for segment in RESET_SEGMENTS:
            layout.clear_deck_segment(deck.id, segment)
        self._reset_deck_rows(db, deck)

        source = Path(deck.source_path or "")
        if not deck.source_path or not source.exists():
            raise IngestionError(f"Source file for deck {deck.id} is missing")

        extracted = extract_slides(source, deck.source_type)
        image_paths = [layout.slide_image_path(deck.id, row.index) for row in extracted]
        if extracted:
            services.rasterizer.rasterize(source, deck.source_type, image_paths)
        services.trace.log(job_id, self.stage, "ingest_extracted", slide_count=len(extracted))

        min_chars = services.settings.min_slide_text_chars
        for row, image_path in zip(extracted, image_paths):
            self._apply_ocr(row, image_path, min_chars)

        limits = services.admin.soft_limits()
        warning = soft_limit_warning(len(extracted), limits.max_slides)
        if warning and warning not in deck.warnings:
            deck.warnings = [*deck.warnings, warning]
            db.commit()
            services.notifier.notify(deck.owner_id, "Large deck detected", warning)

        def _persist(item: tuple[ExtractedSlide, Path]) -> None:
            row, image_path = item
            slide = Slide(
                deck_id=deck.id,
                index=row.index,
                title=row.title,
                body=row.body,
                speaker_notes=row.notes,
                ocr_text=row.ocr_text,
                image_path=str(image_path) if image_path.exists() else None,
                needs_image_context=row.needs_image_context,
            )
            db.add(slide)
            db.flush()
            db.add(Script(slide_id=slide.id, content="", status=ScriptStatus.PENDING.value))

        processed = self.run_units(db, job_id, list(zip(extracted, image_paths)), _persist)
        deck.slide_count = processed
        db.commit()
        db.expire(deck, ["slides"])

        return StageOutcome(
            processed=processed,
            message=f'"{deck.title}" was ingested with {pluralize(processed, "slide")}.',
            chain=processed > 0,
        )

    def _apply_ocr(self, row: ExtractedSlide, image_path: Path, min_chars: int) -> None:
        if row.text_length() >= min_chars:
            return
        text = self.services.ocr.extract_text(image_path)
        if text:
            row.ocr_text = text
        row.needs_image_context = row.text_length() < min_chars

    def _reset_deck_rows(self, db: Session, deck: Deck) -> None:
        slide_ids = select(Slide.id).where(Slide.deck_id == deck.id)
        for model in (AudioAsset, VideoAsset, Script):
            db.execute(
                delete(model).where(model.slide_id.in_(slide_ids)),
                execution_options={"synchronize_session": False},
            )
        db.execute(delete(Slide).where(Slide.deck_id == deck.id), execution_options={"synchronize_session": False})
        deck.slide_count = 0
        deck.final_video_path = None
        deck.final_video_duration = None
        db.commit()
        db.expire(deck, ["slides"])
