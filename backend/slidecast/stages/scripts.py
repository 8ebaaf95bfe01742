from __future__ import annotations

from sqlalchemy.orm import Session

from slidecast.errors import SelectionError
from slidecast.models import Deck, JobType, ScriptStatus, Slide
from slidecast.services.job_trace import preview_text
from slidecast.services.notifications import pluralize
from slidecast.services.prompt_templates import build_slide_context
from slidecast.stages.base import StageOutcome, StageProcessor


class ScriptProcessor(StageProcessor):
    job_type = JobType.GENERATE_SCRIPTS
    stage = "scripts"
    success_title = "Scripts generated"
    failure_title = "Script generation failed"

    def resolve_scope(self, db: Session, deck: Deck, selection: list[str] | None) -> list[Slide]:
        slides = [slide for slide in super().resolve_scope(db, deck, selection) if slide.script is not None]
        if not slides:
            raise SelectionError("None of the selected slides has a script record")
        return slides

    def execute(self, db: Session, deck: Deck, slides: list[Slide], job_id: str) -> StageOutcome:
        admin = self.services.admin
        model = admin.resolve_script_model(deck.script_model)
        system_prompt = admin.system_prompt()
        ordered = sorted(deck.slides, key=lambda slide: slide.index)
        position = {slide.id: pos for pos, slide in enumerate(ordered)}

        def _write(slide: Slide) -> None:
            script = slide.script
            script.status = ScriptStatus.REGENERATING.value
            db.commit()

            pos = position[slide.id]
            neighbors = [
                build_slide_context(row, attach_image=False)
                for row in ordered[max(0, pos - 1) : pos + 2]
                if row.id != slide.id
            ]
            try:
                content = self.services.script_writer.write_script(
                    model=model,
                    system_prompt=system_prompt,
                    deck_title=deck.title,
                    target=build_slide_context(slide),
                    neighbors=neighbors,
                )
            except Exception:
                db.rollback()
                script.status = ScriptStatus.FAILED.value
                db.commit()
                raise

            script.content = content
            script.status = ScriptStatus.READY.value
            db.commit()
            self.services.trace.log(
                job_id,
                self.stage,
                "script_ready",
                slide_index=slide.index,
                model=model,
                preview=preview_text(content, self.services.settings.log_preview_chars),
            )

        processed = self.run_units(db, job_id, slides, _write)
        return StageOutcome(
            processed=processed,
            message=f'Narration scripts are ready for {pluralize(processed, "slide")} in "{deck.title}".',
        )
