from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image
from sqlalchemy import select

from conftest import USER_ID, build_pptx, drain, set_admin_setting
from slidecast.errors import IngestionError
from slidecast.models import Deck, DeckStatus, Job, JobStatus, JobType, Notification, Slide
from slidecast.services.doc_extractor import extract_pptx_slides, source_type_for
from slidecast.stages.ingest import soft_limit_warning


def _image_pdf(path: Path, pages: int) -> Path:
    images = [Image.new("RGB", (320, 180), "white") for _ in range(pages)]
    path.parent.mkdir(parents=True, exist_ok=True)
    images[0].save(path, format="PDF", save_all=True, append_images=images[1:])
    return path


def test_source_type_for_known_extensions():
    assert source_type_for("Deck.PPTX") == "PPTX"
    assert source_type_for("notes.pdf") == "PDF"
    with pytest.raises(ValueError):
        source_type_for("deck.key")


def test_pptx_extraction_orders_slides_and_reads_notes(tmp_path):
    source = build_pptx(
        tmp_path / "talk.pptx",
        [("Intro", "Hello there", "Say hi"), ("Body", "Line one\nLine two", None)],
    )

    slides = extract_pptx_slides(source)

    assert [slide.index for slide in slides] == [1, 2]
    assert slides[0].title == "Intro"
    assert slides[0].body == "Hello there"
    assert slides[0].notes == "Say hi"
    assert slides[1].body == "Line one\nLine two"
    assert slides[1].notes is None


def test_soft_limit_warning_text():
    assert soft_limit_warning(3, None) is None
    assert soft_limit_warning(3, 3) is None
    assert soft_limit_warning(4, 3) == (
        "Deck contains 4 slides which exceeds the soft limit of 3. Processing may take longer."
    )


def test_text_light_pdf_pages_fall_back_to_ocr(session_factory, services, make_deck, enqueue, tmp_path):
    services.ocr.text = "Revenue chart"
    deck_id = make_deck(_image_pdf(tmp_path / "uploads" / "charts.pdf", 2))
    enqueue(JobType.INGEST_DECK, deck_id)

    drain(services)

    db = session_factory()
    try:
        slides = db.scalars(select(Slide).where(Slide.deck_id == deck_id).order_by(Slide.index)).all()
        assert [slide.index for slide in slides] == [1, 2]
        assert all(slide.ocr_text == "Revenue chart" for slide in slides)
        # OCR text is still below the content threshold.
        assert all(slide.needs_image_context for slide in slides)
        assert db.get(Deck, deck_id).slide_count == 2
    finally:
        db.close()
    assert len(services.ocr.calls) == 2
    assert services.rasterizer.calls[0][1:] == ("PDF", 2)


def test_long_ocr_text_clears_image_context_flag(session_factory, services, make_deck, enqueue, tmp_path):
    services.ocr.text = "Operating margin expanded by four points while churn fell to a record low."
    deck_id = make_deck(_image_pdf(tmp_path / "uploads" / "charts.pdf", 1))
    enqueue(JobType.INGEST_DECK, deck_id)

    drain(services)

    db = session_factory()
    try:
        slide = db.scalar(select(Slide).where(Slide.deck_id == deck_id))
        assert slide.needs_image_context is False
    finally:
        db.close()


def test_soft_limit_adds_single_warning_and_notification(session_factory, services, make_deck, enqueue, three_slide_pptx):
    set_admin_setting(session_factory, "maxSlides", 2)
    deck_id = make_deck(three_slide_pptx)
    enqueue(JobType.INGEST_DECK, deck_id)
    drain(services)
    enqueue(JobType.INGEST_DECK, deck_id)
    drain(services)

    db = session_factory()
    try:
        deck = db.get(Deck, deck_id)
        assert deck.status == DeckStatus.READY_FOR_REVIEW.value
        assert deck.warnings == [soft_limit_warning(3, 2)]
        titles = db.scalars(select(Notification.title).where(Notification.user_id == USER_ID)).all()
        assert titles.count("Large deck detected") == 1
        assert titles.count("Deck ready for review") == 2
    finally:
        db.close()


def test_missing_source_file_fails_ingestion(session_factory, services, make_deck, enqueue, three_slide_pptx):
    deck_id = make_deck(three_slide_pptx)
    db = session_factory()
    try:
        Path(db.get(Deck, deck_id).source_path).unlink()
    finally:
        db.close()
    job_id = enqueue(JobType.INGEST_DECK, deck_id)

    with pytest.raises(IngestionError):
        drain(services)

    db = session_factory()
    try:
        assert db.get(Job, job_id).status == JobStatus.FAILED.value
        assert db.get(Deck, deck_id).status == DeckStatus.FAILED.value
        titles = db.scalars(select(Notification.title)).all()
        assert titles == ["Deck ingestion failed"]
    finally:
        db.close()
