from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import func, select

from conftest import USER_ID, drain
from slidecast.errors import AssemblyError, DeckNotFoundError, SelectionError, ServiceResponseError
from slidecast.jobs.dispatch import run_job
from slidecast.models import (
    AssetStatus,
    AudioAsset,
    Deck,
    DeckStatus,
    Job,
    JobEvent,
    JobStatus,
    JobType,
    Notification,
    ProcessingMode,
    Script,
    ScriptStatus,
    Slide,
    VideoAsset,
)
from slidecast.services.health import ExternalService
from slidecast.stages import base


def _deck(session_factory, deck_id: str) -> Deck:
    db = session_factory()
    try:
        deck = db.get(Deck, deck_id)
        db.expunge(deck)
        return deck
    finally:
        db.close()


def _slides(session_factory, deck_id: str) -> list[tuple[str, int, str | None, str | None]]:
    """(slide_id, index, audio_status, script_status) in index order."""
    db = session_factory()
    try:
        rows = db.scalars(select(Slide).where(Slide.deck_id == deck_id).order_by(Slide.index)).all()
        return [
            (
                row.id,
                row.index,
                row.audio_asset.status if row.audio_asset else None,
                row.script.status if row.script else None,
            )
            for row in rows
        ]
    finally:
        db.close()


def _jobs(session_factory, deck_id: str) -> list[Job]:
    db = session_factory()
    try:
        rows = db.scalars(select(Job).where(Job.deck_id == deck_id).order_by(Job.created_at)).all()
        for row in rows:
            db.expunge(row)
        return list(rows)
    finally:
        db.close()


def _count(session_factory, model, *criteria) -> int:
    db = session_factory()
    try:
        return int(db.scalar(select(func.count()).select_from(model).where(*criteria)) or 0)
    finally:
        db.close()


def test_review_mode_ingestion_creates_pending_scripts_without_chaining(session_factory, services, ingested_deck):
    deck = _deck(session_factory, ingested_deck)
    assert deck.status == DeckStatus.READY_FOR_REVIEW.value
    assert deck.slide_count == 3

    slides = _slides(session_factory, ingested_deck)
    assert [index for _, index, _, _ in slides] == [1, 2, 3]
    assert all(script_status == ScriptStatus.PENDING.value for *_, script_status in slides)

    jobs = _jobs(session_factory, ingested_deck)
    assert [job.type for job in jobs] == [JobType.INGEST_DECK.value]
    assert jobs[0].status == JobStatus.SUCCEEDED.value
    assert jobs[0].progress == 1.0
    assert services.queue.pending == []


def test_ingestion_reads_pptx_text_and_notes(session_factory, ingested_deck):
    db = session_factory()
    try:
        first = db.scalar(select(Slide).where(Slide.deck_id == ingested_deck, Slide.index == 1))
        assert first.title == "Welcome"
        assert "subscription renewals" in first.body
        assert first.speaker_notes == "Greet the audience and introduce the agenda."
        assert first.needs_image_context is False
        assert first.image_path and Path(first.image_path).exists()
    finally:
        db.close()


def test_one_shot_mode_runs_the_whole_pipeline(session_factory, services, make_deck, enqueue, three_slide_pptx):
    deck_id = make_deck(three_slide_pptx, mode=ProcessingMode.ONE_SHOT)
    enqueue(JobType.INGEST_DECK, deck_id)

    ran = drain(services)

    assert ran == [
        JobType.INGEST_DECK,
        JobType.GENERATE_SCRIPTS,
        JobType.GENERATE_AUDIO,
        JobType.GENERATE_VIDEO,
        JobType.ASSEMBLE_FINAL,
    ]
    deck = _deck(session_factory, deck_id)
    assert deck.status == DeckStatus.COMPLETE.value
    assert deck.final_video_path and Path(deck.final_video_path).exists()
    assert deck.final_video_duration == pytest.approx(4.0)

    jobs = _jobs(session_factory, deck_id)
    assert all(job.status == JobStatus.SUCCEEDED.value for job in jobs)
    assert all(job.progress == 1.0 for job in jobs)
    assemble_job = jobs[-1]
    assert assemble_job.type == JobType.ASSEMBLE_FINAL.value
    assert "slide_ids" not in assemble_job.payload
    assert [payload.slide_ids for _, payload in services.queue.history] == [None] * 5

    clips = services.media.concatenated[0]
    assert [clip.name for clip in clips] == ["0001.mp4", "0002.mp4", "0003.mp4"]


def test_one_shot_ingestion_queues_exactly_one_script_job(session_factory, services, make_deck, enqueue, three_slide_pptx):
    deck_id = make_deck(three_slide_pptx, mode=ProcessingMode.ONE_SHOT)
    enqueue(JobType.INGEST_DECK, deck_id)
    job_type, payload = services.queue.pending.pop(0)

    run_job(job_type, payload, services)

    assert [queued for queued, _ in services.queue.pending] == [JobType.GENERATE_SCRIPTS]
    assert services.queue.pending[0][1].deck_id == deck_id
    assert _deck(session_factory, deck_id).status == DeckStatus.GENERATING.value
    assert _count(session_factory, Job, Job.deck_id == deck_id, Job.type == JobType.GENERATE_SCRIPTS.value) == 1


def test_script_generation_uses_model_and_marks_scripts_ready(session_factory, services, fake_http, enqueue, ingested_deck):
    enqueue(JobType.GENERATE_SCRIPTS, ingested_deck)
    drain(services)

    db = session_factory()
    try:
        scripts = db.scalars(
            select(Script).join(Slide, Slide.id == Script.slide_id).where(Slide.deck_id == ingested_deck).order_by(Slide.index)
        ).all()
        assert [row.status for row in scripts] == [ScriptStatus.READY.value] * 3
        assert scripts[1].content == "Narration for Slide to narrate: Slide 2 (Revenue)."
    finally:
        db.close()

    calls = fake_http.calls_for("openai")
    assert len(calls) == 3
    assert calls[0]["json"]["model"] == "gpt-4o-mini"
    assert calls[0]["headers"]["Authorization"] == "Bearer sk-test"
    assert _deck(session_factory, ingested_deck).status == DeckStatus.READY_FOR_REVIEW.value


def test_tts_failure_aborts_job_and_trips_only_tts_flag(session_factory, services, fake_http, enqueue, ingested_deck):
    enqueue(JobType.GENERATE_SCRIPTS, ingested_deck)
    drain(services)
    fake_http.fail("elevenlabs", 2, status=503, body="voice service overloaded")
    job_id = enqueue(JobType.GENERATE_AUDIO, ingested_deck)

    with pytest.raises(ServiceResponseError):
        drain(services)

    statuses = [audio for _, _, audio, _ in _slides(session_factory, ingested_deck)]
    assert statuses == [AssetStatus.READY.value, AssetStatus.FAILED.value, None]
    assert len(fake_http.calls_for("elevenlabs")) == 2

    job = next(row for row in _jobs(session_factory, ingested_deck) if row.id == job_id)
    assert job.status == JobStatus.FAILED.value
    assert "503" in job.error
    assert job.progress == pytest.approx(1 / 3)

    assert _deck(session_factory, ingested_deck).status == DeckStatus.FAILED.value
    assert services.health.get(ExternalService.ELEVENLABS).active is True
    assert services.health.get(ExternalService.OPENAI).active is False
    assert _count(
        session_factory,
        Notification,
        Notification.user_id == USER_ID,
        Notification.title == "Audio generation failed",
    ) == 1


def test_audio_rerun_upserts_instead_of_duplicating(session_factory, services, enqueue, ingested_deck):
    enqueue(JobType.GENERATE_SCRIPTS, ingested_deck)
    enqueue(JobType.GENERATE_AUDIO, ingested_deck)
    drain(services)
    enqueue(JobType.GENERATE_AUDIO, ingested_deck)
    drain(services)

    assert _count(session_factory, AudioAsset, AudioAsset.deck_id == ingested_deck) == 3
    statuses = [audio for _, _, audio, _ in _slides(session_factory, ingested_deck)]
    assert statuses == [AssetStatus.READY.value] * 3


def test_reingestion_replaces_slides_and_assets(session_factory, services, enqueue, ingested_deck):
    before = {slide_id for slide_id, *_ in _slides(session_factory, ingested_deck)}
    enqueue(JobType.GENERATE_SCRIPTS, ingested_deck)
    enqueue(JobType.GENERATE_AUDIO, ingested_deck)
    drain(services)

    enqueue(JobType.INGEST_DECK, ingested_deck)
    drain(services)

    after = _slides(session_factory, ingested_deck)
    assert before.isdisjoint({slide_id for slide_id, *_ in after})
    assert [index for _, index, _, _ in after] == [1, 2, 3]
    assert _count(session_factory, Slide, Slide.deck_id == ingested_deck) == 3
    assert _count(session_factory, AudioAsset, AudioAsset.deck_id == ingested_deck) == 0
    assert _count(session_factory, Script) == 3
    assert all(script_status == ScriptStatus.PENDING.value for *_, script_status in after)


def test_selection_processes_only_requested_slides(session_factory, services, fake_http, enqueue, ingested_deck):
    slides = _slides(session_factory, ingested_deck)
    first, second, third = (slide_id for slide_id, *_ in slides)

    enqueue(JobType.GENERATE_SCRIPTS, ingested_deck, slide_ids=[third, first, third])
    drain(services)

    statuses = [script for *_, script in _slides(session_factory, ingested_deck)]
    assert statuses == [ScriptStatus.READY.value, ScriptStatus.PENDING.value, ScriptStatus.READY.value]
    targets = [call["json"]["input"][1]["content"] for call in fake_http.calls_for("openai")]
    headings = [next(block["text"] for block in row if block["text"].startswith("Slide to narrate")) for row in targets]
    assert headings[0].startswith("Slide to narrate: Slide 1")
    assert headings[1].startswith("Slide to narrate: Slide 3")


def test_one_shot_chain_forwards_selection_until_video(session_factory, services, make_deck, enqueue, three_slide_pptx):
    deck_id = make_deck(three_slide_pptx, mode=ProcessingMode.ONE_SHOT)
    enqueue(JobType.INGEST_DECK, deck_id)
    drain(services)
    first, _, third = (slide_id for slide_id, *_ in _slides(session_factory, deck_id))
    services.queue.history.clear()

    enqueue(JobType.GENERATE_SCRIPTS, deck_id, slide_ids=[first, third])
    drain(services)

    forwarded = {job_type: payload.slide_ids for job_type, payload in services.queue.history}
    assert forwarded[JobType.GENERATE_AUDIO] == [first, third]
    assert forwarded[JobType.GENERATE_VIDEO] == [first, third]
    assert forwarded[JobType.ASSEMBLE_FINAL] is None
    assert _deck(session_factory, deck_id).status == DeckStatus.COMPLETE.value


def test_empty_selection_fails_job_without_touching_deck(session_factory, services, enqueue, ingested_deck):
    job_id = enqueue(JobType.GENERATE_SCRIPTS, ingested_deck, slide_ids=["missing-slide"])

    with pytest.raises(SelectionError):
        drain(services)

    job = next(row for row in _jobs(session_factory, ingested_deck) if row.id == job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.error == "No slides matched the requested selection"
    assert _deck(session_factory, ingested_deck).status == DeckStatus.READY_FOR_REVIEW.value


def test_assembly_without_ready_clips_fails_deck(session_factory, services, enqueue, ingested_deck):
    job_id = enqueue(JobType.ASSEMBLE_FINAL, ingested_deck)

    with pytest.raises(AssemblyError):
        drain(services)

    job = next(row for row in _jobs(session_factory, ingested_deck) if row.id == job_id)
    assert job.status == JobStatus.FAILED.value
    assert "No rendered slide videos" in job.error
    assert _deck(session_factory, ingested_deck).status == DeckStatus.FAILED.value


def test_video_render_failure_marks_slide_failed(session_factory, services, enqueue, ingested_deck):
    enqueue(JobType.GENERATE_SCRIPTS, ingested_deck)
    enqueue(JobType.GENERATE_AUDIO, ingested_deck)
    drain(services)
    services.media.fail_render_for = {"0001.mp4"}
    enqueue(JobType.GENERATE_VIDEO, ingested_deck)

    with pytest.raises(Exception, match="cannot encode 0001.mp4"):
        drain(services)

    db = session_factory()
    try:
        videos = db.scalars(select(VideoAsset).where(VideoAsset.deck_id == ingested_deck)).all()
        assert [row.status for row in videos] == [AssetStatus.FAILED.value]
    finally:
        db.close()
    # Encoder failures are local; no external service is flagged.
    assert services.health.is_out_of_order() is False


def test_missing_api_key_fails_script_job_without_network_call(
    session_factory, services, fake_http, enqueue, ingested_deck
):
    services.settings.openai_api_key = None
    enqueue(JobType.GENERATE_SCRIPTS, ingested_deck)

    with pytest.raises(Exception, match="API key not configured"):
        drain(services)

    assert fake_http.calls_for("openai") == []
    flag = services.health.get(ExternalService.OPENAI)
    assert flag.active is True
    assert flag.message == "API key not configured"
    statuses = [script for *_, script in _slides(session_factory, ingested_deck)]
    assert statuses == [ScriptStatus.FAILED.value, ScriptStatus.PENDING.value, ScriptStatus.PENDING.value]


def test_progress_never_decreases_within_a_job(session_factory, services, enqueue, ingested_deck, monkeypatch):
    seen: list[float] = []
    original = base.mark_job_progress

    def _spy(db, job_id, completed, total=None):
        original(db, job_id, completed, total)
        seen.append(db.get(Job, job_id).progress)

    monkeypatch.setattr(base, "mark_job_progress", _spy)
    enqueue(JobType.GENERATE_SCRIPTS, ingested_deck)
    drain(services)

    assert seen == sorted(seen)
    assert seen[-1] == pytest.approx(1.0)


def test_failed_successor_enqueue_fails_one_shot_deck(
    session_factory, services, make_deck, enqueue, three_slide_pptx, monkeypatch
):
    deck_id = make_deck(three_slide_pptx, mode=ProcessingMode.ONE_SHOT)
    enqueue(JobType.INGEST_DECK, deck_id)
    job_type, payload = services.queue.pending.pop(0)

    def _broker_down(job_type, payload):
        raise RuntimeError("broker down")

    monkeypatch.setattr(services.queue, "enqueue", _broker_down)

    with pytest.raises(RuntimeError, match="broker down"):
        run_job(job_type, payload, services)

    assert _deck(session_factory, deck_id).status == DeckStatus.FAILED.value
    statuses = {job.type: job.status for job in _jobs(session_factory, deck_id)}
    assert statuses == {
        JobType.INGEST_DECK.value: JobStatus.SUCCEEDED.value,
        JobType.GENERATE_SCRIPTS.value: JobStatus.FAILED.value,
    }
    db = session_factory()
    try:
        notes = db.scalars(select(Notification).where(Notification.user_id == USER_ID)).all()
        failure = next(note for note in notes if note.title == "Script generation could not be queued")
        assert "broker down" in failure.message
        events = db.scalars(select(JobEvent.event_type).where(JobEvent.job_id == payload.job_id)).all()
        assert "ingest_auto_chain_failed" in events
    finally:
        db.close()


def test_missing_deck_fails_job_and_notifies(session_factory, services, enqueue):
    job_id = enqueue(JobType.GENERATE_SCRIPTS, "deck-that-was-deleted")

    with pytest.raises(DeckNotFoundError):
        drain(services)

    db = session_factory()
    try:
        job = db.get(Job, job_id)
        assert job.status == JobStatus.FAILED.value
        assert job.error == "Deck deck-that-was-deleted not found"
        titles = db.scalars(select(Notification.title).where(Notification.user_id == USER_ID)).all()
        assert titles == ["Script generation failed"]
        events = db.scalars(select(JobEvent.event_type).where(JobEvent.job_id == job_id)).all()
        assert "scripts_job_failed" in events
    finally:
        db.close()
