from __future__ import annotations

import json
import os
import shutil
import tempfile
from pathlib import Path

import pytest

_SCRATCH = Path(tempfile.mkdtemp(prefix="slidecast-tests-"))
os.environ.setdefault("STORAGE_ROOT", str(_SCRATCH / "storage"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{(_SCRATCH / 'default.db').as_posix()}")

import requests  # noqa: E402
from PIL import Image  # noqa: E402
from pptx import Presentation  # noqa: E402

from slidecast.config import Settings  # noqa: E402
from slidecast.db import build_engine, build_session_factory, init_db  # noqa: E402
from slidecast.errors import MediaError  # noqa: E402
from slidecast.jobs.context import WorkerServices, build_worker_services  # noqa: E402
from slidecast.jobs.dispatch import run_job  # noqa: E402
from slidecast.jobs.queue import create_and_enqueue_job  # noqa: E402
from slidecast.models import Deck, JobType, ProcessingMode, SystemSetting  # noqa: E402
from slidecast.schemas import JobPayload  # noqa: E402
from slidecast.storage import StorageLayout  # noqa: E402


USER_ID = "user-1"

LONG_BODY = "Quarterly revenue grew across every region, led by strong subscription renewals."


def make_response(status_code: int = 200, *, body: bytes = b"", json_body=None) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response.encoding = "utf-8"
    response._content = json.dumps(json_body).encode("utf-8") if json_body is not None else body
    return response


class FakeHttp:
    """Stands in for ``requests.Session`` inside the gateway.

    Calls are counted per service; ``fail(service, call_number, ...)`` makes that call
    return an error status or raise a transport error.
    """

    def __init__(self):
        self.calls: list[dict] = []
        self._overrides: dict[tuple[str, int], object] = {}

    def fail(self, service: str, call_number: int, *, status: int = 503, body: str = "upstream unavailable") -> None:
        self._overrides[(service, call_number)] = make_response(status, body=body.encode("utf-8"))

    def raise_on(self, service: str, call_number: int, exc: Exception) -> None:
        self._overrides[(service, call_number)] = exc

    def calls_for(self, service: str) -> list[dict]:
        return [call for call in self.calls if call["service"] == service]

    def post(self, url, json=None, headers=None, timeout=None):
        service = "elevenlabs" if "text-to-speech" in url else "openai"
        self.calls.append({"service": service, "url": url, "json": json, "headers": headers or {}})
        override = self._overrides.get((service, len(self.calls_for(service))))
        if isinstance(override, Exception):
            raise override
        if override is not None:
            return override
        if service == "elevenlabs":
            return make_response(200, body=b"ID3-fake-mp3-" + str(json.get("text", "")).encode("utf-8")[:32])
        target = json["input"][1]["content"]
        heading = next(
            (block["text"].splitlines()[0] for block in target if block.get("text", "").startswith("Slide to narrate")),
            "Slide",
        )
        return make_response(200, json_body={"output_text": f"Narration for {heading}."})


class FakeMedia:
    def __init__(self, duration: float = 4.0):
        self.duration = duration
        self.rendered: list[Path] = []
        self.concatenated: list[list[Path]] = []
        self.fail_render_for: set[str] = set()

    def probe_duration(self, media_path):
        return self.duration if Path(media_path).exists() else None

    def render_slide_video(self, image_path: Path, audio_path: Path, output_path: Path) -> None:
        if output_path.name in self.fail_render_for:
            raise MediaError(f"ffmpeg exited with 1: cannot encode {output_path.name}")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"mp4:" + image_path.name.encode() + b"+" + audio_path.name.encode())
        self.rendered.append(output_path)

    def concat_videos(self, clip_paths: list[Path], output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"".join(Path(path).read_bytes() for path in clip_paths))
        self.concatenated.append(list(clip_paths))


class FakeRasterizer:
    def __init__(self):
        self.calls: list[tuple[Path, str, int]] = []

    def rasterize(self, source: Path, source_type: str, target_paths: list[Path]) -> list[Path]:
        self.calls.append((source, source_type, len(target_paths)))
        for target in target_paths:
            target.parent.mkdir(parents=True, exist_ok=True)
            Image.new("RGB", (64, 36), "white").save(target, format="PNG")
        return list(target_paths)


class FakeOcr:
    def __init__(self, text: str = ""):
        self.text = text
        self.calls: list[Path] = []

    def extract_text(self, image_path: Path) -> str:
        self.calls.append(image_path)
        return self.text


class RecordingQueue:
    def __init__(self):
        self.pending: list[tuple[JobType, JobPayload]] = []
        self.history: list[tuple[JobType, JobPayload]] = []

    def enqueue(self, job_type: JobType, payload: JobPayload) -> None:
        self.pending.append((job_type, payload))
        self.history.append((job_type, payload))

    def types(self) -> list[JobType]:
        return [job_type for job_type, _ in self.history]


def drain(services: WorkerServices, *, limit: int = 20) -> list[JobType]:
    """Runs queued jobs in FIFO order until the queue is empty; errors propagate."""
    ran: list[JobType] = []
    queue = services.queue
    while queue.pending and len(ran) < limit:
        job_type, payload = queue.pending.pop(0)
        ran.append(job_type)
        run_job(job_type, payload.model_dump(mode="json"), services)
    return ran


def build_pptx(path: Path, slides: list[tuple[str, str, str | None]]) -> Path:
    presentation = Presentation()
    layout = presentation.slide_layouts[1]
    for title, body, notes in slides:
        slide = presentation.slides.add_slide(layout)
        slide.shapes.title.text = title
        slide.placeholders[1].text = body
        if notes:
            slide.notes_slide.notes_text_frame.text = notes
    path.parent.mkdir(parents=True, exist_ok=True)
    presentation.save(str(path))
    return path


def set_admin_setting(session_factory, key: str, value) -> None:
    db = session_factory()
    try:
        row = db.get(SystemSetting, f"admin:{key}")
        if row is None:
            row = SystemSetting(key=f"admin:{key}")
            db.add(row)
        row.value_json = json.dumps(value)
        db.commit()
    finally:
        db.close()


@pytest.fixture()
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        storage_root=tmp_path / "storage",
        database_url=f"sqlite:///{(tmp_path / 'slidecast.db').as_posix()}",
        openai_api_key="sk-test",
        elevenlabs_api_key="el-test",
        persist_job_events=True,
    )


@pytest.fixture()
def session_factory(test_settings: Settings):
    engine = build_engine(test_settings.database_url)
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def layout(test_settings: Settings) -> StorageLayout:
    layout = StorageLayout(test_settings.storage_root)
    layout.ensure_root()
    return layout


@pytest.fixture()
def fake_http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture()
def services(test_settings: Settings, session_factory, fake_http: FakeHttp) -> WorkerServices:
    built = build_worker_services(
        settings=test_settings,
        session_factory=session_factory,
        queue=RecordingQueue(),
        http=fake_http,
    )
    built.media = FakeMedia()
    built.rasterizer = FakeRasterizer()
    built.ocr = FakeOcr()
    return built


@pytest.fixture()
def three_slide_pptx(tmp_path: Path) -> Path:
    return build_pptx(
        tmp_path / "uploads" / "quarterly.pptx",
        [
            ("Welcome", LONG_BODY, "Greet the audience and introduce the agenda."),
            ("Revenue", LONG_BODY, None),
            ("Next steps", LONG_BODY, "Close with the hiring plan."),
        ],
    )


@pytest.fixture()
def make_deck(session_factory, layout: StorageLayout):
    def _make(source: Path, *, mode: ProcessingMode = ProcessingMode.REVIEW, owner_id: str = USER_ID) -> str:
        db = session_factory()
        try:
            deck = Deck(
                owner_id=owner_id,
                title=source.stem.title(),
                source_type="PDF" if source.suffix.lower() == ".pdf" else "PPTX",
                mode=mode.value,
            )
            db.add(deck)
            db.flush()
            layout.ensure_deck_storage(deck.id)
            target = layout.deck_source_path(deck.id, source.name)
            shutil.copyfile(source, target)
            deck.source_path = str(target)
            db.commit()
            return deck.id
        finally:
            db.close()

    return _make


@pytest.fixture()
def enqueue(session_factory, services: WorkerServices):
    def _enqueue(job_type: JobType, deck_id: str, *, slide_ids: list[str] | None = None, user_id: str = USER_ID) -> str:
        db = session_factory()
        try:
            job = create_and_enqueue_job(
                db,
                services.queue,
                job_type=job_type,
                deck_id=deck_id,
                user_id=user_id,
                slide_ids=slide_ids,
            )
            return job.id
        finally:
            db.close()

    return _enqueue


@pytest.fixture()
def ingested_deck(make_deck, enqueue, services: WorkerServices, three_slide_pptx: Path) -> str:
    deck_id = make_deck(three_slide_pptx)
    enqueue(JobType.INGEST_DECK, deck_id)
    drain(services)
    return deck_id
