from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from slidecast.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class SourceType(str, Enum):
    PPTX = "PPTX"
    PDF = "PDF"


class ProcessingMode(str, Enum):
    REVIEW = "REVIEW"
    ONE_SHOT = "ONE_SHOT"


class DeckStatus(str, Enum):
    INGESTING = "INGESTING"
    READY_FOR_REVIEW = "READY_FOR_REVIEW"
    GENERATING = "GENERATING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class ScriptStatus(str, Enum):
    PENDING = "PENDING"
    REGENERATING = "REGENERATING"
    READY = "READY"
    FAILED = "FAILED"


class AssetStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    FAILED = "FAILED"


class JobType(str, Enum):
    INGEST_DECK = "ingest"
    GENERATE_SCRIPTS = "generate-scripts"
    GENERATE_AUDIO = "generate-audio"
    GENERATE_VIDEO = "generate-video"
    ASSEMBLE_FINAL = "assemble-final"


class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


ACTIVE_JOB_STATUSES = (JobStatus.QUEUED.value, JobStatus.RUNNING.value)


class Deck(Base):
    __tablename__ = "decks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    source_type: Mapped[str] = mapped_column(String(8), nullable=False)
    source_path: Mapped[str] = mapped_column(String, nullable=False, default="")
    mode: Mapped[str] = mapped_column(String(16), nullable=False, default=ProcessingMode.REVIEW.value)
    status: Mapped[str] = mapped_column(String(24), nullable=False, default=DeckStatus.INGESTING.value)
    slide_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    script_model: Mapped[str | None] = mapped_column(String, nullable=True)
    tts_model: Mapped[str | None] = mapped_column(String, nullable=True)
    voice: Mapped[str | None] = mapped_column(String, nullable=True)
    final_video_path: Mapped[str | None] = mapped_column(String, nullable=True)
    final_video_duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    warnings_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    slides: Mapped[list["Slide"]] = relationship(back_populates="deck", order_by="Slide.index")

    @property
    def warnings(self) -> list[str]:
        try:
            value = json.loads(self.warnings_json or "[]")
        except ValueError:
            return []
        if isinstance(value, list):
            return [str(entry) for entry in value]
        return [str(value)] if value else []

    @warnings.setter
    def warnings(self, values: list[str]) -> None:
        self.warnings_json = json.dumps(list(dict.fromkeys(str(value) for value in values)))


class Slide(Base):
    __tablename__ = "slides"
    __table_args__ = (UniqueConstraint("deck_id", "index", name="uq_slides_deck_index"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    deck_id: Mapped[str] = mapped_column(ForeignKey("decks.id"), nullable=False, index=True)
    index: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    speaker_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    ocr_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_path: Mapped[str | None] = mapped_column(String, nullable=True)
    needs_image_context: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    deck: Mapped[Deck] = relationship(back_populates="slides")
    script: Mapped["Script | None"] = relationship(back_populates="slide", uselist=False)
    audio_asset: Mapped["AudioAsset | None"] = relationship(back_populates="slide", uselist=False)
    video_asset: Mapped["VideoAsset | None"] = relationship(back_populates="slide", uselist=False)


class Script(Base):
    __tablename__ = "scripts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    slide_id: Mapped[str] = mapped_column(ForeignKey("slides.id"), nullable=False, unique=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ScriptStatus.PENDING.value)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    slide: Mapped[Slide] = relationship(back_populates="script")


class AudioAsset(Base):
    __tablename__ = "audio_assets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    slide_id: Mapped[str] = mapped_column(ForeignKey("slides.id"), nullable=False, unique=True)
    deck_id: Mapped[str] = mapped_column(ForeignKey("decks.id"), nullable=False, index=True)
    file_path: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=AssetStatus.PENDING.value)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    slide: Mapped[Slide] = relationship(back_populates="audio_asset")


class VideoAsset(Base):
    __tablename__ = "video_assets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    slide_id: Mapped[str] = mapped_column(ForeignKey("slides.id"), nullable=False, unique=True)
    deck_id: Mapped[str] = mapped_column(ForeignKey("decks.id"), nullable=False, index=True)
    file_path: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=AssetStatus.PENDING.value)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    slide: Mapped[Slide] = relationship(back_populates="video_asset")


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    deck_id: Mapped[str] = mapped_column(ForeignKey("decks.id"), nullable=False, index=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(24), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=JobStatus.QUEUED.value, index=True)
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def payload(self) -> dict:
        try:
            value = json.loads(self.payload_json or "{}")
        except ValueError:
            return {}
        return value if isinstance(value, dict) else {}


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)


class SystemSetting(Base):
    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False, default="null")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class ServiceHealth(Base):
    __tablename__ = "service_health"

    service: Mapped[str] = mapped_column(String(32), primary_key=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class JobEvent(Base):
    __tablename__ = "job_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(ForeignKey("jobs.id"), nullable=False, index=True)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    stage: Mapped[str] = mapped_column(String, nullable=False)
    event_type: Mapped[str] = mapped_column(String, nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    severity: Mapped[str] = mapped_column(String, nullable=False, default="info")
