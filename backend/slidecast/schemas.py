from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _dedupe_ids(values: list[str] | None) -> list[str] | None:
    if not values:
        return None
    cleaned = [str(value).strip() for value in values if str(value or "").strip()]
    return list(dict.fromkeys(cleaned)) or None


class JobPayload(BaseModel):
    """Message body carried by the queue for every stage job."""

    deck_id: str
    user_id: str
    job_id: str
    slide_ids: list[str] | None = None

    @field_validator("slide_ids", mode="before")
    @classmethod
    def _normalize_slide_ids(cls, value):
        if isinstance(value, str):
            value = [value]
        return _dedupe_ids(value)


class DeckActionRequest(BaseModel):
    target: Literal["scripts", "audio", "video", "final"]
    slide_ids: list[str] | None = None

    @field_validator("slide_ids", mode="before")
    @classmethod
    def _normalize_slide_ids(cls, value):
        if isinstance(value, str):
            value = [value]
        return _dedupe_ids(value)


class DeckCreatedOut(BaseModel):
    deck_id: str
    job_id: str
    warnings: list[str] = Field(default_factory=list)


class JobQueuedOut(BaseModel):
    job_id: str
    type: str


class JobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    deck_id: str
    type: str
    status: str
    progress: float
    error: str | None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class StageProgressOut(BaseModel):
    ready: int
    total: int
    progress: float


class SlideOut(BaseModel):
    id: str
    index: int
    title: str | None
    body: str | None
    speaker_notes: str | None
    needs_image_context: bool
    script: str
    script_status: str
    audio_status: str
    video_status: str


class DeckWorkspaceOut(BaseModel):
    id: str
    title: str
    source_type: str
    status: str
    mode: str
    slide_count: int
    final_video_path: str | None
    final_video_duration: float | None
    estimated_seconds: float
    warnings: list[str]
    progress: dict[str, StageProgressOut]
    overall_progress: float
    slides: list[SlideOut]
    jobs: list[JobOut] = Field(default_factory=list)


class HealthFlagOut(BaseModel):
    service: str
    active: bool
    message: str | None
    updated_at: datetime | None


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    message: str
    read: bool
    created_at: datetime


class SystemOverviewOut(BaseModel):
    out_of_order: bool
    services: list[HealthFlagOut]
    notifications: list[NotificationOut]
    jobs: list[JobOut]
