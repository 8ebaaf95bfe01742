from __future__ import annotations

import json
import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from slidecast.config import Settings
from slidecast.models import ProcessingMode, SystemSetting


ADMIN_PREFIX = "admin:"


@dataclass(frozen=True)
class VoiceSettings:
    stability: float
    similarity_boost: float
    style: float
    use_speaker_boost: bool

    def as_payload(self) -> dict[str, Any]:
        return {
            "stability": self.stability,
            "similarity_boost": self.similarity_boost,
            "style": self.style,
            "use_speaker_boost": self.use_speaker_boost,
        }


@dataclass(frozen=True)
class SoftLimits:
    max_slides: int | None
    max_file_size_mb: float | None


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    return numeric if math.isfinite(numeric) else None


def _as_string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [part for part in value.split(",")]
    if not isinstance(value, (list, tuple)):
        return []
    cleaned = [str(entry).strip() for entry in value if str(entry or "").strip()]
    return list(dict.fromkeys(cleaned))


class AdminSettings:
    """Reads ``admin:*`` rows from ``system_settings``, falling back to environment settings."""

    def __init__(self, session_factory: Callable[[], Session], settings: Settings):
        self._session_factory = session_factory
        self._settings = settings

    def raw(self, key: str) -> Any:
        db = self._session_factory()
        try:
            row = db.scalar(select(SystemSetting).where(SystemSetting.key == f"{ADMIN_PREFIX}{key}"))
        finally:
            db.close()
        if row is None:
            return None
        try:
            return json.loads(row.value_json)
        except ValueError:
            return row.value_json

    def string(self, key: str) -> str | None:
        value = self.raw(key)
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def number(self, key: str) -> float | None:
        return _as_number(self.raw(key))

    def string_list(self, key: str) -> list[str]:
        return _as_string_list(self.raw(key))

    # Script generation

    def default_script_model(self) -> str:
        return self.string("defaultOpenAIModel") or self._settings.default_script_model

    def script_model_allowlist(self) -> list[str]:
        return self.string_list("allowedOpenAIModels")

    def resolve_script_model(self, deck_choice: str | None) -> str:
        allowlist = self.script_model_allowlist()
        candidate = deck_choice or self.default_script_model()
        if not allowlist or candidate in allowlist:
            return candidate
        return allowlist[0]

    def system_prompt(self) -> str:
        return self.string("openAISystemPrompt") or self._settings.default_system_prompt

    def openai_api_key(self) -> str | None:
        return self.string("openAIApiKey") or self._settings.openai_api_key

    # Narration synthesis

    def default_tts_model(self) -> str:
        return self.string("defaultTTSModel") or self._settings.default_tts_model

    def tts_model_allowlist(self) -> list[str]:
        return self.string_list("allowedTTSModels")

    def resolve_tts_model(self, deck_choice: str | None) -> str:
        allowlist = self.tts_model_allowlist()
        if deck_choice and (not allowlist or deck_choice in allowlist):
            return deck_choice
        default = self.default_tts_model()
        if not allowlist or default in allowlist:
            return default
        return allowlist[0]

    def default_voice(self) -> str:
        return self.string("defaultVoice") or self._settings.default_voice

    def allowed_voices(self) -> list[str]:
        return self.string_list("allowedVoices")

    def resolve_voice(self, deck_choice: str | None) -> str:
        allowed = self.allowed_voices()
        if deck_choice and (not allowed or deck_choice in allowed):
            return deck_choice
        return self.default_voice()

    def voice_settings(self, voice_id: str) -> VoiceSettings:
        overrides = self.raw("voiceSettings")
        row = overrides.get(voice_id) if isinstance(overrides, dict) else None
        row = row if isinstance(row, dict) else {}

        def _pick(key: str, fallback: float) -> float:
            numeric = _as_number(row.get(key))
            return fallback if numeric is None else numeric

        speaker_boost = row.get("use_speaker_boost")
        return VoiceSettings(
            stability=_pick("stability", self._settings.default_voice_stability),
            similarity_boost=_pick("similarity_boost", self._settings.default_voice_similarity_boost),
            style=_pick("style", self._settings.default_voice_style),
            use_speaker_boost=(
                speaker_boost if isinstance(speaker_boost, bool) else self._settings.default_voice_speaker_boost
            ),
        )

    def elevenlabs_api_key(self) -> str | None:
        return self.string("elevenLabsApiKey") or self._settings.elevenlabs_api_key

    # Limits and defaults

    def soft_limits(self) -> SoftLimits:
        max_slides = self.number("maxSlides")
        max_file_size = self.number("maxFileSizeMB")
        return SoftLimits(
            max_slides=int(max_slides) if max_slides and max_slides > 0 else None,
            max_file_size_mb=max_file_size if max_file_size and max_file_size > 0 else None,
        )

    def concurrency_limit_per_user(self) -> int | None:
        value = self.number("concurrencyLimitPerUser")
        if value is None or value <= 0:
            return None
        return int(math.floor(value))

    def default_processing_mode(self) -> ProcessingMode:
        for candidate in (self.string("defaultMode"), self._settings.default_processing_mode):
            if candidate and candidate.upper() in ProcessingMode.__members__:
                return ProcessingMode[candidate.upper()]
        return ProcessingMode.REVIEW
