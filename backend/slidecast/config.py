from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_STORAGE_ROOT = PROJECT_ROOT / "storage"
DEFAULT_DB_PATH = DEFAULT_STORAGE_ROOT / "slidecast.db"

DEFAULT_SYSTEM_PROMPT = (
    "You write spoken narration for presentation slides. Write in a professional, conversational tone, "
    "as a presenter talking to an audience. Do not read bullet points verbatim, do not mention slide numbers, "
    "and return only the narration text."
)


class Settings(BaseSettings):
    app_name: str = "Slidecast API"
    api_prefix: str = "/api"

    storage_root: Path = DEFAULT_STORAGE_ROOT
    database_url: str = f"sqlite:///{DEFAULT_DB_PATH.as_posix()}"
    redis_url: str = "redis://localhost:6379/0"
    celery_queue: str = "slidecast"
    worker_concurrency: int = 5

    openai_api_key: str | None = None
    openai_endpoint: str = "https://api.openai.com/v1/responses"
    elevenlabs_api_key: str | None = None
    elevenlabs_base_url: str = "https://api.elevenlabs.io/v1"
    http_timeout_seconds: int = 120

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    libreoffice_path: str = "soffice"
    pdftoppm_path: str = "pdftoppm"
    raster_dpi: int = 110
    ocr_language: str = "eng"
    command_timeout_seconds: int = 600

    min_slide_text_chars: int = 40

    default_script_model: str = "gpt-4o-mini"
    default_tts_model: str = "eleven_flash_v2_5"
    default_voice: str = "21m00Tcm4TlvDq8ikWAM"
    default_processing_mode: str = "REVIEW"
    default_system_prompt: str = DEFAULT_SYSTEM_PROMPT
    default_voice_stability: float = 0.4
    default_voice_similarity_boost: float = 0.7
    default_voice_style: float = 0.0
    default_voice_speaker_boost: bool = True

    enforce_single_flight: bool = True

    log_level: str = "INFO"
    suppress_httpx_info_logs: bool = True
    persist_job_events: bool = True
    log_preview_chars: int = 180

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()

settings.storage_root.mkdir(parents=True, exist_ok=True)
