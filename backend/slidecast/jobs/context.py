from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import requests
from sqlalchemy.orm import Session

from slidecast.config import Settings
from slidecast.jobs.queue import JobQueue
from slidecast.providers.base import BaseScriptWriter, BaseSpeechSynthesizer
from slidecast.providers.elevenlabs_provider import ElevenLabsSynthesizer
from slidecast.providers.openai_provider import OpenAIScriptWriter
from slidecast.services.admin_settings import AdminSettings
from slidecast.services.gateway import ServiceGateway
from slidecast.services.health import HealthFlagStore
from slidecast.services.job_trace import JobTrace
from slidecast.services.media import MediaToolkit
from slidecast.services.notifications import Notifier
from slidecast.services.ocr import TesseractOcr
from slidecast.services.rasterizer import SlideRasterizer
from slidecast.storage import StorageLayout


@dataclass
class WorkerServices:
    """Everything a stage processor touches outside its own database session."""

    session_factory: Callable[[], Session]
    settings: Settings
    queue: JobQueue
    admin: AdminSettings
    health: HealthFlagStore
    gateway: ServiceGateway
    script_writer: BaseScriptWriter
    synthesizer: BaseSpeechSynthesizer
    layout: StorageLayout
    notifier: Notifier
    media: MediaToolkit
    rasterizer: SlideRasterizer
    ocr: TesseractOcr
    trace: JobTrace


def build_worker_services(
    *,
    settings: Settings,
    session_factory: Callable[[], Session],
    queue: JobQueue,
    http: requests.Session | None = None,
) -> WorkerServices:
    admin = AdminSettings(session_factory, settings)
    health = HealthFlagStore(session_factory)
    gateway = ServiceGateway(health, timeout_seconds=settings.http_timeout_seconds, http=http)
    return WorkerServices(
        session_factory=session_factory,
        settings=settings,
        queue=queue,
        admin=admin,
        health=health,
        gateway=gateway,
        script_writer=OpenAIScriptWriter(gateway, admin, endpoint=settings.openai_endpoint),
        synthesizer=ElevenLabsSynthesizer(gateway, admin, base_url=settings.elevenlabs_base_url),
        layout=StorageLayout(settings.storage_root),
        notifier=Notifier(session_factory),
        media=MediaToolkit(settings),
        rasterizer=SlideRasterizer(settings),
        ocr=TesseractOcr(settings.ocr_language),
        trace=JobTrace(session_factory, persist=settings.persist_job_events),
    )
