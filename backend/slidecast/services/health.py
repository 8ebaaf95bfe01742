from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy.orm import Session

from slidecast.models import ServiceHealth, utcnow


logger = logging.getLogger("slidecast.gateway")


class ExternalService(str, Enum):
    OPENAI = "openai"
    ELEVENLABS = "elevenlabs"

    @property
    def label(self) -> str:
        return {"openai": "OpenAI", "elevenlabs": "ElevenLabs"}[self.value]


@dataclass(frozen=True)
class HealthFlag:
    service: str
    active: bool
    message: str | None
    updated_at: datetime | None


class HealthFlagStore:
    """One tripped/cleared record per external service; a missing record means healthy."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def trip(self, service: ExternalService | str, message: str) -> None:
        key = ExternalService(service).value
        db = self._session_factory()
        try:
            row = db.get(ServiceHealth, key)
            if row is None:
                row = ServiceHealth(service=key)
                db.add(row)
            row.active = True
            row.message = message
            row.updated_at = utcnow()
            db.commit()
        finally:
            db.close()
        logger.warning("service=%s health flag tripped: %s", key, message)

    def clear(self, service: ExternalService | str) -> bool:
        key = ExternalService(service).value
        db = self._session_factory()
        try:
            row = db.get(ServiceHealth, key)
            if row is None or not row.active:
                return False
            row.active = False
            row.message = None
            row.updated_at = utcnow()
            db.commit()
        finally:
            db.close()
        logger.info("service=%s health flag cleared", key)
        return True

    def get(self, service: ExternalService | str) -> HealthFlag:
        key = ExternalService(service).value
        db = self._session_factory()
        try:
            row = db.get(ServiceHealth, key)
            if row is None:
                return HealthFlag(service=key, active=False, message=None, updated_at=None)
            return HealthFlag(service=key, active=row.active, message=row.message, updated_at=row.updated_at)
        finally:
            db.close()

    def snapshot(self) -> list[HealthFlag]:
        return [self.get(service) for service in ExternalService]

    def is_out_of_order(self) -> bool:
        return any(flag.active for flag in self.snapshot())
