from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from slidecast.models import Notification


logger = logging.getLogger("slidecast.jobs")


def pluralize(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


class Notifier:
    """Fire-and-forget user notifications stored for the UI to poll."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def notify(self, user_id: str, title: str, message: str) -> None:
        db = self._session_factory()
        try:
            db.add(Notification(user_id=user_id, title=title, message=message))
            db.commit()
        except Exception:
            # Notification delivery must never break job execution.
            db.rollback()
            logger.exception("notification_failed user=%s title=%s", user_id, title)
        finally:
            db.close()
