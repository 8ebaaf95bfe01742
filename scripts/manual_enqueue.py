#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "backend"))

from slidecast.celery_app import celery_app  # noqa: E402
from slidecast.config import settings  # noqa: E402
from slidecast.db import SessionLocal, init_db  # noqa: E402
from slidecast.jobs.queue import CeleryJobQueue, create_and_enqueue_job  # noqa: E402
from slidecast.models import Deck, JobType  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Queue a stage job for an existing Slidecast deck.")
    parser.add_argument("deck_id", help="Deck id to process.")
    parser.add_argument(
        "--stage",
        choices=[job_type.value for job_type in JobType],
        default=JobType.INGEST_DECK.value,
        help="Stage to enqueue (default: ingest).",
    )
    parser.add_argument(
        "--slide",
        dest="slide_ids",
        action="append",
        default=None,
        help="Restrict the job to a slide id; repeat for several slides.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    init_db()
    db = SessionLocal()
    try:
        deck = db.get(Deck, args.deck_id)
        if not deck:
            print(f"Deck not found: {args.deck_id}")
            return 1
        job = create_and_enqueue_job(
            db,
            CeleryJobQueue(celery_app, queue_name=settings.celery_queue),
            job_type=JobType(args.stage),
            deck_id=deck.id,
            user_id=deck.owner_id,
            slide_ids=args.slide_ids,
            trigger="manual-script",
        )
    finally:
        db.close()

    print(f"Queued {args.stage} job {job.id} for deck {args.deck_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
