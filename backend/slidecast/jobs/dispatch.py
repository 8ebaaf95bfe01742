from __future__ import annotations

import logging
from typing import Any

from slidecast.jobs.context import WorkerServices
from slidecast.models import JobType
from slidecast.schemas import JobPayload
from slidecast.stages import (
    AssembleProcessor,
    AudioProcessor,
    IngestProcessor,
    ScriptProcessor,
    StageOutcome,
    StageProcessor,
    VideoProcessor,
)


logger = logging.getLogger("slidecast.jobs")

PROCESSORS: dict[JobType, type[StageProcessor]] = {
    JobType.INGEST_DECK: IngestProcessor,
    JobType.GENERATE_SCRIPTS: ScriptProcessor,
    JobType.GENERATE_AUDIO: AudioProcessor,
    JobType.GENERATE_VIDEO: VideoProcessor,
    JobType.ASSEMBLE_FINAL: AssembleProcessor,
}


def _validate_processors() -> None:
    missing = [job_type.value for job_type in JobType if job_type not in PROCESSORS]
    if missing:
        raise RuntimeError(f"No stage processor registered for: {', '.join(missing)}")
    for job_type, processor in PROCESSORS.items():
        if processor.job_type is not job_type:
            raise RuntimeError(
                f"{processor.__name__} is registered for {job_type.value} but handles {processor.job_type.value}"
            )


_validate_processors()


def run_job(job_type: JobType | str, payload: JobPayload | dict[str, Any], services: WorkerServices) -> StageOutcome:
    resolved = JobType(job_type)
    body = payload if isinstance(payload, JobPayload) else JobPayload.model_validate(payload)
    logger.info("dispatch job=%s type=%s deck=%s", body.job_id, resolved.value, body.deck_id)
    return PROCESSORS[resolved](services).run(body)
