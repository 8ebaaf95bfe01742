"""The stage graph: ingest -> scripts -> audio -> video -> assemble.

Processors never hard-code their successor; they ask this module.
"""

from __future__ import annotations

from dataclasses import dataclass

from slidecast.models import JobType


@dataclass(frozen=True)
class StageDescriptor:
    job_type: JobType
    task_name: str
    label: str
    successor: JobType | None = None
    # Whether the successor job inherits this invocation's slide subset.
    forwards_selection: bool = True


PIPELINE: tuple[StageDescriptor, ...] = (
    StageDescriptor(
        JobType.INGEST_DECK,
        "slidecast.tasks.ingest_deck",
        "Deck ingestion",
        successor=JobType.GENERATE_SCRIPTS,
        forwards_selection=False,
    ),
    StageDescriptor(
        JobType.GENERATE_SCRIPTS,
        "slidecast.tasks.generate_scripts",
        "Script generation",
        successor=JobType.GENERATE_AUDIO,
    ),
    StageDescriptor(
        JobType.GENERATE_AUDIO,
        "slidecast.tasks.generate_audio",
        "Audio generation",
        successor=JobType.GENERATE_VIDEO,
    ),
    StageDescriptor(
        JobType.GENERATE_VIDEO,
        "slidecast.tasks.generate_video",
        "Slide rendering",
        successor=JobType.ASSEMBLE_FINAL,
        forwards_selection=False,
    ),
    StageDescriptor(
        JobType.ASSEMBLE_FINAL,
        "slidecast.tasks.assemble_final",
        "Final assembly",
    ),
)

_BY_TYPE = {descriptor.job_type: descriptor for descriptor in PIPELINE}

ACTION_TARGETS: dict[str, JobType] = {
    "scripts": JobType.GENERATE_SCRIPTS,
    "audio": JobType.GENERATE_AUDIO,
    "video": JobType.GENERATE_VIDEO,
    "final": JobType.ASSEMBLE_FINAL,
}


def descriptor_for(job_type: JobType | str) -> StageDescriptor:
    return _BY_TYPE[JobType(job_type)]


def successor_of(job_type: JobType | str) -> JobType | None:
    return descriptor_for(job_type).successor


def stage_order() -> list[JobType]:
    return [descriptor.job_type for descriptor in PIPELINE]


def _validate_pipeline() -> None:
    missing = set(JobType) - set(_BY_TYPE)
    if missing:
        raise RuntimeError(f"Pipeline has no descriptor for: {sorted(m.value for m in missing)}")
    order = stage_order()
    for position, descriptor in enumerate(PIPELINE):
        if descriptor.successor is None:
            continue
        if order.index(descriptor.successor) <= position:
            raise RuntimeError(f"{descriptor.job_type.value} chains backwards to {descriptor.successor.value}")


_validate_pipeline()
