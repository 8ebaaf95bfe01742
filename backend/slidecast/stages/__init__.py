from slidecast.stages.assemble import AssembleProcessor
from slidecast.stages.audio import AudioProcessor
from slidecast.stages.base import StageOutcome, StageProcessor
from slidecast.stages.ingest import IngestProcessor
from slidecast.stages.scripts import ScriptProcessor
from slidecast.stages.video import VideoProcessor


__all__ = [
    "AssembleProcessor",
    "AudioProcessor",
    "IngestProcessor",
    "ScriptProcessor",
    "StageOutcome",
    "StageProcessor",
    "VideoProcessor",
]
