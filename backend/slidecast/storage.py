import re
import shutil
from pathlib import Path

from slidecast.config import settings


STORAGE_SEGMENTS = ("source", "slides", "audio", "video", "final")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9.\-_]")


def sanitize_filename(filename: str) -> str:
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", Path(filename or "").name)
    return cleaned or "source"


def pad_index(index: int) -> str:
    return str(max(0, int(index))).zfill(4)


class StorageLayout:
    """Deterministic per-deck file locations under a single storage root."""

    def __init__(self, root: Path | str | None = None):
        self.root = Path(root) if root is not None else settings.storage_root

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def deck_root(self, deck_id: str) -> Path:
        return self.root / "decks" / deck_id

    def segment_path(self, deck_id: str, segment: str) -> Path:
        if segment not in STORAGE_SEGMENTS:
            raise ValueError(f"Unknown storage segment: {segment}")
        return self.deck_root(deck_id) / segment

    def ensure_deck_storage(self, deck_id: str) -> None:
        for segment in STORAGE_SEGMENTS:
            self.segment_path(deck_id, segment).mkdir(parents=True, exist_ok=True)

    def clear_deck_segment(self, deck_id: str, segment: str) -> None:
        folder = self.segment_path(deck_id, segment)
        if not folder.exists():
            return
        for entry in folder.iterdir():
            if entry.is_dir():
                shutil.rmtree(entry, ignore_errors=True)
            else:
                entry.unlink(missing_ok=True)

    def deck_source_path(self, deck_id: str, filename: str) -> Path:
        return self.segment_path(deck_id, "source") / sanitize_filename(filename)

    def slide_image_path(self, deck_id: str, slide_index: int) -> Path:
        return self.segment_path(deck_id, "slides") / f"{pad_index(slide_index)}.png"

    def slide_audio_path(self, deck_id: str, slide_index: int) -> Path:
        return self.segment_path(deck_id, "audio") / f"{pad_index(slide_index)}.mp3"

    def slide_video_path(self, deck_id: str, slide_index: int) -> Path:
        return self.segment_path(deck_id, "video") / f"{pad_index(slide_index)}.mp4"

    def final_video_path(self, deck_id: str) -> Path:
        return self.segment_path(deck_id, "final") / f"final-{deck_id}.mp4"
