from __future__ import annotations

import json
import logging
import math
import subprocess
import tempfile
from pathlib import Path

from slidecast.config import Settings
from slidecast.errors import MediaError


logger = logging.getLogger("slidecast.media")


def run_command(command: list[str], *, timeout_seconds: int = 600, cwd: Path | None = None) -> str:
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=max(10, int(timeout_seconds)),
            cwd=str(cwd) if cwd else None,
        )
    except FileNotFoundError as exc:
        raise MediaError(f"{command[0]} is not installed or not on PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise MediaError(f"{Path(command[0]).name} timed out after {exc.timeout}s") from exc

    if result.returncode != 0:
        err = (result.stderr or result.stdout or "").strip()
        tail = err[-600:]
        raise MediaError(f"{Path(command[0]).name} exited with {result.returncode}: {tail}", stderr=err)
    if result.stderr:
        logger.debug("%s stderr: %s", Path(command[0]).name, result.stderr.strip()[-400:])
    return result.stdout


class MediaToolkit:
    """ffmpeg/ffprobe wrappers used by the render and assembly stages."""

    def __init__(self, settings: Settings):
        self.ffmpeg = settings.ffmpeg_path
        self.ffprobe = settings.ffprobe_path
        self.timeout_seconds = settings.command_timeout_seconds

    def probe_duration(self, media_path: Path | str) -> float | None:
        command = [
            self.ffprobe,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "json",
            str(media_path),
        ]
        try:
            output = run_command(command, timeout_seconds=60)
            duration = float(json.loads(output or "{}").get("format", {}).get("duration"))
        except (MediaError, ValueError, TypeError) as exc:
            logger.warning("ffprobe failed for %s: %s", media_path, exc)
            return None
        return duration if math.isfinite(duration) else None

    def render_slide_video(self, image_path: Path, audio_path: Path, output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        run_command(
            [
                self.ffmpeg,
                "-y",
                "-loop",
                "1",
                "-i",
                str(image_path),
                "-i",
                str(audio_path),
                "-c:v",
                "libx264",
                "-tune",
                "stillimage",
                "-c:a",
                "aac",
                "-b:a",
                "192k",
                "-pix_fmt",
                "yuv420p",
                "-vf",
                "scale=trunc(iw/2)*2:trunc(ih/2)*2",
                "-shortest",
                str(output_path),
            ],
            timeout_seconds=self.timeout_seconds,
        )

    def concat_videos(self, clip_paths: list[Path], output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="slidecast-concat-") as tmp:
            list_file = Path(tmp) / "clips.txt"
            lines = [f"file '{Path(path).resolve().as_posix()}'" for path in clip_paths]
            list_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
            run_command(
                [
                    self.ffmpeg,
                    "-y",
                    "-f",
                    "concat",
                    "-safe",
                    "0",
                    "-i",
                    str(list_file),
                    "-c",
                    "copy",
                    str(output_path),
                ],
                timeout_seconds=self.timeout_seconds,
            )
