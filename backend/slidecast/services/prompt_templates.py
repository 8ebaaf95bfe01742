from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any


logger = logging.getLogger("slidecast.jobs")

NO_TEXT_FALLBACK = (
    "No readable text was extracted from this slide. Use the accompanying image and the neighboring "
    "slides for additional context."
)


@dataclass
class SlideContext:
    index: int
    title: str | None
    text: str
    notes: str | None = None
    image_base64: str | None = None


def build_slide_context(slide, *, attach_image: bool = True) -> SlideContext:
    segments = [segment.strip() for segment in (slide.body, slide.ocr_text) if segment and segment.strip()]
    text = "\n\n".join(segments) or NO_TEXT_FALLBACK

    image_base64 = None
    if attach_image and slide.needs_image_context and slide.image_path:
        try:
            image_base64 = base64.b64encode(Path(slide.image_path).read_bytes()).decode("ascii")
        except OSError as exc:
            logger.warning("unable to attach slide image %s: %s", slide.image_path, exc)

    notes = slide.speaker_notes.strip() if slide.speaker_notes and slide.speaker_notes.strip() else None
    return SlideContext(index=slide.index, title=slide.title, text=text, notes=notes, image_base64=image_base64)


def _heading(context: SlideContext) -> str:
    return f"Slide {context.index}" + (f" ({context.title})" if context.title else "")


def _neighbor_brief(context: SlideContext, limit: int = 400) -> str:
    text = context.text if context.text != NO_TEXT_FALLBACK else "(no readable text)"
    if len(text) > limit:
        text = text[:limit].rstrip() + " ..."
    return f"{_heading(context)}\n{text}"


def build_script_request(
    *,
    model: str,
    system_prompt: str,
    deck_title: str,
    target: SlideContext,
    neighbors: list[SlideContext],
    max_output_tokens: int = 800,
) -> dict[str, Any]:
    user_content: list[dict[str, str]] = [
        {
            "type": "input_text",
            "text": (
                f'You are writing narration for one slide of the deck "{deck_title}". '
                "Keep a professional, conversational tone and do not reference slide numbers explicitly."
            ),
        }
    ]

    if neighbors:
        context_block = "\n\n".join(_neighbor_brief(row) for row in neighbors)
        user_content.append({"type": "input_text", "text": f"Surrounding slides, for context only:\n\n{context_block}"})

    target_text = f"Slide to narrate: {_heading(target)}\n{target.text}"
    if target.notes:
        target_text += f"\n\nSpeaker notes:\n{target.notes}"
    user_content.append({"type": "input_text", "text": target_text})

    if target.image_base64:
        user_content.append({"type": "input_image", "image_url": f"data:image/png;base64,{target.image_base64}"})

    user_content.append({"type": "input_text", "text": "Return only the narration text for this slide."})

    return {
        "model": model,
        "input": [
            {"role": "system", "content": [{"type": "input_text", "text": system_prompt}]},
            {"role": "user", "content": user_content},
        ],
        "max_output_tokens": max_output_tokens,
    }


def extract_output_text(data: dict[str, Any]) -> str:
    direct = data.get("output_text")
    if isinstance(direct, str) and direct.strip():
        return direct.strip()

    chunks: list[str] = []
    for entry in data.get("output") or []:
        if not isinstance(entry, dict):
            continue
        for block in entry.get("content") or []:
            if isinstance(block, dict) and block.get("type") == "output_text" and isinstance(block.get("text"), str):
                chunks.append(block["text"])
    return "\n".join(chunks).strip()
