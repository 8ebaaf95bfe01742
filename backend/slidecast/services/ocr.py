from __future__ import annotations

import logging
from pathlib import Path

import pytesseract
from PIL import Image, UnidentifiedImageError


logger = logging.getLogger("slidecast.media")


class TesseractOcr:
    """Best-effort OCR for text-light slides; failures yield an empty string."""

    def __init__(self, language: str = "eng"):
        self.language = language

    def extract_text(self, image_path: Path) -> str:
        if not image_path.exists():
            return ""
        try:
            with Image.open(image_path) as image:
                text = pytesseract.image_to_string(image.convert("RGB"), lang=self.language)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, UnidentifiedImageError, OSError) as exc:
            logger.warning("OCR failed for %s: %s", image_path, exc)
            return ""
        return "\n".join(line.strip() for line in text.splitlines() if line.strip())
