from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pptx import Presentation
from pptx.enum.shapes import MSO_SHAPE_TYPE
from pypdf import PdfReader

from slidecast.errors import IngestionError


SUPPORTED_EXTENSIONS = {".pptx": "PPTX", ".pdf": "PDF"}


@dataclass
class ExtractedSlide:
    index: int
    title: str | None = None
    body: str | None = None
    notes: str | None = None
    ocr_text: str | None = None
    needs_image_context: bool = False

    def text_length(self) -> int:
        parts = [self.body, self.notes, self.ocr_text]
        return len("\n".join(part.strip() for part in parts if part and part.strip()))


def source_type_for(filename: str) -> str:
    suffix = Path(filename or "").suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise ValueError(f"Unsupported deck extension: {suffix or '<none>'}")
    return SUPPORTED_EXTENSIONS[suffix]


def _clean(text: str | None) -> str | None:
    if not text:
        return None
    lines = [line.strip() for line in str(text).replace("\x0b", "\n").splitlines()]
    cleaned = "\n".join(line for line in lines if line)
    return cleaned or None


def _iter_shapes(shape_collection):
    for shape in shape_collection:
        yield shape
        if shape.shape_type == MSO_SHAPE_TYPE.GROUP:
            yield from _iter_shapes(shape.shapes)


def _shape_sort_key(shape) -> tuple[float, float]:
    return (float(getattr(shape, "top", 0) or 0), float(getattr(shape, "left", 0) or 0))


def _shape_text(shape) -> str | None:
    if getattr(shape, "has_text_frame", False) and shape.has_text_frame:
        return _clean(shape.text_frame.text)
    if getattr(shape, "has_table", False) and shape.has_table:
        rows = []
        for row in shape.table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text and cell.text.strip()]
            if cells:
                rows.append(" | ".join(cells))
        return _clean("\n".join(rows))
    return None


def extract_pptx_slides(path: Path) -> list[ExtractedSlide]:
    try:
        presentation = Presentation(str(path))
    except Exception as exc:
        raise IngestionError(f"Unable to open PPTX {path.name}: {exc}") from exc

    slides: list[ExtractedSlide] = []
    for idx, slide in enumerate(presentation.slides, start=1):
        title_shape = slide.shapes.title
        title = _clean(title_shape.text_frame.text) if title_shape is not None and title_shape.has_text_frame else None

        texts: list[str] = []
        shapes = [shape for shape in _iter_shapes(slide.shapes) if shape.shape_type != MSO_SHAPE_TYPE.GROUP]
        for shape in sorted(shapes, key=_shape_sort_key):
            if title_shape is not None and shape.shape_id == title_shape.shape_id:
                continue
            text = _shape_text(shape)
            if text:
                texts.append(text)

        notes = None
        if slide.has_notes_slide:
            notes_frame = slide.notes_slide.notes_text_frame
            notes = _clean(notes_frame.text) if notes_frame is not None else None

        slides.append(ExtractedSlide(index=idx, title=title, body=_clean("\n".join(texts)), notes=notes))
    return slides


def extract_pdf_slides(path: Path) -> list[ExtractedSlide]:
    try:
        reader = PdfReader(str(path))
    except Exception as exc:
        raise IngestionError(f"Unable to open PDF {path.name}: {exc}") from exc

    slides: list[ExtractedSlide] = []
    for idx, page in enumerate(reader.pages, start=1):
        body = _clean(page.extract_text() or "")
        title = body.splitlines()[0][:200] if body else None
        slides.append(ExtractedSlide(index=idx, title=title, body=body))
    return slides


def extract_slides(path: Path, source_type: str) -> list[ExtractedSlide]:
    if source_type == "PPTX":
        return extract_pptx_slides(path)
    if source_type == "PDF":
        return extract_pdf_slides(path)
    raise IngestionError(f"Unsupported source type: {source_type}")
