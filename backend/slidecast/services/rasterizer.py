from __future__ import annotations

import logging
import re
import shutil
import tempfile
from pathlib import Path

from slidecast.config import Settings
from slidecast.errors import IngestionError
from slidecast.services.media import run_command


logger = logging.getLogger("slidecast.media")

_PAGE_NUMBER = re.compile(r"(\d+)(?=\.png$)")


def _page_number(path: Path) -> int:
    match = _PAGE_NUMBER.search(path.name)
    return int(match.group(1)) if match else 0


class SlideRasterizer:
    """Renders deck pages to PNG using LibreOffice (PPTX -> PDF) and pdftoppm (PDF -> PNG)."""

    def __init__(self, settings: Settings):
        self.libreoffice = settings.libreoffice_path
        self.pdftoppm = settings.pdftoppm_path
        self.dpi = settings.raster_dpi
        self.timeout_seconds = settings.command_timeout_seconds

    def convert_to_pdf(self, source: Path, output_dir: Path) -> Path:
        run_command(
            [self.libreoffice, "--headless", "--convert-to", "pdf", "--outdir", str(output_dir), str(source)],
            timeout_seconds=self.timeout_seconds,
        )
        pdf_path = output_dir / f"{source.stem}.pdf"
        if not pdf_path.exists():
            raise IngestionError(f"LibreOffice did not produce a PDF for {source.name}")
        return pdf_path

    def rasterize_pdf(self, pdf_path: Path, target_paths: list[Path]) -> list[Path]:
        """Render each page and copy page N to ``target_paths[N-1]``; returns the paths written."""
        with tempfile.TemporaryDirectory(prefix="slidecast-raster-") as tmp:
            prefix = Path(tmp) / "page"
            run_command(
                [self.pdftoppm, "-png", "-r", str(self.dpi), str(pdf_path), str(prefix)],
                timeout_seconds=self.timeout_seconds,
            )
            pages = sorted(Path(tmp).glob("page*.png"), key=_page_number)
            if len(pages) != len(target_paths):
                logger.warning(
                    "rasterized page count %s does not match slide count %s for %s",
                    len(pages),
                    len(target_paths),
                    pdf_path.name,
                )
            written: list[Path] = []
            for page, target in zip(pages, target_paths):
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(page, target)
                written.append(target)
            return written

    def rasterize(self, source: Path, source_type: str, target_paths: list[Path]) -> list[Path]:
        if source_type == "PDF":
            return self.rasterize_pdf(source, target_paths)
        with tempfile.TemporaryDirectory(prefix="slidecast-office-") as tmp:
            pdf_path = self.convert_to_pdf(source, Path(tmp))
            return self.rasterize_pdf(pdf_path, target_paths)
