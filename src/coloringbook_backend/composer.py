"""
PDF composition for coloring books.

The composer lays out a cover page followed by one letter-sized page per
image reference, in input order. A page whose image cannot be resolved or
decoded becomes a placeholder page, so page count and numbering never depend
on how many images failed.
"""

from __future__ import annotations

import io
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence
from uuid import uuid4

from omegaconf import DictConfig
from PIL import Image
from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from .errors import JobCancelledError, ResolutionError
from .image_refs import ImageRef
from .resolver import ImageResolver, ResolutionResult
from .utils import ensure_directory

logger = logging.getLogger(__name__)

PAGE_SIZE = letter
TITLE_FONT = "Helvetica-Bold"
BODY_FONT = "Helvetica"
DEFAULT_TITLE = "My Coloring Book"
PLACEHOLDER_NOTE = "This image could not be included in your coloring book."


class PageKind(str, Enum):
    COVER = "cover"
    IMAGE = "image"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class PageRecord:
    number: int
    kind: PageKind
    source_index: Optional[int] = None
    detail: Optional[str] = None


@dataclass
class ComposedDocument:
    document_id: str
    path: Path
    title: str
    pages: List[PageRecord] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def placeholder_count(self) -> int:
        return sum(1 for page in self.pages if page.kind is PageKind.PLACEHOLDER)


@dataclass(frozen=True)
class PageLayout:
    width: float
    height: float
    margin: float
    footer_height: float

    @property
    def content_box(self) -> tuple[float, float, float, float]:
        """(x, y, width, height) of the area images are fitted into."""
        x = self.margin
        y = self.margin + self.footer_height
        return x, y, self.width - 2 * self.margin, self.height - 2 * self.margin - self.footer_height


def fit_within(image_width: float, image_height: float, box_width: float, box_height: float) -> tuple[float, float]:
    """Scale an image to fit a box while preserving its aspect ratio."""
    if image_width <= 0 or image_height <= 0:
        raise ValueError("Image dimensions must be positive")
    scale = min(box_width / image_width, box_height / image_height)
    return image_width * scale, image_height * scale


def load_image(data: bytes) -> Image.Image:
    """
    Decode image bytes into an RGB or greyscale PIL image.

    Transparent images are flattened onto white so line art stays printable.
    """
    with Image.open(io.BytesIO(data)) as source:
        source.load()
        if source.mode == "P" and "transparency" in source.info:
            source = source.convert("RGBA")
        if source.mode in ("RGBA", "LA"):
            rgba = source.convert("RGBA")
            flattened = Image.new("RGB", rgba.size, (255, 255, 255))
            flattened.paste(rgba, mask=rgba.getchannel("A"))
            return flattened
        if source.mode not in ("RGB", "L"):
            return source.convert("RGB")
        return source.copy()


class DocumentComposer:
    def __init__(
        self,
        resolver: ImageResolver,
        work_dir: Path,
        layout: DictConfig,
    ) -> None:
        self.resolver = resolver
        self.work_dir = Path(work_dir)
        self.layout = PageLayout(
            width=PAGE_SIZE[0],
            height=PAGE_SIZE[1],
            margin=float(layout.margin),
            footer_height=float(layout.footer_height),
        )
        self.subtitle: str = layout.subtitle
        self.instructions: List[str] = list(layout.instructions)

    def compose(
        self,
        refs: Sequence[ImageRef],
        title: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> ComposedDocument:
        """
        Build the coloring book PDF in the work directory.

        Per-image failures never raise; they produce placeholder pages.

        Args:
            refs: Image references in page order
            title: Cover title
            cancel_event: Checked before every page

        Returns:
            ComposedDocument pointing at the written temporary PDF

        Raises:
            JobCancelledError: If cancel_event was set; nothing is written
        """
        title = title.strip() or DEFAULT_TITLE
        document_id = uuid4().hex
        document = ComposedDocument(
            document_id=document_id,
            path=ensure_directory(self.work_dir) / f"{document_id}.pdf",
            title=title,
        )
        total_pages = len(refs) + 1

        pdf = canvas.Canvas(str(document.path), pagesize=PAGE_SIZE)
        pdf.setTitle(title)
        pdf.setSubject(f"Coloring book with {len(refs)} pages to color")

        logger.info(f"Composing '{title}' with {len(refs)} images ({total_pages} pages)")
        self._draw_cover(pdf, title, len(refs), total_pages)
        document.pages.append(PageRecord(number=1, kind=PageKind.COVER))

        for index, ref in enumerate(refs):
            self._check_cancelled(cancel_event)
            logger.info(f"Processing image {index + 1}/{len(refs)}")
            result = self.resolver.resolve_result(index, ref)
            document.pages.append(self._draw_image_page(pdf, result, index + 2, total_pages))
        self._check_cancelled(cancel_event)

        pdf.save()
        logger.info(
            f"PDF saved to {document.path} ({document.page_count} pages, "
            f"{document.placeholder_count} placeholders)"
        )
        return document

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelledError("Job was cancelled during composition")

    def _draw_footer(self, pdf: canvas.Canvas, page_number: int, total_pages: int) -> None:
        pdf.setFont(BODY_FONT, 8)
        pdf.drawCentredString(self.layout.width / 2, self.layout.margin, f"Page {page_number} of {total_pages}")

    def _draw_cover(self, pdf: canvas.Canvas, title: str, image_count: int, total_pages: int) -> None:
        center = self.layout.width / 2
        text_width = self.layout.width - 2 * self.layout.margin
        y = self.layout.height - self.layout.margin - 28

        pdf.setFont(TITLE_FONT, 28)
        for line in simpleSplit(title, TITLE_FONT, 28, text_width):
            pdf.drawCentredString(center, y, line)
            y -= 34

        y -= 28
        pdf.setFont(BODY_FONT, 14)
        pdf.drawCentredString(center, y, self.subtitle)
        y -= 20
        pdf.drawCentredString(center, y, f"Contains {image_count} pages to color")
        y -= 18
        pdf.drawCentredString(center, y, f"{total_pages} pages in this book")

        y -= 72
        pdf.setFont(BODY_FONT, 12)
        pdf.drawString(self.layout.margin, y, "Instructions:")
        y -= 18
        pdf.setFont(BODY_FONT, 10)
        for line in self.instructions:
            pdf.drawString(self.layout.margin, y, line)
            y -= 14

        self._draw_footer(pdf, 1, total_pages)
        pdf.showPage()

    def _draw_image_page(
        self,
        pdf: canvas.Canvas,
        result: ResolutionResult,
        page_number: int,
        total_pages: int,
    ) -> PageRecord:
        # Any failure while decoding or drawing one image only costs that page
        record = None
        failure = result.error
        if result.ok:
            try:
                record = self._draw_image(pdf, result, page_number)
            except Exception as exc:
                failure = ResolutionError(f"Image data could not be decoded: {exc}")
                logger.warning(f"Image {result.index + 1} could not be decoded: {exc}")

        if record is None:
            self._draw_placeholder(pdf, result.index)
            record = PageRecord(
                number=page_number,
                kind=PageKind.PLACEHOLDER,
                source_index=result.index,
                detail=str(failure) if failure else None,
            )

        self._draw_footer(pdf, page_number, total_pages)
        pdf.showPage()
        return record

    def _draw_image(self, pdf: canvas.Canvas, result: ResolutionResult, page_number: int) -> PageRecord:
        image = load_image(result.image.data)
        box_x, box_y, box_width, box_height = self.layout.content_box
        draw_width, draw_height = fit_within(image.width, image.height, box_width, box_height)
        x = box_x + (box_width - draw_width) / 2
        y = box_y + (box_height - draw_height) / 2
        pdf.drawImage(ImageReader(image), x, y, width=draw_width, height=draw_height)
        return PageRecord(number=page_number, kind=PageKind.IMAGE, source_index=result.index)

    def _draw_placeholder(self, pdf: canvas.Canvas, index: int) -> None:
        center_x = self.layout.width / 2
        center_y = self.layout.height / 2
        pdf.setFont(BODY_FONT, 14)
        pdf.drawCentredString(center_x, center_y + 10, f"Unable to process image {index + 1}")
        pdf.setFont(BODY_FONT, 10)
        pdf.drawCentredString(center_x, center_y - 14, PLACEHOLDER_NOTE)
