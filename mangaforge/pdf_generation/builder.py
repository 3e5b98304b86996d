"""
Render MangaForge story packages into a printable PDF: cover, chapter prose, panels.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Any, Optional
from xml.sax.saxutils import escape

import requests
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
from reportlab.lib.pagesizes import A4, LETTER
from reportlab.lib.styles import ParagraphStyle
from reportlab.lib.units import inch, mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFError, TTFont
from reportlab.pdfgen import canvas
from reportlab.platypus import Frame, Paragraph

from mangaforge.pipeline.pipeline import ChapterAsset, StoryPackage
from mangaforge.pipeline.renderer import Panel

logger = logging.getLogger(__name__)

CAPTION_BAND_HEIGHT = 1.1 * inch


@dataclass(frozen=True)
class PageLayoutConfig:
    paper_background: colors.Color
    cover_background: colors.Color
    panel_border: colors.Color
    text_color: colors.Color
    caption_color: colors.Color


DEFAULT_LAYOUT = PageLayoutConfig(
    paper_background=colors.HexColor("#FAF8F3"),
    cover_background=colors.HexColor("#1B1B1F"),
    panel_border=colors.HexColor("#111111"),
    text_color=colors.HexColor("#1F1F24"),
    caption_color=colors.HexColor("#3A3A44"),
)


PAGE_SIZES = {
    "a4": A4,
    "letter": LETTER,
    "tankobon": (5 * inch, 7.5 * inch),
}


class StorybookPDFBuilder:
    """
    Lay out a ``StoryPackage`` as a printable PDF.

    The builder creates:
      * A cover page with the story title, genre, and synopsis.
      * For each chapter, one prose page followed by one page per panel.
    Panels whose image cannot be fetched keep their page and caption.
    """

    def __init__(
        self,
        *,
        page_size: tuple[float, float] = PAGE_SIZES["a4"],
        margin_mm: float = 14.0,
        layout: PageLayoutConfig = DEFAULT_LAYOUT,
        request_timeout: float = 30.0,
    ) -> None:
        self.page_size = page_size
        self.margin = margin_mm * mm
        self.layout = layout
        self.request_timeout = request_timeout

        self.body_font, self.body_bold_font = self._configure_fonts()

        self.title_style = ParagraphStyle(
            name="StoryTitle",
            fontName=self.body_bold_font,
            fontSize=30,
            leading=34,
            alignment=TA_CENTER,
            textColor=colors.white,
            spaceAfter=14,
        )
        self.subtitle_style = ParagraphStyle(
            name="StorySubtitle",
            fontName=self.body_font,
            fontSize=14,
            leading=19,
            alignment=TA_CENTER,
            textColor=colors.white,
            spaceAfter=12,
        )
        self.chapter_title_style = ParagraphStyle(
            name="ChapterTitle",
            fontName=self.body_bold_font,
            fontSize=22,
            leading=26,
            alignment=TA_CENTER,
            textColor=self.layout.text_color,
            spaceAfter=16,
        )
        self.body_style = ParagraphStyle(
            name="Body",
            fontName=self.body_font,
            fontSize=11,
            leading=16,
            alignment=TA_JUSTIFY,
            textColor=self.layout.text_color,
            spaceAfter=9,
        )
        self.caption_style = ParagraphStyle(
            name="PanelCaption",
            fontName=self.body_bold_font,
            fontSize=12,
            leading=15,
            alignment=TA_CENTER,
            textColor=self.layout.caption_color,
        )
        self.footer_style = ParagraphStyle(
            name="Footer",
            fontName="Helvetica-Oblique",
            fontSize=9,
            leading=11,
            alignment=TA_CENTER,
            textColor=self.layout.caption_color,
        )

    def build_from_yaml(self, package_path: Path | str, output_path: Path | str) -> None:
        package = StoryPackage.from_yaml(package_path)
        self.build(package, output_path)

    def build(self, package: StoryPackage, output_path: Path | str) -> None:
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)

        pdf = canvas.Canvas(str(output_file), pagesize=self.page_size)
        pdf.setTitle(package.plan.title)
        width, height = self.page_size

        self._draw_cover_page(pdf, package, width, height)

        for asset in sorted(package.chapters, key=lambda item: item.chapter.chapter_number):
            self._draw_chapter_page(pdf, package, asset, width, height)
            for panel in sorted(asset.panels, key=lambda item: item.order):
                self._draw_panel_page(pdf, asset, panel, width, height)

        pdf.save()
        logger.info("Wrote %s", output_file)

    # ------------------------------------------------------------------ cover rendering

    def _draw_cover_page(
        self,
        pdf: canvas.Canvas,
        package: StoryPackage,
        width: float,
        height: float,
    ) -> None:
        pdf.setFillColor(self.layout.cover_background)
        pdf.rect(0, 0, width, height, stroke=0, fill=1)

        frame = Frame(
            self.margin,
            self.margin,
            width - 2 * self.margin,
            height - 2 * self.margin,
            showBoundary=0,
        )

        intro = [Paragraph(escape(package.plan.title), self.title_style)]
        if package.genre:
            intro.append(
                Paragraph(escape(f"A {package.genre} {package.style}"), self.subtitle_style)
            )
        if package.plan.synopsis:
            intro.append(
                Paragraph(
                    escape(package.plan.synopsis).replace("\n", "<br/>"),
                    ParagraphStyle("Synopsis", parent=self.subtitle_style, fontSize=12, leading=16),
                )
            )

        frame.addFromList(intro, pdf)
        pdf.showPage()

    # ------------------------------------------------------------------ chapter prose

    def _draw_chapter_page(
        self,
        pdf: canvas.Canvas,
        package: StoryPackage,
        asset: ChapterAsset,
        width: float,
        height: float,
    ) -> None:
        chapter = asset.chapter
        flowables = [
            Paragraph(
                escape(f"Chapter {chapter.chapter_number}: {chapter.title}"),
                self.chapter_title_style,
            )
        ]
        for block in filter(None, (part.strip() for part in chapter.prose.split("\n\n"))):
            flowables.append(Paragraph(escape(block).replace("\n", "<br/>"), self.body_style))

        footer_text = escape(f"{package.plan.title} · Chapter {chapter.chapter_number}")
        while flowables:
            pdf.setFillColor(self.layout.paper_background)
            pdf.rect(0, 0, width, height, stroke=0, fill=1)

            frame = Frame(
                self.margin,
                self.margin + 20,
                width - 2 * self.margin,
                height - 2 * self.margin - 20,
                showBoundary=0,
            )
            remaining = len(flowables)
            frame.addFromList(flowables, pdf)
            if len(flowables) == remaining:
                # Blocks taller than a whole page continue on the next one.
                parts = frame.split(flowables[0], pdf)
                if len(parts) > 1:
                    flowables[0:1] = parts
                    frame.addFromList(flowables, pdf)
                else:
                    logger.warning(
                        "Dropping unsplittable prose block in chapter %d", chapter.chapter_number
                    )
                    flowables.pop(0)

            self._draw_footer(pdf, footer_text, width)
            pdf.showPage()

    # ------------------------------------------------------------------ panel pages

    def _draw_panel_page(
        self,
        pdf: canvas.Canvas,
        asset: ChapterAsset,
        panel: Panel,
        width: float,
        height: float,
    ) -> None:
        pdf.setFillColor(self.layout.paper_background)
        pdf.rect(0, 0, width, height, stroke=0, fill=1)

        box_x = self.margin
        box_y = self.margin + CAPTION_BAND_HEIGHT
        box_width = width - 2 * self.margin
        box_height = height - 2 * self.margin - CAPTION_BAND_HEIGHT

        image_reader = self._fetch_image(panel.image_ref)
        if image_reader is not None:
            img_width, img_height = image_reader.getSize()
            scale = min(box_width / img_width, box_height / img_height)
            draw_width = img_width * scale
            draw_height = img_height * scale
            pdf.drawImage(
                image_reader,
                box_x + (box_width - draw_width) / 2,
                box_y + (box_height - draw_height) / 2,
                draw_width,
                draw_height,
                preserveAspectRatio=True,
                mask="auto",
            )

        pdf.saveState()
        pdf.setStrokeColor(self.layout.panel_border)
        pdf.setLineWidth(2.5)
        pdf.rect(box_x, box_y, box_width, box_height, stroke=1, fill=0)
        pdf.restoreState()

        if panel.caption:
            caption_frame = Frame(
                self.margin,
                self.margin + 16,
                width - 2 * self.margin,
                CAPTION_BAND_HEIGHT - 20,
                showBoundary=0,
            )
            caption_frame.addFromList([Paragraph(escape(panel.caption), self.caption_style)], pdf)

        footer_text = f"Chapter {asset.chapter.chapter_number} \u00b7 Panel {panel.order}"
        self._draw_footer(pdf, footer_text, width)
        pdf.showPage()

    # ------------------------------------------------------------------ helpers

    def _draw_footer(self, pdf: canvas.Canvas, text: str, width: float) -> None:
        footer_frame = Frame(
            self.margin,
            6,
            width - 2 * self.margin,
            20,
            showBoundary=0,
        )
        footer_frame.addFromList([Paragraph(text, self.footer_style)], pdf)

    def _fetch_image(self, image_ref: str) -> Optional[ImageReader]:
        if not image_ref:
            return None

        local = Path(image_ref)
        if not image_ref.startswith(("http://", "https://")):
            if local.exists():
                return _open_image(str(local), image_ref)
            logger.warning("Panel image %s not found", image_ref)
            return None

        try:
            response = requests.get(image_ref, timeout=self.request_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Could not fetch panel image %s: %s", image_ref, exc)
            return None
        return _open_image(BytesIO(response.content), image_ref)

    @staticmethod
    def _configure_fonts() -> tuple[str, str]:
        """Prefer DejaVu Sans so dialogue with accents or symbols renders; else Helvetica."""
        if _register_font("DejaVuSans", "DejaVuSans.ttf") and _register_font(
            "DejaVuSans-Bold", "DejaVuSans-Bold.ttf"
        ):
            return "DejaVuSans", "DejaVuSans-Bold"
        return "Helvetica", "Helvetica-Bold"


def _open_image(source: Any, image_ref: str) -> Optional[ImageReader]:
    try:
        reader = ImageReader(source)
        reader.getSize()
    except (OSError, ValueError) as exc:
        logger.warning("Panel image %s is not a readable image: %s", image_ref, exc)
        return None
    return reader


FONT_ROOTS = (
    Path("/usr/share/fonts"),
    Path("/usr/local/share/fonts"),
    Path("/Library/Fonts"),
    Path.home() / ".fonts",
    Path("C:/Windows/Fonts"),
)


def _register_font(font_name: str, filename: str) -> bool:
    if font_name in pdfmetrics.getRegisteredFontNames():
        return True

    for root in FONT_ROOTS:
        if not root.is_dir():
            continue
        for font_path in root.rglob(filename):
            try:
                pdfmetrics.registerFont(TTFont(font_name, str(font_path)))
            except TTFError as exc:
                logger.debug("Skipping font %s: %s", font_path, exc)
                continue
            return True
    return False
