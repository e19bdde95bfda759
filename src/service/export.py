"""Plain-text and PDF export of analysis documents."""
from __future__ import annotations

import re
from datetime import datetime
from typing import List, Optional

from fpdf import FPDF

TEXT_FILENAME = "analysis_report.txt"
PDF_FILENAME = "visual-reasoning-analysis.pdf"
PAGE_HEADER = "VIDEO TO VISUAL REASONING"
DOCUMENT_TITLE = "Analysis Results"

ACCENT = (255, 198, 0)
BLACK = (5, 5, 5)
GRAY = (60, 60, 60)
STAMP_GRAY = (150, 150, 150)

MARGIN = 20.0
LINE_HEIGHT = 5.5
CONTENT_TOP = 35.0

_BULLET_PREFIX = re.compile(r"^[*\-\s]+")
_H2_PREFIX = re.compile(r"^##\s+")
_H3_PREFIX = re.compile(r"^###\s+")


def export_text(document: str) -> bytes:
    return document.encode("utf-8")


def to_latin1(text: str) -> str:
    """Drop characters the PDF core fonts cannot encode (emoji and friends)."""
    return text.encode("latin-1", "ignore").decode("latin-1").strip()


def strip_emphasis(text: str) -> str:
    return text.replace("**", "")


class ReportPDF:
    """Renders a markdown analysis into a paginated, branded PDF."""

    def __init__(self, now: Optional[datetime] = None) -> None:
        self._now = now or datetime.now()
        self._pdf = FPDF(orientation="P", unit="mm", format="A4")
        self._pdf.set_auto_page_break(False)
        self._page_width = self._pdf.w
        self._page_height = self._pdf.h
        self._content_width = self._page_width - 2 * MARGIN
        self._y = MARGIN

    @property
    def page_count(self) -> int:
        return self._pdf.page

    def render(self, document: str) -> bytes:
        self._new_page()
        self._pdf.set_font("Times", "I", 24)
        self._pdf.set_text_color(*BLACK)
        self._pdf.text(MARGIN, self._y, DOCUMENT_TITLE)
        self._y += 15

        for line in document.split("\n"):
            self._render_line(line)
        return bytes(self._pdf.output())

    # ------------------------------------------------------------------
    def _stamp(self) -> str:
        return f"ID_{self._now.strftime('%H%M%S')} // {self._now.strftime('%Y-%m-%d')}"

    def _new_page(self) -> None:
        pdf = self._pdf
        pdf.add_page()
        pdf.set_font("Helvetica", "B", 8)
        pdf.set_text_color(*BLACK)
        pdf.text(MARGIN, 15, PAGE_HEADER)

        pdf.set_font("Courier", "", 8)
        pdf.set_text_color(*STAMP_GRAY)
        stamp = self._stamp()
        pdf.text(self._page_width - MARGIN - pdf.get_string_width(stamp), 15, stamp)

        pdf.set_draw_color(*ACCENT)
        pdf.set_line_width(0.5)
        pdf.line(MARGIN, 20, self._page_width - MARGIN, 20)
        self._y = CONTENT_TOP

    def _break_if_past(self, y: float) -> None:
        if y > self._page_height - MARGIN:
            self._new_page()

    def _wrap(self, text: str, width: float) -> List[str]:
        lines: List[str] = []
        current = ""
        for word in text.split():
            candidate = f"{current} {word}" if current else word
            if current and self._pdf.get_string_width(candidate) > width:
                lines.append(current)
                current = word
            else:
                current = candidate
        if current:
            lines.append(current)
        return lines

    def _render_line(self, line: str) -> None:
        pdf = self._pdf
        self._break_if_past(self._y)
        trimmed = line.strip()
        if not trimmed:
            self._y += LINE_HEIGHT / 2
            return

        if trimmed.startswith("## "):
            self._y += 8
            self._break_if_past(self._y)
            text = to_latin1(strip_emphasis(_H2_PREFIX.sub("", trimmed)))
            pdf.set_font("Times", "B", 14)
            pdf.set_text_color(*BLACK)
            pdf.text(MARGIN, self._y, text)
            pdf.set_draw_color(*ACCENT)
            pdf.set_line_width(0.5)
            pdf.line(MARGIN, self._y + 2, MARGIN + pdf.get_string_width(text), self._y + 2)
            self._y += LINE_HEIGHT * 2
        elif trimmed.startswith("### "):
            self._y += 4
            self._break_if_past(self._y)
            text = to_latin1(strip_emphasis(_H3_PREFIX.sub("", trimmed))).upper()
            pdf.set_font("Courier", "B", 10)
            pdf.set_text_color(*BLACK)
            pdf.text(MARGIN, self._y, text)
            self._y += LINE_HEIGHT * 1.5
        elif trimmed.startswith(("*", "-")):
            text = to_latin1(strip_emphasis(_BULLET_PREFIX.sub("", trimmed)))
            pdf.set_font("Helvetica", "", 10)
            lines = self._wrap(text, self._content_width - 8)
            if self._y + len(lines) * LINE_HEIGHT > self._page_height - MARGIN:
                self._new_page()
            pdf.set_fill_color(*ACCENT)
            pdf.circle(MARGIN + 2, self._y - 1.5, 0.8, style="F")
            self._draw_lines(lines, MARGIN + 8)
            self._y += 2
        else:
            text = to_latin1(strip_emphasis(trimmed))
            pdf.set_font("Helvetica", "", 10)
            lines = self._wrap(text, self._content_width)
            if self._y + len(lines) * LINE_HEIGHT > self._page_height - MARGIN:
                self._new_page()
            self._draw_lines(lines, MARGIN)

    def _draw_lines(self, lines: List[str], x: float) -> None:
        self._pdf.set_font("Helvetica", "", 10)
        self._pdf.set_text_color(*GRAY)
        for offset, text in enumerate(lines):
            self._pdf.text(x, self._y + offset * LINE_HEIGHT, text)
        self._y += len(lines) * LINE_HEIGHT


def export_pdf(document: str, now: Optional[datetime] = None) -> bytes:
    return ReportPDF(now=now).render(document)


__all__ = [
    "PDF_FILENAME",
    "TEXT_FILENAME",
    "ReportPDF",
    "export_pdf",
    "export_text",
    "to_latin1",
]
