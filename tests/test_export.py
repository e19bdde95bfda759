from __future__ import annotations

from datetime import datetime

from src.service.export import ReportPDF, export_pdf, export_text, strip_emphasis, to_latin1

DOCUMENT = """## \U0001F3AC Executive Summary
A café tour with **bold** moments.

### \U0001F539 [00:05] - Intro
*   **\U0001F5E3\ufe0f Speaker**: Host
- dash bullet
"""


def test_text_export_keeps_document_verbatim() -> None:
    assert export_text(DOCUMENT) == DOCUMENT.encode("utf-8")


def test_latin1_drops_emoji_but_keeps_accents() -> None:
    assert to_latin1("\U0001F3AC Executive Summary") == "Executive Summary"
    assert to_latin1("café") == "café"
    assert strip_emphasis("**Speaker**: Host") == "Speaker: Host"


def test_pdf_export_renders_document() -> None:
    content = export_pdf(DOCUMENT, now=datetime(2024, 5, 1, 12, 30, 0))

    assert content.startswith(b"%PDF")
    assert content.rstrip().endswith(b"%%EOF")


def test_long_documents_paginate() -> None:
    paragraph = "Observation about the footage that keeps going for a while. " * 12
    document = "\n\n".join(["## Section"] + [paragraph] * 30)
    report = ReportPDF(now=datetime(2024, 5, 1))
    report.render(document)

    assert report.page_count > 1


def test_short_document_fits_one_page() -> None:
    report = ReportPDF()
    report.render(DOCUMENT)
    assert report.page_count == 1
