"""
Built-in certificate template.

Renders a one-page A4 certificate of completion: a coloured border, a
heading, the recipient and the course, then the issuer, issue date and
document id. The page leaves the top-right corner free for the
verification stamp that issuance adds afterwards.
"""
import logging
from dataclasses import dataclass
from datetime import date

import fitz  # PyMuPDF

from certanchor.exceptions import DecodeError, InputError

logger = logging.getLogger(__name__)

MM = 72 / 25.4

PAGE = fitz.paper_rect("a4")
BORDER = fitz.Rect(20 * MM, 20 * MM, 190 * MM, 260 * MM)
BORDER_WIDTH = 2
TEXT_MARGIN = 10 * MM
MIN_FONT_SIZE = 8

ACCENT = (0, 100 / 255, 200 / 255)
NAME_COLOR = (200 / 255, 0, 0)
COURSE_COLOR = (0, 150 / 255, 0)
BODY_COLOR = (0, 0, 0)
NOTE_COLOR = (0.3, 0.3, 0.3)

HEADING = "CERTIFICATE OF COMPLETION"


@dataclass
class CertificateContent:
    recipient: str
    course: str
    issuer: str
    document_id: str
    issue_date: date
    verify_origin: str = ""


def _fit_font_size(text: str, fontname: str, fontsize: float, max_width: float) -> float:
    width = fitz.get_text_length(text, fontname=fontname, fontsize=fontsize)
    if width <= max_width:
        return fontsize
    fitted = fontsize * max_width / width
    if fitted < MIN_FONT_SIZE:
        raise InputError(
            f"'{text[:40]}...' is too long to fit on the certificate",
            code="TEXT_TOO_LONG",
        )
    return fitted


def _centred(page: fitz.Page, y_mm: float, text: str, fontsize: float, color, fontname: str = "helv") -> None:
    max_width = BORDER.width - 2 * TEXT_MARGIN
    fontsize = _fit_font_size(text, fontname, fontsize, max_width)
    width = fitz.get_text_length(text, fontname=fontname, fontsize=fontsize)
    page.insert_text(
        ((PAGE.width - width) / 2, y_mm * MM),
        text,
        fontname=fontname,
        fontsize=fontsize,
        color=color,
    )


def render_certificate(content: CertificateContent) -> bytes:
    """
    Draw the certificate and return the PDF bytes.

    Raises:
        InputError: if a name or course is too long to print legibly
        DecodeError: if PyMuPDF fails to produce the document
    """
    doc = fitz.open()
    try:
        page = doc.new_page(width=PAGE.width, height=PAGE.height)

        shape = page.new_shape()
        shape.draw_rect(BORDER)
        shape.finish(color=ACCENT, width=BORDER_WIDTH)
        shape.commit()

        _centred(page, 60, HEADING, 24, ACCENT, fontname="hebo")
        _centred(page, 100, "This is to certify that", 16, BODY_COLOR)
        _centred(page, 120, content.recipient, 20, NAME_COLOR, fontname="hebo")
        _centred(page, 140, "has successfully completed", 16, BODY_COLOR)
        _centred(page, 160, content.course, 18, COURSE_COLOR)
        _centred(page, 180, f"Issued by {content.issuer}", 14, BODY_COLOR)
        _centred(page, 200, f"Issue Date: {content.issue_date.isoformat()}", 12, BODY_COLOR)
        _centred(page, 210, f"Certificate ID: {content.document_id}", 12, BODY_COLOR)
        _centred(page, 230, "Anchored on-chain: scan the code in the corner to verify", 10, NOTE_COLOR)
        if content.verify_origin:
            _centred(page, 240, f"Verify at: {content.verify_origin}/verify", 10, NOTE_COLOR)

        doc.set_metadata({
            "title": f"Certificate {content.document_id}",
            "subject": content.course,
            "author": content.issuer,
            "creator": "CertAnchor",
        })
        data = doc.tobytes(garbage=3, deflate=True)
    except InputError:
        raise
    except Exception as e:
        logger.exception("Failed to render certificate template")
        raise DecodeError(f"Certificate rendering failed: {e}") from e
    finally:
        doc.close()

    logger.info(f"Rendered certificate {content.document_id} ({len(data)} bytes)")
    return data
