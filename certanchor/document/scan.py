"""
QR scanning for uploaded (already stamped) documents.

Images are decoded with Pillow; PDFs are rasterised page by page with
PyMuPDF. The decoding itself is done by zbar through pyzbar, which needs
the native libzbar shared library at runtime.
"""
import io
import logging
from typing import List, Optional

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError

from certanchor.document.compose import detect_media_kind
from certanchor.document.qr import VerificationTarget, parse_verification_url
from certanchor.exceptions import DecodeError, InputError, ScannerUnavailableError
from certanchor.models import MediaKind

logger = logging.getLogger(__name__)

PDF_SCAN_DPI = 200
PDF_SCAN_MAX_PAGES = 3


def _zbar_decode():
    try:
        from pyzbar.pyzbar import ZBarSymbol, decode
    except ImportError as e:
        raise ScannerUnavailableError(
            f"QR scanner unavailable: {e}. Install the zbar shared library (e.g. libzbar0)."
        ) from e
    return lambda image: decode(image, symbols=[ZBarSymbol.QRCODE])


def scanner_available() -> bool:
    """True if pyzbar and libzbar can be loaded."""
    try:
        _zbar_decode()
        return True
    except ScannerUnavailableError:
        return False


def _decode_payloads(image: Image.Image) -> List[str]:
    decode = _zbar_decode()
    results = decode(image.convert("L"))
    return [r.data.decode("utf-8", errors="replace") for r in results]


def _image_pages(data: bytes) -> List[Image.Image]:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise DecodeError(f"Image loading failed: {e}") from e
    return [img]


def _pdf_pages(data: bytes) -> List[Image.Image]:
    zoom = PDF_SCAN_DPI / 72
    matrix = fitz.Matrix(zoom, zoom)
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except fitz.FileDataError as e:
        raise DecodeError(f"Invalid PDF file: {e}") from e

    pages = []
    try:
        for page_num in range(min(doc.page_count, PDF_SCAN_MAX_PAGES)):
            pix = doc[page_num].get_pixmap(matrix=matrix, alpha=False)
            pages.append(Image.frombytes("RGB", [pix.width, pix.height], pix.samples))
    finally:
        doc.close()
    return pages


def scan_payloads(data: bytes, content_type: Optional[str] = None, filename: str = "") -> List[str]:
    """
    Decode every QR code found in an image or the first pages of a PDF.

    Raises:
        InputError: empty or unsupported upload
        DecodeError: the file could not be opened
        ScannerUnavailableError: zbar is not installed
    """
    kind = detect_media_kind(content_type, data, filename)
    pages = _pdf_pages(data) if kind == MediaKind.PDF else _image_pages(data)

    payloads: List[str] = []
    for page in pages:
        payloads.extend(_decode_payloads(page))
        if payloads:
            break
    logger.debug(f"Scanned '{filename}': {len(payloads)} QR code(s)")
    return payloads


def extract_verification_target(
    data: bytes,
    content_type: Optional[str] = None,
    filename: str = "",
) -> Optional[VerificationTarget]:
    """
    Return the first scanned payload that is a verification URL, or None
    if the file carries no usable QR code.
    """
    for payload in scan_payloads(data, content_type, filename):
        try:
            return parse_verification_url(payload)
        except InputError:
            logger.debug(f"Ignoring non-verification QR payload in '{filename}'")
    return None
