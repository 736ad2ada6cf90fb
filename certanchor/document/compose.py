"""
Document compositor: embeds the verification QR into PDFs and raster images.

PDFs get the code in the top-right corner of the first page with a small
caption. Images are scanned for the quietest corner (see placement.py) and
re-encoded as PNG at their original resolution. On images every QR module
covers a whole number of pixels, at least three, so the pasted code stays
scannable.
"""
import io
import logging
import os
from dataclasses import dataclass
from typing import Optional

import fitz  # PyMuPDF
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from certanchor.config import Settings, get_settings
from certanchor.document.placement import DEFAULT_PADDING, PlacementResult, find_optimal_position
from certanchor.document.qr import qr_module_count, render_qr
from certanchor.exceptions import DecodeError, DocumentProcessingError, InputError
from certanchor.models import MediaKind

logger = logging.getLogger(__name__)

FONT_PATHS = {
    "bold": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSansBold.ttf",
        "/Library/Fonts/Arial Bold.ttf",
    ],
}

PDF_MAGIC = b"%PDF"

# PDF stamp geometry (points)
PDF_PADDING = 15
PDF_BACKING_MARGIN = 5
PDF_CAPTION_OFFSET = 18
PDF_HINT_OFFSET = 30
PDF_CAPTION_FONT_SIZE = 8
PDF_HINT_FONT_SIZE = 6
PDF_HINT = "Scan to verify"

# Image stamp geometry (pixels)
IMAGE_QR_RATIO = 0.08
IMAGE_QR_MIN = 60
IMAGE_QR_MAX = 120
MIN_MODULE_PIXELS = 3
IMAGE_BACKING_PADDING = 8
IMAGE_CAPTION_SPACE = 25
IMAGE_CAPTION_OFFSET = 15
IMAGE_CAPTION_SIZE = 10
IMAGE_CAPTION_EDGE = 4
IMAGE_BACKING_FILL = (255, 255, 255, 242)     # rgba(255,255,255,0.95)
IMAGE_BACKING_OUTLINE = (200, 200, 200, 204)  # rgba(200,200,200,0.8)
IMAGE_CAPTION_COLOR = (51, 51, 51, 255)        # #333


@dataclass
class ComposedImage:
    data: bytes
    width: int
    height: int
    qr_size: int
    placement: PlacementResult
    content_type: str = "image/png"


def _find_font(style: str = "bold") -> Optional[str]:
    for path in FONT_PATHS.get(style, []):
        if os.path.exists(path):
            return path
    return None


def _caption_font(size: int) -> ImageFont.ImageFont:
    path = _find_font("bold")
    if path:
        return ImageFont.truetype(path, size)
    logger.debug("No bold TrueType font found, using Pillow default")
    return ImageFont.load_default()


def detect_media_kind(content_type: Optional[str], data: bytes, filename: str = "") -> MediaKind:
    """
    Decide whether an upload is a PDF or a raster image.

    Raises:
        InputError: for empty uploads and anything that is neither
    """
    if not data:
        raise InputError(f"File '{filename}' is empty", code="EMPTY_FILE")

    content_type = (content_type or "").split(";")[0].strip().lower()
    if content_type == "application/pdf" or data[:4] == PDF_MAGIC:
        return MediaKind.PDF
    if content_type.startswith("image/"):
        return MediaKind.IMAGE
    raise InputError(
        f"Unsupported file type '{content_type or 'unknown'}' for '{filename}'. "
        "Only PDF and image files are supported.",
        code="UNSUPPORTED_MEDIA_TYPE",
    )


def image_qr_size(width: int) -> int:
    """Target QR edge length for an image: 8% of its width, kept within 60..120 px."""
    return int(max(IMAGE_QR_MIN, min(width * IMAGE_QR_RATIO, IMAGE_QR_MAX)))


def fit_image_qr_size(width: int, height: int, modules: int) -> int:
    """
    Edge length of the pasted code: a whole number of pixels per module,
    never fewer than MIN_MODULE_PIXELS, as close to image_qr_size() as that allows.

    Raises:
        InputError: if the image cannot hold the code, its padding and caption
    """
    per_module = max(MIN_MODULE_PIXELS, image_qr_size(width) // modules)
    size = modules * per_module
    if size + 2 * DEFAULT_PADDING > width or size + 2 * DEFAULT_PADDING + IMAGE_CAPTION_SPACE > height:
        raise InputError(
            f"Image of {width}x{height}px is too small for a scannable {size}px verification code",
            code="IMAGE_TOO_SMALL",
        )
    return size


def stamp_pdf(data: bytes, qr_png: bytes, document_id: str, qr_size: int = 80) -> bytes:
    """
    Stamp the QR code onto the first page of a PDF.

    The code goes in the top-right corner of the page's unrotated
    coordinate space; a page with /Rotate set shows it in another corner.
    The captions are right-aligned with the code and kept on the page.

    Args:
        data: Original PDF bytes
        qr_png: Rendered QR code (PNG)
        document_id: Printed under the code and recorded in metadata keywords
        qr_size: Edge length of the code in points

    Returns:
        The rewritten PDF. Pages after the first are not touched.

    Raises:
        InputError: for empty input
        DecodeError: if the PDF cannot be opened or saved
    """
    if not data:
        raise InputError("Invalid PDF file buffer", code="EMPTY_FILE")

    try:
        doc = fitz.open(stream=data, filetype="pdf")
        try:
            if doc.needs_pass:
                raise DecodeError("PDF is password protected")
            if doc.page_count == 0:
                raise DecodeError("PDF has no pages")

            page = doc[0]
            # insertion uses unrotated coordinates; page.rect is the displayed box
            page_width = page.cropbox.width

            x = page_width - qr_size - PDF_PADDING
            y = PDF_PADDING
            qr_right = x + qr_size
            qr_bottom = y + qr_size

            caption = f"Doc ID: {document_id}"
            caption_width = fitz.get_text_length(caption, fontname="helv", fontsize=PDF_CAPTION_FONT_SIZE)
            caption_x = max(PDF_BACKING_MARGIN, qr_right - caption_width)
            hint_width = fitz.get_text_length(PDF_HINT, fontname="helv", fontsize=PDF_HINT_FONT_SIZE)
            hint_x = max(PDF_BACKING_MARGIN, qr_right - hint_width)

            backing = fitz.Rect(
                min(x, caption_x, hint_x) - PDF_BACKING_MARGIN,
                y - PDF_BACKING_MARGIN,
                qr_right + PDF_BACKING_MARGIN,
                qr_bottom + PDF_HINT_OFFSET + PDF_BACKING_MARGIN,
            )
            shape = page.new_shape()
            shape.draw_rect(backing)
            shape.finish(
                color=(0.8, 0.8, 0.8),
                fill=(1, 1, 1),
                width=1,
                fill_opacity=0.9,
            )
            shape.commit()

            page.insert_image(fitz.Rect(x, y, qr_right, qr_bottom), stream=qr_png)

            page.insert_text(
                (caption_x, qr_bottom + PDF_CAPTION_OFFSET),
                caption,
                fontname="helv",
                fontsize=PDF_CAPTION_FONT_SIZE,
                color=(0.2, 0.2, 0.2),
            )
            page.insert_text(
                (hint_x, qr_bottom + PDF_HINT_OFFSET),
                PDF_HINT,
                fontname="helv",
                fontsize=PDF_HINT_FONT_SIZE,
                color=(0.4, 0.4, 0.4),
            )

            metadata = doc.metadata or {}
            metadata["keywords"] = f"{metadata.get('keywords') or ''} Document ID: {document_id}".strip()
            metadata["producer"] = "CertAnchor"
            doc.set_metadata(metadata)

            output = doc.tobytes(garbage=4, deflate=True)
        finally:
            doc.close()

    except DocumentProcessingError:
        raise
    except fitz.FileDataError as e:
        raise DecodeError(f"Invalid PDF file: {e}") from e
    except Exception as e:
        logger.exception("Failed to stamp PDF")
        raise DecodeError(f"PDF processing failed: {e}") from e

    logger.info(f"Stamped PDF {document_id}: QR {qr_size}pt at ({x:.0f}, {y:.0f}) on page 1")
    return output


def _decode_image(data: bytes) -> Image.Image:
    if not data:
        raise InputError("Invalid image file buffer", code="EMPTY_FILE")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        return img
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as e:
        raise DecodeError(f"Image loading failed: {e}") from e


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def stamp_image(
    data: bytes,
    payload: str,
    document_id: str,
    settings: Optional[Settings] = None,
) -> ComposedImage:
    """
    Stamp the verification QR onto a raster image.

    The output is a PNG with the same pixel dimensions as the input. Images
    with an alpha channel keep it; everything else comes back as RGB.

    The caption sits under the code, or above it when the code is in a
    bottom corner, and is shifted sideways to stay inside the image.
    """
    settings = settings or get_settings()
    source = _decode_image(data)
    width, height = source.size

    qr_size = fit_image_qr_size(width, height, qr_module_count(payload, settings))

    try:
        has_alpha = source.mode in ("RGBA", "LA") or (source.mode == "P" and "transparency" in source.info)
        canvas = source.convert("RGBA")

        placement = find_optimal_position(canvas, qr_size)
        x, y = placement.x, placement.y

        # render_qr draws modules * 2k pixels, so halving keeps every module whole
        qr_image = render_qr(payload, qr_size, settings).resize((qr_size, qr_size), Image.Resampling.NEAREST)

        font = _caption_font(IMAGE_CAPTION_SIZE)
        caption = f"ID: {document_id}"
        text_width = ImageDraw.Draw(canvas).textlength(caption, font=font)
        text_x = _clamp(
            x + qr_size / 2 - text_width / 2,
            IMAGE_CAPTION_EDGE,
            width - text_width - IMAGE_CAPTION_EDGE,
        )
        pad = IMAGE_BACKING_PADDING
        if y + qr_size + IMAGE_CAPTION_SPACE + pad <= height:
            band_top = y + qr_size
            box_top, box_bottom = y - pad, band_top + IMAGE_CAPTION_SPACE + pad
        else:
            band_top = y - IMAGE_CAPTION_SPACE
            box_top, box_bottom = band_top - pad, y + qr_size + pad
        text_y = band_top + IMAGE_CAPTION_OFFSET - IMAGE_CAPTION_SIZE

        overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        draw.rectangle(
            [
                max(0, min(x, text_x) - pad),
                max(0, box_top),
                min(width - 1, max(x + qr_size, text_x + text_width) + pad),
                min(height - 1, box_bottom),
            ],
            fill=IMAGE_BACKING_FILL,
            outline=IMAGE_BACKING_OUTLINE,
            width=2,
        )
        canvas = Image.alpha_composite(canvas, overlay)
        canvas.paste(qr_image.convert("RGBA"), (x, y))

        ImageDraw.Draw(canvas).text((text_x, text_y), caption, font=font, fill=IMAGE_CAPTION_COLOR)

        output = canvas if has_alpha else canvas.convert("RGB")
        buffer = io.BytesIO()
        output.save(buffer, format="PNG")

    except DocumentProcessingError:
        raise
    except Exception as e:
        logger.exception("Failed to stamp image")
        raise DecodeError(f"Image processing failed: {e}") from e

    logger.info(
        f"Stamped image {document_id}: QR {qr_size}px at ({x}, {y}) "
        f"region={placement.region} score={placement.score:.3f}"
    )
    return ComposedImage(
        data=buffer.getvalue(),
        width=width,
        height=height,
        qr_size=qr_size,
        placement=placement,
    )
