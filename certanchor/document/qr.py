"""
Verification QR codes: payload URL and rendered image.

The payload is a URL the verification frontend understands:
    <origin>/verify?chain=<chain>&contract=<address>&id=<docId>
"""
import io
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse

import qrcode
from PIL import Image, ImageFilter
from qrcode.exceptions import DataOverflowError

from certanchor.config import ErrorCorrection, Settings, get_settings
from certanchor.exceptions import InputError

logger = logging.getLogger(__name__)

ERROR_CORRECTION_LEVELS = {
    ErrorCorrection.L: qrcode.constants.ERROR_CORRECT_L,
    ErrorCorrection.M: qrcode.constants.ERROR_CORRECT_M,
    ErrorCorrection.Q: qrcode.constants.ERROR_CORRECT_Q,
    ErrorCorrection.H: qrcode.constants.ERROR_CORRECT_H,
}

# 3x3 sharpen; PIL leaves the outermost row/column untouched and clamps to 0..255
SHARPEN_KERNEL = ImageFilter.Kernel(
    (3, 3),
    [0, -1, 0,
     -1, 5, -1,
     0, -1, 0],
    scale=1,
    offset=0,
)

# Rendered at twice the display size so the code stays crisp when scaled down
RENDER_SCALE = 2


@dataclass(frozen=True)
class VerificationTarget:
    """The three query values carried by a verification URL."""
    chain: str
    contract: str
    document_id: str


def build_verification_url(origin: str, chain: str, contract: str, document_id: str) -> str:
    query = urlencode({"chain": chain, "contract": contract, "id": document_id})
    return f"{origin.rstrip('/')}/verify?{query}"


def parse_verification_url(url: str) -> VerificationTarget:
    """
    Extract chain, contract and id from a scanned payload.

    Raises:
        InputError: if the payload is not a URL or carries no document id
    """
    parsed = urlparse(url.strip())
    if not parsed.scheme or not parsed.netloc:
        raise InputError(f"QR payload is not a URL: {url[:80]}", code="INVALID_QR_PAYLOAD")

    params = parse_qs(parsed.query)
    document_id = (params.get("id") or [""])[0].strip()
    if not document_id:
        raise InputError("Verification URL has no document id", code="INVALID_QR_PAYLOAD")

    return VerificationTarget(
        chain=(params.get("chain") or [""])[0],
        contract=(params.get("contract") or [""])[0],
        document_id=document_id,
    )


def _build_symbol(payload: str, settings: Settings) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECTION_LEVELS[settings.qr_error_correction],
        box_size=10,
        border=settings.qr_margin,
    )
    qr.add_data(payload)
    try:
        qr.make(fit=True)
    except (DataOverflowError, ValueError) as e:
        # qrcode 8 reports an overflow as ValueError("Invalid version ...")
        raise InputError(
            f"QR payload of {len(payload)} characters does not fit any QR version",
            code="QR_PAYLOAD_TOO_LARGE",
        ) from e

    if qr.version > settings.qr_max_version:
        raise InputError(
            f"QR payload needs version {qr.version}, above the configured maximum "
            f"{settings.qr_max_version} at level {settings.qr_error_correction.value}",
            code="QR_PAYLOAD_TOO_LARGE",
        )
    return qr


def _symbol_width(qr: qrcode.QRCode) -> int:
    return qr.modules_count + 2 * qr.border


def qr_module_count(payload: str, settings: Optional[Settings] = None) -> int:
    """Modules across the symbol for `payload`, quiet zone included."""
    return _symbol_width(_build_symbol(payload, settings or get_settings()))


def draw_qr(payload: str, pixels: int, settings: Optional[Settings] = None) -> Image.Image:
    """
    Draw the unsharpened symbol as an RGB image of exactly pixels x pixels.

    When `pixels` is a multiple of the module count every module gets the
    same whole number of pixels. Otherwise the code is drawn large and
    scaled with NEAREST, which leaves modules up to one pixel uneven.
    """
    settings = settings or get_settings()
    if pixels <= 0:
        raise InputError(f"QR size must be positive, got {pixels}")

    qr = _build_symbol(payload, settings)
    modules = _symbol_width(qr)
    if pixels % modules == 0:
        qr.box_size = pixels // modules
        return qr.make_image(fill_color=settings.qr_color, back_color=settings.qr_background).convert("RGB")

    img = qr.make_image(fill_color=settings.qr_color, back_color=settings.qr_background).convert("RGB")
    logger.debug(f"QR v{qr.version}: {pixels}px is not a multiple of {modules} modules, resampling")
    return img.resize((pixels, pixels), Image.Resampling.NEAREST)


def render_qr(payload: str, display_size: int, settings: Optional[Settings] = None) -> Image.Image:
    """
    Render `payload` as an RGB QR image of exactly 2 x display_size pixels.

    Args:
        payload: Text to encode (normally the verification URL)
        display_size: Size the code will occupy on the document, in px/pt
        settings: Colour, margin and error-correction configuration

    Raises:
        InputError: if the payload does not fit QR_MAX_VERSION at the
            configured error-correction level
    """
    if display_size <= 0:
        raise InputError(f"QR display size must be positive, got {display_size}")

    pixels = display_size * RENDER_SCALE
    img = draw_qr(payload, pixels, settings).filter(SHARPEN_KERNEL)

    logger.debug(f"Rendered QR ({len(payload)} chars) at {pixels}px")
    return img


def render_qr_png(payload: str, display_size: int, settings: Optional[Settings] = None) -> bytes:
    """Render the QR code and encode it as PNG bytes."""
    buffer = io.BytesIO()
    render_qr(payload, display_size, settings).save(buffer, format="PNG")
    return buffer.getvalue()
