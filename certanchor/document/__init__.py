# Document module
from certanchor.document.hashing import FileDigest, compute_digest, hash_file, to_bytes32_hex
from certanchor.document.canonical import CanonicalRecord, encode_canonical_record
from certanchor.document.qr import (
    VerificationTarget,
    build_verification_url,
    parse_verification_url,
    render_qr,
    render_qr_png,
)
from certanchor.document.placement import PlacementResult, find_optimal_position
from certanchor.document.compose import ComposedImage, detect_media_kind, stamp_image, stamp_pdf
from certanchor.document.bundle import BundleEntry, build_bundle

__all__ = [
    "FileDigest",
    "compute_digest",
    "hash_file",
    "to_bytes32_hex",
    "CanonicalRecord",
    "encode_canonical_record",
    "VerificationTarget",
    "build_verification_url",
    "parse_verification_url",
    "render_qr",
    "render_qr_png",
    "PlacementResult",
    "find_optimal_position",
    "ComposedImage",
    "detect_media_kind",
    "stamp_image",
    "stamp_pdf",
    "BundleEntry",
    "build_bundle",
]
