"""
Content-addressed digests for uploaded documents.

The registry stores a bytes32 Keccak-256 digest. A filename/size/time
SHA-256 fallback exists for environments where no Keccak backend is
installed, but it is NOT content-addressed and is always flagged.
"""
import hashlib
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional, Union

from eth_utils import keccak

from certanchor.exceptions import DegradedHashError, InputError

logger = logging.getLogger(__name__)

_HEX64 = re.compile(r"^[0-9a-f]{64}$")

BytesLike = Union[bytes, bytearray, memoryview]


@dataclass(frozen=True)
class FileDigest:
    """A 256-bit digest as lowercase hex (no 0x prefix)."""
    hex: str
    degraded: bool = False

    @property
    def bytes32(self) -> str:
        return to_bytes32_hex(self.hex)


def _as_bytes(data: BytesLike) -> bytes:
    if isinstance(data, bytes):
        return data
    if isinstance(data, (bytearray, memoryview)):
        return bytes(data)
    raise InputError(f"Expected bytes to hash, got {type(data).__name__}")


def compute_digest(data: BytesLike) -> str:
    """Keccak-256 of `data` as 64 lowercase hex characters. Empty input is valid."""
    return keccak(_as_bytes(data)).hex()


def _fallback_digest(filename: str, size: int) -> str:
    seed = f"{filename}{size}{int(time.time() * 1000)}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()


def hash_file(
    data: BytesLike,
    filename: str = "",
    allow_degraded: bool = False,
) -> FileDigest:
    """
    Digest an uploaded file's bytes.

    If the Keccak backend cannot be loaded, a SHA-256 over
    filename + size + current time is produced instead. That value changes
    with the name and the clock, so it is only returned when
    `allow_degraded` is set; otherwise DegradedHashError is raised.
    """
    raw = _as_bytes(data)
    try:
        return FileDigest(hex=compute_digest(raw))
    except ImportError as e:
        fallback = _fallback_digest(filename, len(raw))
        logger.error(f"Keccak backend unavailable, fallback digest used for '{filename}': {e}")
        if not allow_degraded:
            raise DegradedHashError(
                "Content hash unavailable: only a non-cryptographic fallback digest could be computed",
                fallback_digest=fallback,
            ) from e
        return FileDigest(hex=fallback, degraded=True)


def to_bytes32_hex(digest: str) -> str:
    """
    Format a digest for the registry's bytes32 argument: 0x + 64 hex chars.

    Raises:
        InputError: if the digest is not exactly 32 bytes of hex
    """
    value = digest.lower()
    if value.startswith("0x"):
        value = value[2:]
    if not _HEX64.match(value):
        raise InputError(
            "Invalid file hash format. Expected 32-byte hex string.",
            code="INVALID_HASH_FORMAT",
        )
    return "0x" + value


def is_bytes32_hex(value: Optional[str]) -> bool:
    """True for a 66-character 0x-prefixed hex string."""
    return bool(value) and len(value) == 66 and value[:2] == "0x" and bool(_HEX64.match(value[2:].lower()))
