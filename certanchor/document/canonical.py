"""
Canonical metadata record.

The record is serialised with sorted keys and compact separators so the
same logical content always produces the same JSON, then digested with the
document hasher. A fresh 256-bit nonce is mixed in on every call, so two
issuances of identical content never share a pre-image.
"""
import json
import secrets
from dataclasses import dataclass
from datetime import date
from typing import Optional

from certanchor.document.hashing import compute_digest
from certanchor.utils.datetime_utils import utc_now

NONCE_BYTES = 32


@dataclass(frozen=True)
class CanonicalRecord:
    json: str
    digest: str
    nonce: str


def canonical_json(fields: dict) -> str:
    """Key-order independent JSON for a flat metadata object."""
    return json.dumps(fields, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def encode_canonical_record(
    document_id: str,
    file_digest: str,
    doc_type: str,
    issuer: str,
    subject: str = "",
    valid_until: int = 0,
    metadata_uri: str = "",
    issue_date: Optional[date] = None,
) -> CanonicalRecord:
    """Build and digest the canonical record. Not idempotent: the nonce is new each call."""
    nonce = secrets.token_hex(NONCE_BYTES)
    fields = {
        "id": document_id,
        "fileKeccak": file_digest,
        "docType": doc_type,
        "issuer": issuer,
        "subject": subject,
        "issueDate": (issue_date or utc_now().date()).isoformat(),
        "validUntil": int(valid_until),
        "metadataURI": metadata_uri or "",
        "nonce": nonce,
    }
    serialized = canonical_json(fields)
    return CanonicalRecord(
        json=serialized,
        digest=compute_digest(serialized.encode("utf-8")),
        nonce=nonce,
    )
