"""
ZIP export of a processed batch.

Layout:
    processed-documents/<id>_signed.<ext>   one per completed document
    processed-documents/metadata.json       batch summary
"""
import io
import json
import logging
import zipfile
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from certanchor.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

BUNDLE_FOLDER = "processed-documents"
METADATA_FILENAME = "metadata.json"


@dataclass
class BundleEntry:
    document_id: str
    original_name: str
    file_hash: str
    verification_url: str
    data: bytes
    fallback_extension: str = "bin"


def signed_filename(document_id: str, original_name: str, fallback_extension: str = "bin") -> str:
    """`<id>_signed.<ext>` keeping the extension of the uploaded file."""
    _, dot, extension = original_name.rpartition(".")
    if not dot or not extension:
        extension = fallback_extension
    return f"{document_id}_signed.{extension}"


def bundle_filename(doc_type: str, processed_at: Optional[datetime] = None) -> str:
    """Suggested download name, e.g. certificate-documents-2024-05-01.zip."""
    processed_at = processed_at or utc_now()
    return f"{doc_type}-documents-{processed_at.date().isoformat()}.zip"


def build_bundle(
    documents: Iterable[BundleEntry],
    doc_type: str,
    issuer: str,
    processed_at: Optional[datetime] = None,
) -> bytes:
    """Pack stamped documents and their metadata into a ZIP archive."""
    processed_at = processed_at or utc_now()
    documents = list(documents)

    metadata = {
        "processedAt": processed_at.isoformat().replace("+00:00", "Z"),
        "documentType": doc_type,
        "issuer": issuer,
        "totalDocuments": len(documents),
        "documents": [
            {
                "id": doc.document_id,
                "originalName": doc.original_name,
                "fileHash": doc.file_hash,
                "verificationURL": doc.verification_url,
            }
            for doc in documents
        ],
    }

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for doc in documents:
            name = signed_filename(doc.document_id, doc.original_name, doc.fallback_extension)
            archive.writestr(f"{BUNDLE_FOLDER}/{name}", doc.data)
        archive.writestr(
            f"{BUNDLE_FOLDER}/{METADATA_FILENAME}",
            json.dumps(metadata, indent=2, ensure_ascii=False),
        )

    logger.info(f"Built bundle with {len(documents)} documents ({buffer.tell()} bytes)")
    return buffer.getvalue()
