"""
Issuance pipeline: hash -> QR -> composite -> anchor, one file at a time.

A batch is processed strictly in order. A failing file is recorded with
its reason and the batch moves on; nothing is retried. Decode/encode work
runs in a worker thread so the event loop stays free while a large image
is being re-encoded.
"""
import asyncio
import base64
import logging
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

from certanchor.config import AnchorMode, Settings, get_settings
from certanchor.document.bundle import BundleEntry, build_bundle
from certanchor.document.canonical import encode_canonical_record
from certanchor.document.compose import detect_media_kind, stamp_image, stamp_pdf
from certanchor.document.hashing import FileDigest, hash_file, to_bytes32_hex
from certanchor.document.qr import build_verification_url, render_qr_png
from certanchor.document.template import CertificateContent, render_certificate
from certanchor.exceptions import DocumentProcessingError, InputError
from certanchor.models import (
    BatchIssueResponse,
    BatchItem,
    DocumentRecord,
    DocumentType,
    FileStatus,
    GenerateCertificateRequest,
    IssueMetadata,
    MediaKind,
)
from certanchor.registry.client import IssuanceRequest, TransactionReceipt, get_registry_client
from certanchor.utils.datetime_utils import utc_now, valid_until_to_unix
from certanchor.utils.logging import set_context

logger = logging.getLogger(__name__)


class Registry(Protocol):
    """What the pipeline needs from the registry client."""

    @property
    def contract_address(self) -> str:
        ...

    async def issue(self, request: IssuanceRequest) -> TransactionReceipt:
        ...

    async def lookup(self, document_id: str) -> DocumentRecord:
        ...


@dataclass
class UploadedFile:
    """An upload held in memory for the duration of one request."""
    filename: str
    content_type: Optional[str]
    data: bytes


@dataclass
class IssuedDocument:
    document_id: str
    filename: str
    media_kind: MediaKind
    content_type: str
    data: bytes
    file_hash: str         # content digest, 64 hex
    anchored_hash: str     # value written to docHash, 0x + 64 hex
    hash_degraded: bool
    verification_url: str
    tx_hash: str
    canonical_json: Optional[str] = None


def generate_document_id(doc_type: DocumentType) -> str:
    """
    Public document id, e.g. CERTIFICATE-1a2b3c4d.

    Uniqueness is enforced by the registry, which rejects reused ids.
    """
    return f"{doc_type.value.upper()}-{uuid.uuid4().hex[:8]}"


def _output_extension(kind: MediaKind) -> str:
    return "pdf" if kind == MediaKind.PDF else "png"


class IssuancePipeline:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[Registry] = None,
        clock: Callable = utc_now,
    ):
        self.settings = settings or get_settings()
        self.registry = registry or get_registry_client()
        self.clock = clock

    def validate_metadata(self, metadata: IssueMetadata) -> None:
        missing = metadata.missing_fields()
        if missing:
            raise InputError(
                f"Missing required fields for {metadata.doc_type.value}: {', '.join(missing)}",
                code="MISSING_FIELDS",
                details={"missing": missing},
            )

    def _validate_upload(self, upload: UploadedFile) -> MediaKind:
        if len(upload.data) > self.settings.max_upload_bytes:
            raise InputError(
                f"File '{upload.filename}' exceeds the {self.settings.max_upload_bytes} byte limit",
                code="FILE_TOO_LARGE",
            )
        return detect_media_kind(upload.content_type, upload.data, upload.filename)

    def _compose(self, kind: MediaKind, data: bytes, payload: str, document_id: str) -> bytes:
        if kind == MediaKind.PDF:
            qr_png = render_qr_png(payload, self.settings.qr_size, self.settings)
            return stamp_pdf(data, qr_png, document_id, self.settings.qr_size)
        return stamp_image(data, payload, document_id, self.settings).data

    async def issue(
        self,
        upload: UploadedFile,
        metadata: IssueMetadata,
        document_id: Optional[str] = None,
    ) -> IssuedDocument:
        """
        Issue one document.

        `document_id` is generated unless the caller already printed one
        into the document.

        Raises:
            InputError: bad upload or metadata (nothing was hashed or sent)
            DecodeError: the file could not be decoded or re-encoded
            DegradedHashError: only the fallback digest was available
            RegistryError: anchoring failed; the stamped output is discarded
        """
        self.validate_metadata(metadata)
        kind = self._validate_upload(upload)

        document_id = document_id or generate_document_id(metadata.doc_type)
        set_context(document_id=document_id)
        logger.info(f"Issuing {document_id} from '{upload.filename}' ({kind.value}, {len(upload.data)} bytes)")

        digest: FileDigest = await asyncio.to_thread(
            hash_file, upload.data, upload.filename, self.settings.allow_degraded_hash
        )
        if digest.degraded:
            logger.warning(f"{document_id}: anchoring a degraded (non content-addressed) digest")

        valid_until = valid_until_to_unix(metadata.valid_until)

        canonical_json = None
        anchored = digest.hex
        if self.settings.anchor_mode == AnchorMode.CANONICAL_RECORD:
            record = encode_canonical_record(
                document_id=document_id,
                file_digest=digest.hex,
                doc_type=metadata.doc_type.value,
                issuer=metadata.issuer,
                subject=metadata.subject,
                valid_until=valid_until,
                metadata_uri=metadata.metadata_uri,
                issue_date=self.clock().date(),
            )
            canonical_json = record.json
            anchored = record.digest
        anchored_hash = to_bytes32_hex(anchored)

        payload = build_verification_url(
            self.settings.verify_origin,
            self.settings.chain_name,
            self.registry.contract_address,
            document_id,
        )

        stamped = await asyncio.to_thread(self._compose, kind, upload.data, payload, document_id)

        receipt = await self.registry.issue(
            IssuanceRequest(
                document_id=document_id,
                doc_hash=anchored_hash,
                doc_type=metadata.doc_type.value,
                issuer=metadata.issuer,
                subject=metadata.subject,
                metadata_uri=metadata.metadata_uri,
                valid_until=valid_until,
                title=metadata.title,
                role_or_program=metadata.role_or_program,
                id_number=metadata.id_number,
            )
        )

        logger.info(f"Issued {document_id}: tx={receipt.tx_hash}")
        return IssuedDocument(
            document_id=document_id,
            filename=upload.filename,
            media_kind=kind,
            content_type="application/pdf" if kind == MediaKind.PDF else "image/png",
            data=stamped,
            file_hash=digest.hex,
            anchored_hash=anchored_hash,
            hash_degraded=digest.degraded,
            verification_url=payload,
            tx_hash=receipt.tx_hash,
            canonical_json=canonical_json,
        )

    async def generate_certificate(self, request: GenerateCertificateRequest) -> IssuedDocument:
        """
        Render the built-in certificate template and issue it.

        The id is chosen first because it is printed on the page; the
        rendered PDF then goes through issue() like an upload.
        """
        metadata = request.to_metadata()
        self.validate_metadata(metadata)

        document_id = generate_document_id(metadata.doc_type)
        data = await asyncio.to_thread(
            render_certificate,
            CertificateContent(
                recipient=request.recipient_name,
                course=request.course_name,
                issuer=request.issuer,
                document_id=document_id,
                issue_date=self.clock().date(),
                verify_origin=self.settings.verify_origin,
            ),
        )
        filename = "_".join(request.recipient_name.split()) + "_Certificate.pdf"
        upload = UploadedFile(filename=filename, content_type="application/pdf", data=data)
        return await self.issue(upload, metadata, document_id=document_id)

    async def issue_batch(
        self,
        files: Sequence[UploadedFile],
        metadata: IssueMetadata,
        include_bundle: bool = True,
    ) -> BatchIssueResponse:
        """
        Issue every file with the same metadata, sequentially.

        Metadata problems fail the whole batch up front. Per-file failures
        are recorded on that file's item and do not stop the batch.
        """
        if not files:
            raise InputError("No files uploaded", code="NO_FILES")
        if len(files) > self.settings.max_batch_files:
            raise InputError(
                f"Too many files: {len(files)} (maximum {self.settings.max_batch_files})",
                code="TOO_MANY_FILES",
            )
        self.validate_metadata(metadata)

        batch_id = uuid.uuid4().hex[:12]
        set_context(batch_id=batch_id)
        logger.info(f"Batch {batch_id}: {len(files)} file(s) as {metadata.doc_type.value}")

        items: List[BatchItem] = []
        issued: List[IssuedDocument] = []

        for index, upload in enumerate(files):
            item = BatchItem(index=index, filename=upload.filename, status=FileStatus.PROCESSING)
            items.append(item)
            try:
                document = await self.issue(upload, metadata)
            except DocumentProcessingError as e:
                item.status = FileStatus.ERROR
                item.error = e.message
                item.error_kind = e.kind
                item.error_origin = e.origin.value
                item.tx_hash = getattr(e, "tx_hash", None)
                logger.warning(f"Batch {batch_id} file {index} '{upload.filename}' failed: {e.kind} - {e.message}")
                continue

            item.status = FileStatus.COMPLETED
            item.document_id = document.document_id
            item.file_hash = document.file_hash
            item.anchored_hash = document.anchored_hash
            item.tx_hash = document.tx_hash
            item.verification_url = document.verification_url
            item.hash_degraded = document.hash_degraded
            issued.append(document)

        bundle_base64 = None
        if include_bundle and issued:
            bundle = await asyncio.to_thread(
                build_bundle,
                [
                    BundleEntry(
                        document_id=doc.document_id,
                        original_name=doc.filename,
                        file_hash=doc.file_hash,
                        verification_url=doc.verification_url,
                        data=doc.data,
                        fallback_extension=_output_extension(doc.media_kind),
                    )
                    for doc in issued
                ],
                metadata.doc_type.value,
                metadata.issuer,
                self.clock(),
            )
            bundle_base64 = base64.b64encode(bundle).decode("ascii")

        completed = len(issued)
        logger.info(f"Batch {batch_id} finished: {completed} completed, {len(items) - completed} failed")
        return BatchIssueResponse(
            batch_id=batch_id,
            document_type=metadata.doc_type,
            issuer=metadata.issuer,
            total=len(items),
            completed=completed,
            failed=len(items) - completed,
            items=items,
            bundle_base64=bundle_base64,
        )


# Singleton instance
_issuance_pipeline: Optional[IssuancePipeline] = None


def get_issuance_pipeline() -> IssuancePipeline:
    """Get the issuance pipeline singleton."""
    global _issuance_pipeline
    if _issuance_pipeline is None:
        _issuance_pipeline = IssuancePipeline()
    return _issuance_pipeline
