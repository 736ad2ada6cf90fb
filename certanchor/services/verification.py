"""
Verification: registry lookup by id, or by scanning a stamped file.
"""
import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from certanchor.config import Settings, get_settings
from certanchor.document.scan import extract_verification_target
from certanchor.exceptions import DocumentProcessingError, InputError, RegistryError, ScannerUnavailableError
from certanchor.models import (
    STATUS_MESSAGES,
    BulkVerifyResponse,
    DocumentInfo,
    ScanResult,
    ScanStatus,
    VerificationResult,
)
from certanchor.registry.classifier import classify
from certanchor.registry.client import get_registry_client
from certanchor.services.issuance import Registry, UploadedFile
from certanchor.utils.datetime_utils import utc_now
from certanchor.utils.logging import set_context

logger = logging.getLogger(__name__)

PROCESSING_ERROR_REASON = "Processing error"


class VerificationService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[Registry] = None,
        clock: Callable = utc_now,
    ):
        self.settings = settings or get_settings()
        self.registry = registry or get_registry_client()
        self.clock = clock

    def check_target(self, chain: Optional[str], contract: Optional[str]) -> None:
        """Reject verification links that point at another chain or contract."""
        if chain and chain != self.settings.chain_name:
            raise InputError(
                f"Verification link targets chain '{chain}', this service verifies '{self.settings.chain_name}'",
                code="CHAIN_MISMATCH",
            )
        expected = (self.registry.contract_address or "").lower()
        if contract and expected and contract.lower() != expected:
            raise InputError(
                "Verification link targets a different registry contract",
                code="CONTRACT_MISMATCH",
            )

    async def verify_id(self, document_id: str) -> VerificationResult:
        """Look up `document_id` and classify it against the current time."""
        document_id = document_id.strip()
        if not document_id:
            raise InputError("Document id is required", code="MISSING_DOCUMENT_ID")

        set_context(document_id=document_id)
        record = await self.registry.lookup(document_id)
        result = classify(record, self.clock())
        logger.info(f"Verified {document_id}: {result.status.value}")
        return result

    async def verify_file(self, upload: UploadedFile) -> ScanResult:
        """
        Scan a stamped file for its QR code and verify the embedded id.

        Errors are folded into the result the way a bulk check reports
        them, except a missing scanner, which is raised.
        """
        try:
            target = await asyncio.to_thread(
                extract_verification_target, upload.data, upload.content_type, upload.filename
            )
        except ScannerUnavailableError:
            raise
        except DocumentProcessingError as e:
            logger.warning(f"Could not scan '{upload.filename}': {e.message}")
            return ScanResult(file=upload.filename, status=ScanStatus.ERROR, reason=PROCESSING_ERROR_REASON)

        if target is None:
            return ScanResult(file=upload.filename, status=ScanStatus.NO_QR, reason=STATUS_MESSAGES["no_qr"])

        try:
            result = await self.verify_id(target.document_id)
        except RegistryError as e:
            logger.warning(f"Registry lookup failed for {target.document_id}: {e.kind} - {e.message}")
            return ScanResult(
                file=upload.filename,
                status=ScanStatus.ERROR,
                reason=STATUS_MESSAGES["error"],
                document_id=target.document_id,
            )

        return ScanResult(
            file=upload.filename,
            status=ScanStatus(result.status.value),
            reason=None if result.valid else result.message,
            document_id=target.document_id,
            document=DocumentInfo.from_record(result.record) if result.record else None,
        )

    async def verify_files(self, uploads: Sequence[UploadedFile]) -> BulkVerifyResponse:
        """Verify several stamped files in order and split them into valid / invalid."""
        if not uploads:
            raise InputError("No files uploaded", code="NO_FILES")
        if len(uploads) > self.settings.max_batch_files:
            raise InputError(
                f"Too many files: {len(uploads)} (maximum {self.settings.max_batch_files})",
                code="TOO_MANY_FILES",
            )

        valid: List[ScanResult] = []
        invalid: List[ScanResult] = []
        for upload in uploads:
            result = await self.verify_file(upload)
            (valid if result.status == ScanStatus.VALID else invalid).append(result)

        logger.info(f"Bulk verification: {len(valid)} valid, {len(invalid)} invalid of {len(uploads)}")
        return BulkVerifyResponse(total=len(uploads), valid=valid, invalid=invalid)


# Singleton instance
_verification_service: Optional[VerificationService] = None


def get_verification_service() -> VerificationService:
    """Get the verification service singleton."""
    global _verification_service
    if _verification_service is None:
        _verification_service = VerificationService()
    return _verification_service
