"""
Public Verification API Router.
Paths: /v1/verify

GET /v1/verify?chain=..&contract=..&id=.. is the target of every issued QR
code. All endpoints are rate limited per client IP.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, File, Path, Query, Request, UploadFile

from certanchor.config import Settings, get_settings
from certanchor.exceptions import RateLimitException
from certanchor.models import BulkVerifyResponse, DocumentInfo, ScanResult, VerificationResult, VerifyResponse
from certanchor.routers.issuance import read_upload
from certanchor.services.verification import VerificationService, get_verification_service
from certanchor.utils.datetime_utils import from_unix_seconds
from certanchor.utils.rate_limiter import get_verify_rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/v1/verify",
    tags=["verification"],
)


def get_client_ip(request: Request) -> str:
    """
    Extract client IP address, handling proxies and Cloud Run.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return "unknown"


async def enforce_rate_limit(request: Request):
    rate_limiter = get_verify_rate_limiter()
    client_ip = get_client_ip(request)
    allowed, retry_after = rate_limiter.is_allowed(f"verify:{client_ip}")
    if not allowed:
        raise RateLimitException(retry_after, "Too many verification requests. Please try again later.")


def to_verify_response(result: VerificationResult) -> VerifyResponse:
    return VerifyResponse(
        valid=result.valid,
        status=result.status,
        document_id=result.document_id,
        message=result.message,
        checked_at=from_unix_seconds(result.checked_at),
        document=DocumentInfo.from_record(result.record) if result.record else None,
    )


@router.get(
    "",
    response_model=VerifyResponse,
    dependencies=[Depends(enforce_rate_limit)],
    summary="Verify the document a QR code points to",
)
async def verify_link(
    id: str = Query(..., min_length=1, description="Document ID"),
    chain: str = Query("", description="Chain name from the QR link"),
    contract: str = Query("", description="Registry contract address from the QR link"),
    service: VerificationService = Depends(get_verification_service),
):
    """
    Links that name another chain or contract are rejected with 400 rather
    than being checked against this registry.
    """
    service.check_target(chain, contract)
    return to_verify_response(await service.verify_id(id))


@router.get(
    "/{document_id}",
    response_model=VerifyResponse,
    dependencies=[Depends(enforce_rate_limit)],
    summary="Verify a document by ID",
)
async def verify_document(
    document_id: str = Path(..., min_length=1, max_length=200, description="Document ID from the stamp"),
    service: VerificationService = Depends(get_verification_service),
):
    """
    Unknown ids are not an error: they return status not_found with no
    document payload.
    """
    return to_verify_response(await service.verify_id(document_id))


@router.post(
    "/scan",
    response_model=ScanResult,
    dependencies=[Depends(enforce_rate_limit)],
    summary="Verify an uploaded stamped file",
)
async def verify_scan(
    file: UploadFile = File(...),
    settings: Settings = Depends(get_settings),
    service: VerificationService = Depends(get_verification_service),
):
    upload = await read_upload(file, settings.max_upload_bytes)
    return await service.verify_file(upload)


@router.post(
    "/bulk",
    response_model=BulkVerifyResponse,
    dependencies=[Depends(enforce_rate_limit)],
    summary="Verify several stamped files",
)
async def verify_bulk(
    files: List[UploadFile] = File(...),
    settings: Settings = Depends(get_settings),
    service: VerificationService = Depends(get_verification_service),
):
    """Each file is scanned for its QR code and checked; results are split into valid and invalid."""
    uploads = [await read_upload(f, settings.max_upload_bytes) for f in files]
    return await service.verify_files(uploads)
