"""
Issuance API Router.
Paths: /v1/documents
"""
import hmac
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Response, UploadFile

from certanchor.config import Settings, get_settings
from certanchor.document.bundle import signed_filename
from certanchor.models import BatchIssueResponse, DocumentType, GenerateCertificateRequest, IssueMetadata
from certanchor.services.issuance import IssuancePipeline, IssuedDocument, UploadedFile, get_issuance_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/v1/documents",
    tags=["issuance"],
)


async def verify_issuer_key(
    x_api_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
):
    """Require X-Api-Key when ISSUER_API_KEY is configured."""
    if not settings.issuer_api_key:
        return
    if not x_api_key:
        logger.warning("Issuance endpoint called without X-Api-Key header")
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not hmac.compare_digest(x_api_key, settings.issuer_api_key):
        logger.warning("Issuer API key mismatch")
        raise HTTPException(status_code=403, detail="Forbidden")


async def read_upload(file: UploadFile, max_bytes: int) -> UploadedFile:
    """
    Read an upload into memory.

    At most max_bytes + 1 bytes are read; the pipeline rejects anything
    longer than max_bytes, so an oversized file fails on its own in a batch.
    """
    data = await file.read(max_bytes + 1)
    return UploadedFile(
        filename=file.filename or "upload",
        content_type=file.content_type,
        data=data,
    )


def metadata_form(
    doc_type: DocumentType = Form(DocumentType.CERTIFICATE),
    issuer: str = Form(...),
    subject: str = Form(""),
    title: str = Form(""),
    role_or_program: str = Form(""),
    id_number: str = Form(""),
    metadata_uri: str = Form(""),
    valid_until: Optional[str] = Form(None, description="YYYY-MM-DD; empty means never expires"),
) -> IssueMetadata:
    return IssueMetadata(
        doc_type=doc_type,
        issuer=issuer,
        subject=subject,
        title=title,
        role_or_program=role_or_program,
        id_number=id_number,
        metadata_uri=metadata_uri,
        valid_until=valid_until or None,
    )


def document_response(issued: IssuedDocument) -> Response:
    """The stamped file, with its identifiers in X- headers."""
    extension = "pdf" if issued.content_type == "application/pdf" else "png"
    filename = signed_filename(issued.document_id, f"upload.{extension}")
    headers = {
        "Content-Disposition": f'attachment; filename="{filename}"',
        "X-Document-Id": issued.document_id,
        "X-Transaction-Hash": issued.tx_hash,
        "X-File-Hash": issued.file_hash,
        "X-Anchored-Hash": issued.anchored_hash,
        "X-Verification-Url": issued.verification_url,
    }
    if issued.hash_degraded:
        headers["X-Hash-Degraded"] = "true"
    return Response(content=issued.data, media_type=issued.content_type, headers=headers)


@router.post(
    "",
    dependencies=[Depends(verify_issuer_key)],
    response_class=Response,
    responses={
        200: {
            "content": {"application/pdf": {}, "image/png": {}},
            "description": "The stamped document",
        },
    },
    summary="Issue a single document",
)
async def issue_document(
    file: UploadFile = File(...),
    metadata: IssueMetadata = Depends(metadata_form),
    settings: Settings = Depends(get_settings),
    pipeline: IssuancePipeline = Depends(get_issuance_pipeline),
):
    """
    Hash the upload, stamp it with a verification QR code and anchor it
    on the registry. Returns the stamped file; identifiers are in headers.
    """
    upload = await read_upload(file, settings.max_upload_bytes)
    issued = await pipeline.issue(upload, metadata)
    return document_response(issued)


@router.post(
    "/generate",
    dependencies=[Depends(verify_issuer_key)],
    response_class=Response,
    responses={200: {"content": {"application/pdf": {}}, "description": "The stamped certificate"}},
    summary="Generate a certificate from the built-in template and issue it",
)
async def generate_certificate(
    request: GenerateCertificateRequest,
    pipeline: IssuancePipeline = Depends(get_issuance_pipeline),
):
    issued = await pipeline.generate_certificate(request)
    return document_response(issued)


@router.post(
    "/batch",
    dependencies=[Depends(verify_issuer_key)],
    response_model=BatchIssueResponse,
    summary="Issue several documents with shared metadata",
)
async def issue_batch(
    files: List[UploadFile] = File(...),
    metadata: IssueMetadata = Depends(metadata_form),
    include_bundle: bool = Form(True),
    settings: Settings = Depends(get_settings),
    pipeline: IssuancePipeline = Depends(get_issuance_pipeline),
):
    """
    Process files one after another. A failing file is reported in its
    item and does not stop the rest. Completed files are returned as a
    base64 ZIP bundle.
    """
    uploads = [await read_upload(f, settings.max_upload_bytes) for f in files]
    return await pipeline.issue_batch(uploads, metadata, include_bundle=include_bundle)
