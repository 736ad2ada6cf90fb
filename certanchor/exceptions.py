"""
Custom exceptions and error handlers.

Two families live here:
- AppException: HTTP-level errors raised directly by routers.
- DocumentProcessingError: errors raised by the issuance/verification core.
  Each carries a stable code, a human-readable message and an origin
  ("local" or "registry") so callers can tell a registry rejection apart
  from a local processing failure.
"""
import logging
from enum import Enum
from typing import Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from certanchor.utils.logging import get_request_id

logger = logging.getLogger(__name__)


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message)


class RateLimitException(AppException):
    """Rate limit exceeded."""

    def __init__(self, retry_after: int, message: Optional[str] = None):
        super().__init__(
            status_code=429,
            code="RATE_LIMIT_EXCEEDED",
            message=message or f"Too many requests. Please try again in {retry_after} seconds.",
            details={"retry_after": retry_after},
        )


# =============================================================================
# Core processing errors
# =============================================================================


class ErrorOrigin(str, Enum):
    LOCAL = "local"
    REGISTRY = "registry"


class DocumentProcessingError(Exception):
    """Base class for failures while issuing or verifying a document."""

    status_code = 422
    code = "PROCESSING_ERROR"
    origin = ErrorOrigin.LOCAL

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    @property
    def kind(self) -> str:
        """Short machine-readable category used in batch results."""
        return "processing"


class InputError(DocumentProcessingError):
    """Unsupported media type, empty/corrupt bytes or a missing required field."""

    status_code = 400
    code = "INVALID_INPUT"

    @property
    def kind(self) -> str:
        return "input"


class DecodeError(DocumentProcessingError):
    """The PDF or image could not be parsed."""

    status_code = 422
    code = "DECODE_FAILED"

    @property
    def kind(self) -> str:
        return "decode"


class DegradedHashError(DocumentProcessingError):
    """
    The content digest could only be produced by the non-cryptographic
    fallback (filename + size + timestamp). Same bytes under another name
    would hash differently, so the result is not content-addressed.
    """

    status_code = 422
    code = "DEGRADED_HASH"

    def __init__(self, message: str, fallback_digest: Optional[str] = None):
        super().__init__(message, details={"fallback_digest": fallback_digest} if fallback_digest else None)
        self.fallback_digest = fallback_digest

    @property
    def kind(self) -> str:
        return "degraded_hash"


class ScannerUnavailableError(DocumentProcessingError):
    """The QR decoding backend (zbar) is not installed."""

    status_code = 503
    code = "SCANNER_UNAVAILABLE"

    @property
    def kind(self) -> str:
        return "scanner"


class RegistryErrorKind(str, Enum):
    CONNECTIVITY = "connectivity"
    UNAUTHORIZED = "unauthorized"
    CONTRACT_NOT_DEPLOYED = "contract_not_deployed"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    REJECTED = "rejected"
    INVALID_HASH = "invalid_hash"
    USER_DECLINED = "user_declined"
    NONCE = "nonce"
    TIMEOUT = "timeout"
    REVERTED = "reverted"
    MALFORMED_RESPONSE = "malformed_response"


_REGISTRY_STATUS = {
    RegistryErrorKind.CONNECTIVITY: 503,
    RegistryErrorKind.UNAUTHORIZED: 403,
    RegistryErrorKind.CONTRACT_NOT_DEPLOYED: 503,
    RegistryErrorKind.INSUFFICIENT_FUNDS: 402,
    RegistryErrorKind.REJECTED: 409,
    RegistryErrorKind.INVALID_HASH: 400,
    RegistryErrorKind.USER_DECLINED: 403,
    RegistryErrorKind.NONCE: 409,
    RegistryErrorKind.TIMEOUT: 504,
    RegistryErrorKind.REVERTED: 409,
    RegistryErrorKind.MALFORMED_RESPONSE: 502,
}


class RegistryError(DocumentProcessingError):
    """The blockchain registry could not be reached or refused the call."""

    origin = ErrorOrigin.REGISTRY

    def __init__(
        self,
        message: str,
        kind: RegistryErrorKind,
        tx_hash: Optional[str] = None,
    ):
        details = {"registry_error": kind.value}
        if tx_hash:
            details["tx_hash"] = tx_hash
        super().__init__(message, code=f"REGISTRY_{kind.name}", details=details)
        self.registry_kind = kind
        self.tx_hash = tx_hash

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return _REGISTRY_STATUS.get(self.registry_kind, 502)

    @property
    def kind(self) -> str:
        return f"registry:{self.registry_kind.value}"


# =============================================================================
# Handlers
# =============================================================================


def build_error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """Build standardized error response."""
    response = {
        "error": True,
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        response["details"] = details
    return response


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application exceptions."""
    logger.warning(f"AppException: {exc.code} - {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(exc.status_code, exc.code, exc.message, exc.details),
    )


async def document_error_handler(request: Request, exc: DocumentProcessingError) -> JSONResponse:
    """Handle core processing errors, tagging where the failure happened."""
    logger.warning(f"{type(exc).__name__}: {exc.code} - {exc.message}")
    details = dict(exc.details or {})
    details["origin"] = exc.origin.value
    return JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(exc.status_code, exc.code, exc.message, details),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(f"HTTPException: {exc.status_code} - {exc.detail}")

    if isinstance(exc.detail, dict):
        code = exc.detail.get("code", "HTTP_ERROR")
        message = exc.detail.get("message", str(exc.detail))
    else:
        code = "HTTP_ERROR"
        message = str(exc.detail)

    return JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(exc.status_code, code, message),
    )


async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(f"ValidationError: {exc.errors()}")

    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    return JSONResponse(
        status_code=422,
        content=build_error_response(
            422,
            "VALIDATION_ERROR",
            "Request validation failed",
            {"errors": errors},
        ),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content=build_error_response(500, "INTERNAL_ERROR", "An unexpected error occurred"),
    )
