"""
CertAnchor - Main FastAPI Application
Issues documents stamped with a verification QR code and anchors their
digests on an on-chain registry; verifies them by id or by scanning.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from certanchor.config import get_cors_origins, get_settings
from certanchor.exceptions import (
    AppException,
    DocumentProcessingError,
    app_exception_handler,
    document_error_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from certanchor.routers import health, issuance, verification
from certanchor.utils.logging import RequestIdMiddleware, get_logger, setup_logging

logger = get_logger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    setup_logging(
        environment=settings.environment,
        level=logging.DEBUG if settings.debug else logging.INFO,
    )
    logger.info(
        f"Starting CertAnchor v{VERSION} ({settings.environment}, chain={settings.chain_name}, "
        f"anchor_mode={settings.anchor_mode.value})"
    )
    yield
    logger.info("Shutting down CertAnchor")


app = FastAPI(
    title="CertAnchor",
    description="""Tamper-evident document issuance and verification.

## Issuance

`POST /v1/documents` and `POST /v1/documents/batch` hash each upload,
stamp it with a QR code pointing at the verification page and record the
digest on the registry contract. When `ISSUER_API_KEY` is configured these
endpoints require the `X-Api-Key` header.

## Verification

Public, rate-limited endpoints under `/v1/verify` report whether a document
is `valid`, `expired`, `revoked` or `not_found`.
""",
    version=VERSION,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "issuance", "description": "Document issuance (API key protected)"},
        {"name": "verification", "description": "Document verification (public)"},
        {"name": "health", "description": "Health check endpoints"},
    ],
)

# Middleware
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        "X-Request-ID",
        "X-Document-Id",
        "X-Transaction-Hash",
        "X-File-Hash",
        "X-Anchored-Hash",
        "X-Verification-Url",
        "X-Hash-Degraded",
        "Content-Disposition",
    ],
)

# Exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(DocumentProcessingError, document_error_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(ValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(health.router)
app.include_router(issuance.router)
app.include_router(verification.router)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    from fastapi.openapi.utils import get_openapi

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
        tags=app.openapi_tags,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "IssuerApiKey": {
            "type": "apiKey",
            "in": "header",
            "name": "X-Api-Key",
            "description": "Shared secret for issuance endpoints (ISSUER_API_KEY)",
        },
    }
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


@app.get("/health")
async def health_check():
    """Health check endpoint for Cloud Run."""
    return {"status": "healthy", "version": VERSION}


# Run with uvicorn
if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "certanchor.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8000)),
        reload=True,
    )
