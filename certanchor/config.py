"""
Configuration module - loads secrets from Google Secret Manager.
Falls back to environment variables for local development.
"""
import json
import logging
import os
from enum import Enum
from functools import lru_cache
from typing import Any, List, Optional

from PIL import ImageColor
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def get_secret_from_gcp(secret_id: str, project_id: Optional[str] = None) -> Optional[str]:
    """
    Fetch secret from Google Secret Manager.
    Returns None if not available (fallback to env vars).
    """
    try:
        from google.cloud import secretmanager

        project = project_id or os.environ.get("GCP_PROJECT_ID") or os.environ.get("GOOGLE_CLOUD_PROJECT")
        if not project:
            return None

        client = secretmanager.SecretManagerServiceClient()
        name = f"projects/{project}/secrets/{secret_id}/versions/latest"
        response = client.access_secret_version(request={"name": name})
        return response.payload.data.decode("UTF-8")
    except Exception as e:
        logger.debug(f"Could not fetch secret {secret_id} from Secret Manager: {e}")
        return None


class AnchorMode(str, Enum):
    """Which digest is written to the registry's docHash field."""
    FILE_DIGEST = "file_digest"
    CANONICAL_RECORD = "canonical_record"


class ErrorCorrection(str, Enum):
    """QR error-correction levels, low to high redundancy."""
    L = "L"
    M = "M"
    Q = "Q"
    H = "H"


class Settings(BaseSettings):
    """Application settings with Secret Manager integration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # GCP
    gcp_project_id: str = Field(default="", alias="GCP_PROJECT_ID")

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Public origin of the verification frontend, embedded into every QR code
    verify_origin: str = Field(default="http://localhost:5173", alias="VERIFY_ORIGIN")

    # Registry
    chain_name: str = Field(default="amoy", alias="CHAIN_NAME")
    chain_id: int = Field(default=80002, alias="CHAIN_ID")
    rpc_url: str = Field(default="https://rpc-amoy.polygon.technology/", alias="RPC_URL")
    contract_address: str = Field(default="", alias="CONTRACT_ADDRESS")
    registry_private_key: str = Field(default="", alias="REGISTRY_PRIVATE_KEY", repr=False)
    issuer_api_key: str = Field(default="", alias="ISSUER_API_KEY", repr=False)
    tx_timeout_seconds: float = Field(default=60.0, gt=0, alias="TX_TIMEOUT_SECONDS")
    gas_limit: int = Field(default=300_000, gt=0, alias="GAS_LIMIT")

    # Issuance
    anchor_mode: AnchorMode = Field(default=AnchorMode.FILE_DIGEST, alias="ANCHOR_MODE")
    allow_degraded_hash: bool = Field(
        default=False,
        alias="ALLOW_DEGRADED_HASH",
        description="Accept the non-cryptographic filename+size+time fallback digest",
    )
    max_upload_bytes: int = Field(default=20 * 1024 * 1024, gt=0, alias="MAX_UPLOAD_BYTES")
    max_batch_files: int = Field(default=50, gt=0, alias="MAX_BATCH_FILES")

    # QR rendering
    qr_size: int = Field(default=80, ge=40, le=400, alias="QR_SIZE")
    qr_error_correction: ErrorCorrection = Field(default=ErrorCorrection.H, alias="QR_ERROR_CORRECTION")
    qr_margin: int = Field(default=4, ge=0, le=10, alias="QR_MARGIN")
    qr_color: str = Field(default="#000000", alias="QR_COLOR")
    qr_background: str = Field(default="#ffffff", alias="QR_BACKGROUND")
    qr_max_version: int = Field(default=20, ge=1, le=40, alias="QR_MAX_VERSION")

    # Rate limiting (public verification endpoints)
    verify_rate_limit_requests: int = Field(default=30, gt=0, alias="VERIFY_RATE_LIMIT_REQUESTS")
    verify_rate_limit_window_seconds: int = Field(default=60, gt=0, alias="VERIFY_RATE_LIMIT_WINDOW_SECONDS")

    # CORS
    allowed_origins: List[str] = Field(default=[], alias="ALLOWED_ORIGINS")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _parse_allowed_origins(cls, v: Any) -> List[str]:
        """Parse ALLOWED_ORIGINS from JSON list, CSV, semicolon-separated string, or list."""
        if v is None:
            return []
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    return json.loads(s)
                except json.JSONDecodeError:
                    pass
            parts = [p.strip() for p in s.replace(",", ";").split(";")]
            return [p for p in parts if p]
        return []

    @field_validator("qr_color", "qr_background")
    @classmethod
    def _validate_color(cls, v: str) -> str:
        ImageColor.getrgb(v)  # raises ValueError for unknown colours
        return v

    @field_validator("verify_origin")
    @classmethod
    def _strip_origin(cls, v: str) -> str:
        return v.rstrip("/")

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._load_secrets_from_gcp()

    def _load_secrets_from_gcp(self):
        """Override settings with values from Secret Manager if available."""
        secret_mappings = {
            "registry_private_key": "REGISTRY_PRIVATE_KEY",
            "contract_address": "CONTRACT_ADDRESS",
            "issuer_api_key": "ISSUER_API_KEY",
        }

        for attr, secret_id in secret_mappings.items():
            secret_value = get_secret_from_gcp(secret_id, self.gcp_project_id)
            if secret_value:
                setattr(self, attr, secret_value.strip())
                logger.info(f"Loaded {secret_id} from Secret Manager")

    @model_validator(mode="after")
    def validate_deployment(self) -> "Settings":
        """Warn about configuration that produces unverifiable documents."""
        if self.environment == "production":
            if not self.verify_origin.startswith("https://"):
                logger.error(
                    f"CRITICAL: VERIFY_ORIGIN ('{self.verify_origin}') must use HTTPS in production! "
                    "Every issued QR code embeds this origin."
                )
            elif "localhost" in self.verify_origin:
                logger.error(
                    f"CRITICAL: VERIFY_ORIGIN ('{self.verify_origin}') contains localhost in production!"
                )
            if not self.issuer_api_key:
                logger.error("CRITICAL: ISSUER_API_KEY is not set in production! Issuance endpoints are open.")
            if self.allow_degraded_hash:
                logger.warning(
                    "ALLOW_DEGRADED_HASH is enabled in production: documents may be anchored "
                    "with a non-content-addressed digest."
                )

        if not self.contract_address:
            logger.warning("CONTRACT_ADDRESS is not set; registry calls will fail until configured.")

        return self


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Development origins (only in non-production)
DEV_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
]


def get_cors_origins() -> List[str]:
    """
    Get list of allowed CORS origins.

    Combines the verification origin, ALLOWED_ORIGINS and, outside
    production, the local development servers.
    """
    settings = get_settings()
    origins = {settings.verify_origin}
    origins.update(settings.allowed_origins)
    if settings.environment != "production":
        origins.update(DEV_CORS_ORIGINS)
    return sorted(origins)
