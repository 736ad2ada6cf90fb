from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from certanchor.utils.datetime_utils import from_unix_seconds

ZERO_DIGEST = "0x" + "0" * 64


class BaseRequest(BaseModel):
    """Base class for all request models - ignores extra fields."""
    model_config = ConfigDict(extra="ignore")


# Enums
class DocumentType(str, Enum):
    CERTIFICATE = "certificate"
    ID_CARD = "id_card"
    EMPLOYEE_CARD = "employee_card"


# Type-specific fields each document type must carry, on top of the issuer
REQUIRED_FIELDS: Dict[DocumentType, List[str]] = {
    DocumentType.CERTIFICATE: ["title"],
    DocumentType.ID_CARD: ["role_or_program", "id_number"],
    DocumentType.EMPLOYEE_CARD: ["role_or_program", "id_number"],
}


class MediaKind(str, Enum):
    PDF = "pdf"
    IMAGE = "image"


class FileStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class VerificationStatus(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    REVOKED = "revoked"
    NOT_FOUND = "not_found"


class ScanStatus(str, Enum):
    """Outcome of verifying an uploaded file (superset of VerificationStatus)."""
    VALID = "valid"
    EXPIRED = "expired"
    REVOKED = "revoked"
    NOT_FOUND = "not_found"
    NO_QR = "no_qr"
    ERROR = "error"


STATUS_MESSAGES: Dict[str, str] = {
    "valid": "Document is valid",
    "expired": "Document has expired",
    "revoked": "Document has been revoked",
    "not_found": "Document not found on blockchain",
    "no_qr": "No QR code found",
    "error": "Verification error",
}


# Request Models
class IssueMetadata(BaseRequest):
    """Declared metadata for a document (or every document of a batch)."""
    doc_type: DocumentType = DocumentType.CERTIFICATE
    issuer: str = Field(..., max_length=200)
    subject: str = Field(default="", max_length=200)
    title: str = Field(default="", max_length=200)
    role_or_program: str = Field(default="", max_length=200)
    id_number: str = Field(default="", max_length=100)
    metadata_uri: str = Field(default="", max_length=500)
    valid_until: Optional[date] = None

    @field_validator("issuer", "subject", "title", "role_or_program", "id_number", "metadata_uri")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()

    def missing_fields(self) -> List[str]:
        """Names of required fields that are empty for this document type."""
        missing = [] if self.issuer else ["issuer"]
        for name in REQUIRED_FIELDS[self.doc_type]:
            if not getattr(self, name):
                missing.append(name)
        return missing


class GenerateCertificateRequest(BaseRequest):
    """Fields for a certificate drawn from the built-in template."""
    recipient_name: str = Field(..., min_length=1, max_length=200)
    course_name: str = Field(..., min_length=1, max_length=200)
    issuer: str = Field(..., min_length=1, max_length=200)
    metadata_uri: str = Field(default="", max_length=500)
    valid_until: Optional[date] = None

    @field_validator("recipient_name", "course_name", "issuer", "metadata_uri", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    def to_metadata(self) -> IssueMetadata:
        return IssueMetadata(
            doc_type=DocumentType.CERTIFICATE,
            issuer=self.issuer,
            subject=self.recipient_name,
            title=self.course_name,
            metadata_uri=self.metadata_uri,
            valid_until=self.valid_until,
        )


# Registry Models
class DocumentRecord(BaseModel):
    """
    A registry entry as returned by verifyDocument, plus the id it was looked up by.

    issued_at and revoked are owned by the registry; the service only reads them.
    valid_until == 0 means the document never expires.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    doc_hash: str
    doc_type: str = ""
    issuer: str = ""
    subject: str = ""
    metadata_uri: str = ""
    issued_at: int = 0
    valid_until: int = 0
    revoked: bool = False
    title: str = ""
    role_or_program: str = ""
    id_number: str = ""

    @property
    def is_sentinel(self) -> bool:
        """The registry returns an all-zero digest for ids it has never seen."""
        return self.doc_hash.lower() == ZERO_DIGEST


class DocumentInfo(BaseModel):
    """Public view of a registry record."""
    id: str
    doc_hash: str
    doc_type: str
    issuer: str
    subject: Optional[str] = None
    title: Optional[str] = None
    role_or_program: Optional[str] = None
    id_number: Optional[str] = None
    metadata_uri: Optional[str] = None
    issued_at: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    revoked: bool = False

    @classmethod
    def from_record(cls, record: DocumentRecord) -> "DocumentInfo":
        return cls(
            id=record.id,
            doc_hash=record.doc_hash,
            doc_type=record.doc_type,
            issuer=record.issuer,
            subject=record.subject or None,
            title=record.title or None,
            role_or_program=record.role_or_program or None,
            id_number=record.id_number or None,
            metadata_uri=record.metadata_uri or None,
            issued_at=from_unix_seconds(record.issued_at),
            valid_until=from_unix_seconds(record.valid_until),
            revoked=record.revoked,
        )


class VerificationResult(BaseModel):
    """Classification of a registry lookup. record is None only for not_found."""
    status: VerificationStatus
    document_id: str
    record: Optional[DocumentRecord] = None
    checked_at: int

    @property
    def valid(self) -> bool:
        return self.status == VerificationStatus.VALID

    @property
    def message(self) -> str:
        return STATUS_MESSAGES[self.status.value]


# Response Models
class BatchItem(BaseModel):
    """Per-file outcome of a batch issuance."""
    index: int
    filename: str
    status: FileStatus = FileStatus.PENDING
    document_id: Optional[str] = None
    file_hash: Optional[str] = None
    anchored_hash: Optional[str] = None
    tx_hash: Optional[str] = None
    verification_url: Optional[str] = None
    hash_degraded: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None
    error_origin: Optional[str] = None


class BatchIssueResponse(BaseModel):
    batch_id: str
    document_type: DocumentType
    issuer: str
    total: int
    completed: int
    failed: int
    items: List[BatchItem]
    bundle_base64: Optional[str] = Field(
        default=None,
        description="ZIP with <id>_signed.<ext> files and metadata.json; absent when nothing completed",
    )


class VerifyResponse(BaseModel):
    valid: bool
    status: VerificationStatus
    document_id: str
    message: str
    checked_at: datetime
    document: Optional[DocumentInfo] = None


class ScanResult(BaseModel):
    """Outcome of verifying one uploaded (stamped) file."""
    file: str
    status: ScanStatus
    reason: Optional[str] = None
    document_id: Optional[str] = None
    document: Optional[DocumentInfo] = None


class BulkVerifyResponse(BaseModel):
    total: int
    valid: List[ScanResult]
    invalid: List[ScanResult]
