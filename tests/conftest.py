"""
Pytest configuration and fixtures.
"""
import io
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import fitz  # PyMuPDF
from PIL import Image, ImageDraw

from certanchor.config import Settings
from certanchor.exceptions import RegistryError, RegistryErrorKind
from certanchor.models import ZERO_DIGEST, DocumentRecord
from certanchor.registry.client import IssuanceRequest, TransactionReceipt
from certanchor.utils.datetime_utils import to_unix_seconds

CONTRACT_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeRegistry:
    """In-memory stand-in for RegistryClient with the same async surface."""

    def __init__(self, clock=None, contract_address: str = CONTRACT_ADDRESS):
        self.contract_address = contract_address
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.records = {}
        self.requests = []
        self.fail_with = None

    async def issue(self, request: IssuanceRequest) -> TransactionReceipt:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        if request.document_id in self.records:
            raise RegistryError(
                "Transaction would fail: Document ID already exists",
                kind=RegistryErrorKind.REJECTED,
            )
        self.records[request.document_id] = DocumentRecord(
            id=request.document_id,
            doc_hash=request.doc_hash,
            doc_type=request.doc_type,
            issuer=request.issuer,
            subject=request.subject,
            metadata_uri=request.metadata_uri,
            issued_at=to_unix_seconds(self.clock()),
            valid_until=request.valid_until,
            title=request.title,
            role_or_program=request.role_or_program,
            id_number=request.id_number,
        )
        tx_hash = "0x" + f"{len(self.records):064x}"
        return TransactionReceipt(tx_hash=tx_hash, block_number=len(self.records), gas_used=120_000, status=1)

    async def lookup(self, document_id: str) -> DocumentRecord:
        record = self.records.get(document_id)
        if record is None:
            return DocumentRecord(id=document_id, doc_hash=ZERO_DIGEST)
        return record

    def revoke(self, document_id: str) -> None:
        self.records[document_id] = self.records[document_id].model_copy(update={"revoked": True})


def make_pdf(pages: int = 1, width: float = 595, height: float = 842) -> bytes:
    doc = fitz.open()
    for number in range(pages):
        page = doc.new_page(width=width, height=height)
        page.insert_text((50, 100), f"Test Certificate page {number + 1}", fontsize=24)
        page.insert_text((50, 150), "Awarded for completing the course.", fontsize=12)
    data = doc.tobytes()
    doc.close()
    return data


def make_image(width: int = 800, height: int = 600, fmt: str = "PNG", mode: str = "RGB") -> bytes:
    img = Image.new(mode, (width, height), "white")
    draw = ImageDraw.Draw(img)
    # Busy content in the top-left quadrant so placement avoids it
    for x in range(0, width // 2, 6):
        draw.line([(x, 0), (x, height // 2)], fill="black", width=2)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def settings():
    """Settings isolated from the environment's .env file."""
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        VERIFY_ORIGIN="https://verify.example.org",
        CONTRACT_ADDRESS=CONTRACT_ADDRESS,
        CHAIN_NAME="amoy",
        CHAIN_ID=80002,
    )


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def fake_registry(clock):
    return FakeRegistry(clock=clock)


@pytest.fixture
def sample_pdf():
    """Two-page A4 PDF."""
    return make_pdf(pages=2)


@pytest.fixture
def sample_png():
    return make_image()


@pytest.fixture
def sample_jpeg():
    return make_image(fmt="JPEG")
