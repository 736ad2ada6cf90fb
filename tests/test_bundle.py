"""
Tests for the batch ZIP bundle.
"""
import io
import json
import zipfile
from datetime import datetime, timezone

from certanchor.document.bundle import BundleEntry, build_bundle, bundle_filename, signed_filename

PROCESSED_AT = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)


def _entries():
    return [
        BundleEntry(
            document_id="CERTIFICATE-aaaa1111",
            original_name="diploma.pdf",
            file_hash="11" * 32,
            verification_url="https://verify.example.org/verify?id=CERTIFICATE-aaaa1111",
            data=b"%PDF-stamped-1",
        ),
        BundleEntry(
            document_id="CERTIFICATE-bbbb2222",
            original_name="scan.JPG",
            file_hash="22" * 32,
            verification_url="https://verify.example.org/verify?id=CERTIFICATE-bbbb2222",
            data=b"\x89PNG-stamped-2",
        ),
    ]


class TestSignedFilename:
    def test_keeps_extension(self):
        assert signed_filename("ID-1", "photo.jpeg") == "ID-1_signed.jpeg"

    def test_fallback_extension(self):
        assert signed_filename("ID-1", "README", "pdf") == "ID-1_signed.pdf"
        assert signed_filename("ID-1", "trailing.", "png") == "ID-1_signed.png"


class TestBuildBundle:
    def test_layout(self):
        data = build_bundle(_entries(), "certificate", "Acme University", PROCESSED_AT)
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = sorted(archive.namelist())
            assert names == [
                "processed-documents/CERTIFICATE-aaaa1111_signed.pdf",
                "processed-documents/CERTIFICATE-bbbb2222_signed.JPG",
                "processed-documents/metadata.json",
            ]
            assert archive.read("processed-documents/CERTIFICATE-aaaa1111_signed.pdf") == b"%PDF-stamped-1"

    def test_metadata(self):
        data = build_bundle(_entries(), "certificate", "Acme University", PROCESSED_AT)
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            metadata = json.loads(archive.read("processed-documents/metadata.json"))

        assert metadata["processedAt"] == "2024-05-01T12:30:00Z"
        assert metadata["documentType"] == "certificate"
        assert metadata["issuer"] == "Acme University"
        assert metadata["totalDocuments"] == 2
        assert metadata["documents"][1] == {
            "id": "CERTIFICATE-bbbb2222",
            "originalName": "scan.JPG",
            "fileHash": "22" * 32,
            "verificationURL": "https://verify.example.org/verify?id=CERTIFICATE-bbbb2222",
        }

    def test_empty_batch_still_has_metadata(self):
        data = build_bundle([], "id_card", "Acme", PROCESSED_AT)
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert archive.namelist() == ["processed-documents/metadata.json"]

    def test_bundle_filename(self):
        assert bundle_filename("certificate", PROCESSED_AT) == "certificate-documents-2024-05-01.zip"
