"""
HTTP-level tests for the issuance, verification and health routers.
"""
import base64

import pytest
from fastapi.testclient import TestClient

from certanchor.config import get_settings
from certanchor.document.qr import VerificationTarget
from certanchor.exceptions import RegistryError, RegistryErrorKind
from certanchor.main import app
from certanchor.registry.client import get_registry_client
from certanchor.routers import verification as verification_router
from certanchor.services import verification as verification_service
from certanchor.services.issuance import IssuancePipeline, get_issuance_pipeline
from certanchor.services.verification import VerificationService, get_verification_service
from certanchor.utils.rate_limiter import RateLimiter, get_verify_rate_limiter

from conftest import CONTRACT_ADDRESS, make_image, make_pdf


@pytest.fixture
def client(settings, fake_registry, clock):
    pipeline = IssuancePipeline(settings=settings, registry=fake_registry, clock=clock)
    service = VerificationService(settings=settings, registry=fake_registry, clock=clock)

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_issuance_pipeline] = lambda: pipeline
    app.dependency_overrides[get_verification_service] = lambda: service
    get_verify_rate_limiter.cache_clear()

    yield TestClient(app)

    app.dependency_overrides.clear()
    get_verify_rate_limiter.cache_clear()


def _issue(client, **form):
    data = {"doc_type": "certificate", "issuer": "Acme University", "title": "BSc"}
    data.update(form)
    return client.post(
        "/v1/documents",
        files={"file": ("diploma.pdf", make_pdf(), "application/pdf")},
        data=data,
    )


class TestHealth:
    def test_basic(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_registry_healthy(self, client):
        class Pinger:
            async def ping(self):
                return {
                    "chain_id": 80002,
                    "block_number": 1000,
                    "contract_address": CONTRACT_ADDRESS,
                    "signer_configured": True,
                }

        app.dependency_overrides[get_registry_client] = lambda: Pinger()
        body = client.get("/health/registry").json()
        assert body["status"] == "healthy"
        assert body["registry"]["block_number"] == 1000

    def test_registry_wrong_chain(self, client):
        class Pinger:
            async def ping(self):
                return {"chain_id": 1, "block_number": 1, "contract_address": CONTRACT_ADDRESS,
                        "signer_configured": False}

        app.dependency_overrides[get_registry_client] = lambda: Pinger()
        body = client.get("/health/registry").json()
        assert body["status"] == "unhealthy"
        assert "expected 80002" in body["registry"]["error"]

    def test_registry_unreachable(self, client):
        class Pinger:
            async def ping(self):
                raise RegistryError("health check: cannot reach registry node", kind=RegistryErrorKind.CONNECTIVITY)

        app.dependency_overrides[get_registry_client] = lambda: Pinger()
        body = client.get("/health/registry").json()
        assert body["status"] == "unhealthy"
        assert body["registry"]["error_kind"] == "connectivity"


class TestIssueEndpoint:
    def test_returns_stamped_pdf(self, client, fake_registry):
        response = _issue(client)

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content[:4] == b"%PDF"

        document_id = response.headers["x-document-id"]
        assert document_id.startswith("CERTIFICATE-")
        assert response.headers["x-transaction-hash"].startswith("0x")
        assert response.headers["x-anchored-hash"] == "0x" + response.headers["x-file-hash"]
        assert f"id={document_id}" in response.headers["x-verification-url"]
        assert f'filename="{document_id}_signed.pdf"' in response.headers["content-disposition"]
        assert "x-hash-degraded" not in response.headers
        assert document_id in fake_registry.records

    def test_image_returns_png(self, client):
        response = client.post(
            "/v1/documents",
            files={"file": ("card.jpg", make_image(fmt="JPEG"), "image/jpeg")},
            data={"doc_type": "employee_card", "issuer": "Acme", "role_or_program": "Engineer", "id_number": "E-7"},
        )
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.headers["x-document-id"].startswith("EMPLOYEE_CARD-")

    def test_valid_until_form_value(self, client, fake_registry):
        response = _issue(client, valid_until="2024-06-01")
        record = fake_registry.records[response.headers["x-document-id"]]
        assert record.valid_until == 1717200000

    def test_empty_valid_until_never_expires(self, client, fake_registry):
        response = _issue(client, valid_until="")
        assert fake_registry.records[response.headers["x-document-id"]].valid_until == 0

    def test_missing_fields(self, client):
        response = _issue(client, title="")
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "MISSING_FIELDS"
        assert body["details"]["missing"] == ["title"]
        assert body["details"]["origin"] == "local"

    def test_unsupported_type(self, client):
        response = client.post(
            "/v1/documents",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            data={"issuer": "Acme", "title": "BSc"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "UNSUPPORTED_MEDIA_TYPE"

    def test_registry_failure(self, client, fake_registry):
        fake_registry.fail_with = RegistryError(
            "Insufficient balance for transaction fees", kind=RegistryErrorKind.INSUFFICIENT_FUNDS
        )
        response = _issue(client)
        assert response.status_code == 402
        body = response.json()
        assert body["code"] == "REGISTRY_INSUFFICIENT_FUNDS"
        assert body["details"]["origin"] == "registry"


class TestIssuerApiKey:
    @pytest.fixture
    def protected(self, client, settings):
        keyed = settings.model_copy(update={"issuer_api_key": "s3cret"})
        app.dependency_overrides[get_settings] = lambda: keyed
        return client

    def test_missing_key(self, protected):
        assert _issue(protected).status_code == 401

    def test_wrong_key(self, protected):
        response = protected.post(
            "/v1/documents",
            files={"file": ("diploma.pdf", make_pdf(), "application/pdf")},
            data={"issuer": "Acme", "title": "BSc"},
            headers={"X-Api-Key": "guess"},
        )
        assert response.status_code == 403

    def test_correct_key(self, protected):
        response = protected.post(
            "/v1/documents",
            files={"file": ("diploma.pdf", make_pdf(), "application/pdf")},
            data={"issuer": "Acme", "title": "BSc"},
            headers={"X-Api-Key": "s3cret"},
        )
        assert response.status_code == 200

    def test_verification_stays_public(self, protected):
        assert protected.get("/v1/verify/CERTIFICATE-00000000").status_code == 200


class TestGenerateEndpoint:
    def test_returns_stamped_certificate(self, client, fake_registry):
        response = client.post(
            "/v1/documents/generate",
            json={
                "recipient_name": "Ada Lovelace",
                "course_name": "Analytical Engines",
                "issuer": "Acme University",
                "valid_until": "2025-01-01",
            },
        )

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content[:4] == b"%PDF"
        document_id = response.headers["x-document-id"]
        assert document_id.startswith("CERTIFICATE-")
        record = fake_registry.records[document_id]
        assert record.subject == "Ada Lovelace"
        assert record.title == "Analytical Engines"

    def test_blank_recipient(self, client, fake_registry):
        response = client.post(
            "/v1/documents/generate",
            json={"recipient_name": " ", "course_name": "Analytical Engines", "issuer": "Acme University"},
        )
        assert response.status_code == 422
        assert fake_registry.requests == []


class TestBatchEndpoint:
    def test_batch(self, client):
        response = client.post(
            "/v1/documents/batch",
            files=[
                ("files", ("a.pdf", make_pdf(), "application/pdf")),
                ("files", ("b.pdf", b"%PDF-1.7 garbage", "application/pdf")),
                ("files", ("c.png", make_image(), "image/png")),
            ],
            data={"issuer": "Acme University", "title": "BSc"},
        )
        assert response.status_code == 200
        body = response.json()
        assert (body["total"], body["completed"], body["failed"]) == (3, 2, 1)
        assert body["items"][1]["status"] == "error"
        assert body["items"][1]["error_kind"] == "decode"
        assert base64.b64decode(body["bundle_base64"])[:2] == b"PK"

    def test_batch_without_bundle(self, client):
        response = client.post(
            "/v1/documents/batch",
            files=[("files", ("a.pdf", make_pdf(), "application/pdf"))],
            data={"issuer": "Acme University", "title": "BSc", "include_bundle": "false"},
        )
        assert response.json()["bundle_base64"] is None

    def test_too_many_files(self, client, settings, fake_registry, clock):
        limited = settings.model_copy(update={"max_batch_files": 1})
        pipeline = IssuancePipeline(settings=limited, registry=fake_registry, clock=clock)
        app.dependency_overrides[get_issuance_pipeline] = lambda: pipeline
        response = client.post(
            "/v1/documents/batch",
            files=[
                ("files", ("a.pdf", make_pdf(), "application/pdf")),
                ("files", ("b.pdf", make_pdf(), "application/pdf")),
            ],
            data={"issuer": "Acme University", "title": "BSc"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "TOO_MANY_FILES"
        assert fake_registry.requests == []


class TestVerifyEndpoints:
    def test_issue_then_verify_by_link(self, client, clock):
        document_id = _issue(client, valid_until="2024-06-01").headers["x-document-id"]

        response = client.get(
            "/v1/verify", params={"chain": "amoy", "contract": CONTRACT_ADDRESS, "id": document_id}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert body["status"] == "valid"
        assert body["document"]["issuer"] == "Acme University"
        assert body["document"]["title"] == "BSc"

        clock.advance(days=31)
        body = client.get(f"/v1/verify/{document_id}").json()
        assert body["valid"] is False
        assert body["status"] == "expired"
        assert body["message"] == "Document has expired"

    def test_unknown_id(self, client):
        body = client.get("/v1/verify/CERTIFICATE-00000000").json()
        assert body["status"] == "not_found"
        assert body["document"] is None

    def test_revoked(self, client, fake_registry):
        document_id = _issue(client).headers["x-document-id"]
        fake_registry.revoke(document_id)
        assert client.get(f"/v1/verify/{document_id}").json()["status"] == "revoked"

    def test_wrong_chain(self, client):
        response = client.get("/v1/verify", params={"chain": "mainnet", "id": "CERTIFICATE-1"})
        assert response.status_code == 400
        assert response.json()["code"] == "CHAIN_MISMATCH"

    def test_wrong_contract(self, client):
        response = client.get("/v1/verify", params={"contract": "0x" + "22" * 20, "id": "CERTIFICATE-1"})
        assert response.status_code == 400
        assert response.json()["code"] == "CONTRACT_MISMATCH"

    def test_registry_unreachable(self, client, fake_registry):
        async def unreachable(document_id):
            raise RegistryError("cannot reach registry node", kind=RegistryErrorKind.CONNECTIVITY)

        fake_registry.lookup = unreachable
        response = client.get("/v1/verify/CERTIFICATE-1")
        assert response.status_code == 503
        assert response.json()["details"]["registry_error"] == "connectivity"

    def test_scan(self, client, monkeypatch):
        document_id = _issue(client).headers["x-document-id"]
        monkeypatch.setattr(
            verification_service,
            "extract_verification_target",
            lambda data, content_type=None, filename="": VerificationTarget("amoy", CONTRACT_ADDRESS, document_id),
        )
        response = client.post("/v1/verify/scan", files={"file": ("s.pdf", make_pdf(), "application/pdf")})
        assert response.status_code == 200
        assert response.json()["status"] == "valid"
        assert response.json()["document_id"] == document_id

    def test_bulk(self, client, monkeypatch):
        monkeypatch.setattr(
            verification_service,
            "extract_verification_target",
            lambda data, content_type=None, filename="": None,
        )
        response = client.post(
            "/v1/verify/bulk",
            files=[
                ("files", ("a.pdf", make_pdf(), "application/pdf")),
                ("files", ("b.png", make_image(), "image/png")),
            ],
        )
        body = response.json()
        assert body["total"] == 2
        assert body["valid"] == []
        assert {r["status"] for r in body["invalid"]} == {"no_qr"}

    def test_rate_limited(self, client, monkeypatch):
        limiter = RateLimiter(max_requests=2, window_seconds=60)
        monkeypatch.setattr(verification_router, "get_verify_rate_limiter", lambda: limiter)

        assert client.get("/v1/verify/CERTIFICATE-1").status_code == 200
        assert client.get("/v1/verify/CERTIFICATE-1").status_code == 200
        response = client.get("/v1/verify/CERTIFICATE-1")
        assert response.status_code == 429
        assert response.json()["code"] == "RATE_LIMIT_EXCEEDED"
        assert response.json()["details"]["retry_after"] > 0

    def test_rate_limit_per_client_ip(self, client, monkeypatch):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        monkeypatch.setattr(verification_router, "get_verify_rate_limiter", lambda: limiter)

        assert client.get("/v1/verify/X-1", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
        assert client.get("/v1/verify/X-1", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 200
        assert client.get("/v1/verify/X-1", headers={"X-Forwarded-For": "10.0.0.1, 172.16.0.1"}).status_code == 429
