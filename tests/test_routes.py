"""
NameCard Backend - API Route Tests
===================================

What:  HTTP behaviour through the full middleware and exception-handler stack.
How:   HTTPX AsyncClient over ASGITransport; services are patched at the
       route modules, auth and DB dependencies are overridden in conftest.

What we test:
    ✅ Success envelope (camelCase, requestId, headers)
    ✅ Error envelope for 400 / 401 / 404 / 405 / 422 / 500 / 503
    ✅ Multipart upload end-to-end on the local storage backend
    ✅ Health report
"""

import base64
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from app.exceptions import (
    EnrichmentServiceError,
    NotFoundError,
    OCRProcessingError,
    StorageError,
)
from app.schemas.card import CardListResponse, CardResponse
from app.schemas.common import PaginationMeta
from app.services.field_extractor import OcrLine, extract_fields
from app.services.scan_service import ScanResult

BOUNDARY = "----NameCardTestBoundary"


def multipart(*parts):
    body = b""
    for name, filename, content, content_type in parts:
        body += f"--{BOUNDARY}\r\n".encode()
        if filename is None:
            body += f'Content-Disposition: form-data; name="{name}"\r\n\r\n'.encode()
        else:
            body += (
                f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
                f"Content-Type: {content_type}\r\n\r\n"
            ).encode()
        body += content + b"\r\n"
    body += f"--{BOUNDARY}--\r\n".encode()
    return body, {"Content-Type": f"multipart/form-data; boundary={BOUNDARY}"}


def assert_error(response, status, code):
    assert response.status_code == status, response.text
    payload = response.json()
    assert payload["success"] is False
    assert payload["code"] == code
    assert payload["error"]
    assert "requestId" in payload and "timestamp" in payload
    return payload


class TestCardRoutes:

    @pytest.mark.asyncio
    async def test_list_envelope(self, test_client, make_card):
        card = CardResponse.model_validate(make_card())
        listing = CardListResponse(cards=[card], pagination=PaginationMeta.build(1, 20, 1), filters={})

        with patch("app.routes.cards.card_service") as cards:
            cards.list_cards = AsyncMock(return_value=listing)
            response = await test_client.get("/api/v1/cards", params={"q": "acme"})

        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "1"
        assert response.headers["X-Request-ID"]
        payload = response.json()
        assert payload["success"] is True
        assert payload["requestId"] == response.headers["X-Request-ID"]
        first = payload["data"]["cards"][0]
        assert first["name"] == "John Smith"
        assert "createdAt" in first and "userId" in first
        assert payload["data"]["pagination"]["totalPages"] == 1
        assert cards.list_cards.await_args.kwargs["q"] == "acme"

    @pytest.mark.asyncio
    async def test_get_missing_card(self, test_client):
        with patch("app.routes.cards.card_service") as cards:
            cards.get_card = AsyncMock(side_effect=NotFoundError(resource="card", resource_id="x"))
            response = await test_client.get(f"/api/v1/cards/{uuid4()}")
        assert_error(response, 404, "not_found")

    @pytest.mark.asyncio
    async def test_invalid_card_id(self, test_client):
        response = await test_client.get("/api/v1/cards/not-a-uuid")
        payload = assert_error(response, 400, "validation_error")
        assert payload["details"]["errors"][0]["field"] == "path.card_id"

    @pytest.mark.asyncio
    async def test_create_validation_error(self, test_client):
        response = await test_client.post("/api/v1/cards", json={"name": "Jane", "email": "not-an-email"})
        payload = assert_error(response, 400, "validation_error")
        assert payload["details"]["errors"][0]["field"] == "email"

    @pytest.mark.asyncio
    async def test_create_card(self, test_client, make_card):
        with patch("app.routes.cards.card_service") as cards:
            cards.create_card = AsyncMock(return_value=CardResponse.model_validate(make_card(name="Jane Roe")))
            response = await test_client.post("/api/v1/cards", json={"name": "Jane Roe", "tags": ["vip"]})
        assert response.status_code == 201
        assert response.json()["data"]["name"] == "Jane Roe"

    @pytest.mark.asyncio
    async def test_delete_card(self, test_client):
        card_id = uuid4()
        with patch("app.routes.cards.card_service") as cards:
            cards.delete_card = AsyncMock(return_value=None)
            response = await test_client.delete(f"/api/v1/cards/{card_id}")
        assert response.status_code == 200
        assert response.json()["data"] == {"id": str(card_id)}

    @pytest.mark.asyncio
    async def test_requires_authentication(self, anonymous_client):
        response = await anonymous_client.get("/api/v1/cards")
        assert_error(response, 401, "authentication_error")


class TestFrameworkErrors:

    @pytest.mark.asyncio
    async def test_unknown_route(self, test_client):
        assert_error(await test_client.get("/api/v1/nothing-here"), 404, "not_found")

    @pytest.mark.asyncio
    async def test_method_not_allowed(self, test_client):
        assert_error(await test_client.put("/api/v1/cards"), 405, "method_not_allowed")

    @pytest.mark.asyncio
    async def test_internal_errors_are_generic(self, test_client):
        with patch("app.routes.cards.card_service") as cards:
            cards.get_stats = AsyncMock(side_effect=StorageError("disk /var/secret full", context={"path": "/var"}))
            response = await test_client.get("/api/v1/cards/stats")
        payload = assert_error(response, 500, "server_error")
        assert "secret" not in payload["error"]
        assert payload["details"] is None


class TestScanRoutes:

    @pytest.mark.asyncio
    async def test_scan_success(self, test_client, make_card, make_image):
        extracted = extract_fields([OcrLine("John Smith", 0.99, 0), OcrLine("john@acme.com", 0.98, 1)])
        result = ScanResult(
            card=make_card(tags=["scan"]),
            ocr_job_id=uuid4(),
            ocr_job_status="pending",
            extracted=extracted,
            image_urls={"original": "/o.jpg", "processed": None, "thumbnail": None, "web": None},
            processing_time_ms=12.5,
        )
        body, headers = multipart(
            ("image", "card.jpg", make_image(), "image/jpeg"),
            ("minConfidence", None, b"85", None),
            ("tags", None, b"vip,conference", None),
        )

        with patch("app.routes.scan.scan_service") as scans:
            scans.scan_card = AsyncMock(return_value=result)
            response = await test_client.post("/api/v1/scan", content=body, headers=headers)

        assert response.status_code == 201, response.text
        data = response.json()["data"]
        assert data["ocrJobStatus"] == "pending"
        assert data["extractedData"]["name"]["text"] == "John Smith"
        assert data["imageUrls"]["original"] == "/o.jpg"
        kwargs = scans.scan_card.await_args.kwargs
        assert kwargs["min_confidence"] == 85.0
        assert kwargs["tags"] == ["vip", "conference"]

    @pytest.mark.asyncio
    async def test_scan_without_image(self, test_client):
        body, headers = multipart(("tags", None, b"vip", None))
        response = await test_client.post("/api/v1/scan", content=body, headers=headers)
        assert_error(response, 400, "validation_error")

    @pytest.mark.asyncio
    async def test_scan_bad_confidence(self, test_client, make_image):
        body, headers = multipart(
            ("image", "card.jpg", make_image(), "image/jpeg"),
            ("minConfidence", None, b"high", None),
        )
        response = await test_client.post("/api/v1/scan", content=body, headers=headers)
        assert_error(response, 400, "validation_error")

    @pytest.mark.asyncio
    async def test_scan_ocr_failure(self, test_client, make_image):
        body, headers = multipart(("image", "card.jpg", make_image(), "image/jpeg"))
        with patch("app.routes.scan.scan_service") as scans:
            scans.scan_card = AsyncMock(side_effect=OCRProcessingError("No text met the confidence threshold"))
            response = await test_client.post("/api/v1/scan", content=body, headers=headers)
        assert_error(response, 422, "ocr_failed")

    @pytest.mark.asyncio
    async def test_malformed_multipart(self, test_client):
        response = await test_client.post(
            "/api/v1/scan",
            content=b"garbage",
            headers={"Content-Type": f"multipart/form-data; boundary={BOUNDARY}"},
        )
        assert_error(response, 400, "validation_error")


class TestUploadRoutes:

    @pytest.mark.asyncio
    async def test_single_upload_local_backend(self, test_client, make_image):
        body, headers = multipart(("image", "card.jpg", make_image(800, 450), "image/jpeg"))

        response = await test_client.post("/api/v1/upload/single", content=body, headers=headers)

        assert response.status_code == 201, response.text
        data = response.json()["data"]
        assert data["storageBackend"] == "local"
        assert data["successful"] == 1
        variants = data["files"][0]["variants"]
        assert set(variants) == {"original", "ocr", "thumbnail", "web"}

        served = await test_client.get(variants["original"]["url"])
        assert served.status_code == 200
        assert served.headers["content-type"] == "image/jpeg"

    @pytest.mark.asyncio
    async def test_multiple_upload_reports_rejections(self, test_client, make_image):
        body, headers = multipart(
            ("images", "good.jpg", make_image(), "image/jpeg"),
            ("images", "bad.jpg", b"not an image", "image/jpeg"),
        )

        response = await test_client.post("/api/v1/upload/multiple", content=body, headers=headers)

        assert response.status_code == 201, response.text
        data = response.json()["data"]
        assert data["totalFiles"] == 2
        assert data["successful"] == 1
        assert data["rejected"][0]["filename"] == "bad.jpg"

    @pytest.mark.asyncio
    async def test_base64_body(self, test_client, make_image):
        body, headers = multipart(("image", "card.png", make_image(fmt="PNG"), "image/png"))
        headers["X-Body-Encoding"] = "base64"
        response = await test_client.post("/api/v1/upload/single", content=base64.b64encode(body), headers=headers)
        assert response.status_code == 201, response.text

    @pytest.mark.asyncio
    async def test_path_traversal(self, test_client):
        response = await test_client.get("/api/v1/upload/files/..%2F..%2Fetc%2Fpasswd")
        assert response.status_code in (400, 404)
        assert response.json()["success"] is False


class TestEnrichmentRoutes:

    @pytest.mark.asyncio
    async def test_enrichment_unavailable(self, test_client):
        error = EnrichmentServiceError(
            "Rate limit exceeded for perplexity",
            source="perplexity",
            error_type="RATE_LIMIT_EXCEEDED",
            retry_after=30,
        )
        with patch("app.routes.enrichment.enrichment_service") as service:
            service.enrich_company = AsyncMock(side_effect=error)
            response = await test_client.post("/api/v1/enrichment/company", json={"companyName": "Acme"})

        payload = assert_error(response, 503, "service_unavailable")
        assert response.headers["Retry-After"] == "30"
        assert payload["details"]["error_type"] == "RATE_LIMIT_EXCEEDED"

    @pytest.mark.asyncio
    async def test_company_request_needs_identifier(self, test_client):
        response = await test_client.post("/api/v1/enrichment/company", json={})
        assert_error(response, 400, "validation_error")


class TestHealth:

    @pytest.mark.asyncio
    async def test_healthy(self, test_client):
        engine = MagicMock()
        engine.connect.return_value.__aenter__.return_value.execute = AsyncMock()
        with patch("app.routes.health.engine", engine):
            response = await test_client.get("/health")

        assert response.status_code == 200
        payload = response.json()
        assert payload["database"] == "connected"
        assert payload["status"] in ("healthy", "degraded")
        names = [d["name"] for d in payload["dependencies"]]
        assert names == ["textract", "perplexity", "storage", "ocr_queue"]
        assert "uptimeSeconds" in payload

    @pytest.mark.asyncio
    async def test_database_down(self, test_client):
        engine = MagicMock()
        engine.connect.side_effect = OperationalError("SELECT 1", {}, Exception("down"))
        with patch("app.routes.health.engine", engine):
            response = await test_client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
