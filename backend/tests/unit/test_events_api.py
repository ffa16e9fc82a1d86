"""
API Tests — POST /api/v1/events/document-uploaded
══════════════════════════════════════════════════
The app is built without its lifespan (ASGITransport does not send
lifespan events); the publisher and settings are injected per test.
"""

from __future__ import annotations

import json
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from grantsignal.core.config import Settings, get_settings
from grantsignal.webhooks.signing import SIGNATURE_HEADER, sign
from tests.conftest import DOCUMENT_ID, ORG_ID, STORAGE_KEY

SIGNING_KEY = "ingress-test-key"
URL = "/api/v1/events/document-uploaded"


def _payload(**overrides) -> bytes:
    body = {
        "documentId":     DOCUMENT_ID,
        "organizationId": ORG_ID,
        "storageKey":     STORAGE_KEY,
        "mimeType":       "application/pdf",
    }
    body.update(overrides)
    return json.dumps({k: v for k, v in body.items() if v is not None}).encode()


def _signed(body: bytes) -> dict:
    return {SIGNATURE_HEADER: sign(body, SIGNING_KEY), "Content-Type": "application/json"}


@pytest.fixture
def app(mock_publisher):
    from grantsignal.main import create_app

    application = create_app()
    application.state.publisher = mock_publisher
    application.dependency_overrides[get_settings] = lambda: Settings(event_signing_key=SIGNING_KEY)
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.mark.unit
class TestDocumentUploadedEndpoint:

    async def test_signed_event_is_queued(self, client, mock_publisher):
        body = _payload()
        resp = await client.post(URL, content=body, headers=_signed(body))

        assert resp.status_code == 202
        assert resp.json() == {"document_id": DOCUMENT_ID, "task_id": "task-123", "status": "queued"}
        mock_publisher.publish_document_uploaded.assert_awaited_once_with({
            "documentId":     DOCUMENT_ID,
            "organizationId": ORG_ID,
            "storageKey":     STORAGE_KEY,
            "mimeType":       "application/pdf",
        })

    async def test_s3_key_alias_is_accepted(self, client, mock_publisher):
        body = _payload(storageKey=None, s3Key="legacy/key.pdf")
        resp = await client.post(URL, content=body, headers=_signed(body))

        assert resp.status_code == 202
        event = mock_publisher.publish_document_uploaded.await_args.args[0]
        assert event["storageKey"] == "legacy/key.pdf"

    async def test_missing_signature_is_401(self, client, mock_publisher):
        resp = await client.post(URL, content=_payload(), headers={"Content-Type": "application/json"})

        assert resp.status_code == 401
        assert resp.json()["error_code"] == "INVALID_SIGNATURE"
        mock_publisher.publish_document_uploaded.assert_not_awaited()

    async def test_tampered_body_is_401(self, client):
        body = _payload()
        resp = await client.post(URL, content=_payload(mimeType="text/plain"), headers=_signed(body))
        assert resp.status_code == 401

    async def test_malformed_event_is_422(self, client, mock_publisher):
        body = _payload(mimeType=None)
        resp = await client.post(URL, content=body, headers=_signed(body))

        assert resp.status_code == 422
        assert resp.json()["error_code"] == "VALIDATION_ERROR"
        mock_publisher.publish_document_uploaded.assert_not_awaited()

    async def test_broker_down_is_503(self, client, mock_publisher):
        mock_publisher.publish_document_uploaded.side_effect = ConnectionError("broker unreachable")
        body = _payload()
        resp = await client.post(URL, content=body, headers=_signed(body))

        assert resp.status_code == 503
        assert resp.json()["error_code"] == "QUEUE_ERROR"

    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
