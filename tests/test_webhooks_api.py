"""Tests for the WhatsApp webhook endpoint."""

import pytest

from wacrm.core.config import settings


@pytest.mark.asyncio
async def test_message_webhook(client, storage, session, make_payload):
    response = await client.post("/webhooks/whatsapp", json=make_payload(messageId="WH-1"))

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert await storage.get_message_by_provider_id(session.tenant_id, "WH-1") is not None


@pytest.mark.asyncio
async def test_unknown_session_still_200(client, make_payload):
    response = await client.post("/webhooks/whatsapp", json=make_payload(sessionId="ghost"))

    assert response.status_code == 200
    assert response.json() == {"success": False, "message": "Session not found"}


@pytest.mark.asyncio
async def test_invalid_json(client):
    response = await client.post(
        "/webhooks/whatsapp",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json() == {"success": False, "message": "Invalid JSON"}


@pytest.mark.asyncio
async def test_non_object_body(client):
    response = await client.post("/webhooks/whatsapp", json=["message"])

    assert response.status_code == 200
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_ingestor_failure_still_200(client, ingestor, session, make_payload, monkeypatch):
    async def broken(payload):
        raise RuntimeError("storage down")

    monkeypatch.setattr(ingestor, "handle", broken)

    response = await client.post("/webhooks/whatsapp", json=make_payload())

    assert response.status_code == 200
    assert response.json() == {"success": False, "message": "Internal error"}


@pytest.mark.asyncio
async def test_webhook_secret_required(client, session, make_payload, monkeypatch):
    monkeypatch.setattr(settings, "whatsapp_webhook_secret", "s3cret")

    rejected = await client.post("/webhooks/whatsapp", json=make_payload())
    accepted = await client.post(
        "/webhooks/whatsapp",
        json=make_payload(),
        headers={"X-Webhook-Secret": "s3cret"},
    )

    assert rejected.status_code == 401
    assert accepted.status_code == 200
    assert accepted.json() == {"success": True}
