"""Tests for the admin endpoints."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from wacrm.models import SessionStatus

TENANT = "test-tenant"


@pytest.fixture
def acompletion():
    with patch("wacrm.services.llm.gateway.litellm.acompletion", new_callable=AsyncMock) as mock:
        mock.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Cliente pediu orçamento."))],
            usage=SimpleNamespace(prompt_tokens=40, completion_tokens=8),
        )
        yield mock


# ==================== Sessions ====================


@pytest.mark.asyncio
async def test_session_lifecycle(client, channel, storage):
    response = await client.post(
        f"/admin/tenants/{TENANT}/sessions",
        json={"phone_number": "+55 11 98888-7777", "name": "Vendas", "user_id": "owner-1"},
    )
    assert response.status_code == 201
    created = response.json()
    assert created["status"] == "connecting"
    assert created["phone_number"] == "5511988887777"
    assert channel.created == [created["id"]]

    listed = await client.get(f"/admin/tenants/{TENANT}/sessions")
    assert [s["id"] for s in listed.json()] == [created["id"]]

    qr = await client.get(f"/admin/tenants/{TENANT}/sessions/{created['id']}/qr-code")
    assert qr.json() == {"qr_code": "data:image/png;base64,QR", "status": "connecting"}

    disconnected = await client.post(f"/admin/tenants/{TENANT}/sessions/{created['id']}/disconnect")
    assert disconnected.json()["status"] == "disconnected"

    deleted = await client.delete(f"/admin/tenants/{TENANT}/sessions/{created['id']}")
    assert deleted.status_code == 204
    assert (await client.get(f"/admin/tenants/{TENANT}/sessions")).json() == []


@pytest.mark.asyncio
async def test_session_provisioning_failure(client, channel):
    channel.fail = True

    response = await client.post(f"/admin/tenants/{TENANT}/sessions", json={"phone_number": "5511988887777"})

    assert response.status_code == 201
    assert response.json()["status"] == SessionStatus.FAILED.value


@pytest.mark.asyncio
async def test_unknown_session_is_404(client):
    response = await client.get(f"/admin/tenants/{TENANT}/sessions/ghost/qr-code")

    assert response.status_code == 404
    assert response.json()["error"] == "SESSION_NOT_FOUND"


# ==================== Agents ====================


@pytest.mark.asyncio
async def test_create_and_list_agents(client):
    response = await client.post(
        f"/admin/tenants/{TENANT}/agents",
        json={
            "name": "Atendente",
            "session_id": "session-1",
            "instructions": {"kind": "custom", "custom_instructions": "Seja breve."},
            "human_service_hours": {"monday": {"enabled": True, "start": "09:00", "end": "18:00"}},
        },
    )
    assert response.status_code == 201
    agent = response.json()
    assert agent["tenant_id"] == TENANT
    assert agent["instructions"]["kind"] == "custom"

    listed = await client.get(f"/admin/tenants/{TENANT}/agents")
    assert [a["id"] for a in listed.json()] == [agent["id"]]


# ==================== Conversations ====================


@pytest.mark.asyncio
async def test_send_and_list_messages(client, channel, session, conversation):
    sent = await client.post(
        f"/admin/tenants/{TENANT}/conversations/{conversation.id}/messages",
        json={"text": "Bom dia! Em que posso ajudar?", "sender_id": "owner-1", "sender_name": "Ana"},
    )
    assert sent.status_code == 201
    assert sent.json()["provider_message_id"] == "OUT-1"
    assert channel.sent[0]["to"] == conversation.remote_jid

    listed = await client.get(f"/admin/tenants/{TENANT}/conversations/{conversation.id}/messages")
    data = listed.json()
    assert data["count"] == 1
    assert data["messages"][0]["direction"] == "outgoing"
    assert data["messages"][0]["sender_name"] == "Ana"


@pytest.mark.asyncio
async def test_send_to_unresolvable_lid(client, storage, session, make_conversation):
    await storage.insert_conversation(
        make_conversation(id="conv-lid", remote_jid="98765@lid", contact_phone=None)
    )

    response = await client.post(
        f"/admin/tenants/{TENANT}/conversations/conv-lid/messages", json={"text": "Oi"}
    )

    assert response.status_code == 400
    assert response.json()["error"] == "UNRESOLVABLE_RECIPIENT"


@pytest.mark.asyncio
async def test_missing_conversation_is_404(client):
    response = await client.get(f"/admin/tenants/{TENANT}/conversations/nope/messages")

    assert response.status_code == 404
    assert response.json()["error"] == "CONVERSATION_NOT_FOUND"


@pytest.mark.asyncio
async def test_fetch_history(client, channel, session, conversation):
    channel.history = [{"messageId": "H-1", "text": "Olá", "type": "text", "fromMe": False}]

    response = await client.post(f"/admin/tenants/{TENANT}/conversations/{conversation.id}/history")

    assert response.json() == {"total_fetched": 1, "new_saved": 1}


@pytest.mark.asyncio
async def test_summarize_conversation(client, acompletion, storage, tenant_plan, conversation, make_message):
    await storage.insert_message(
        make_message(TENANT, conversation.id, "IN-1", content="Preciso de um orçamento para 10 unidades")
    )

    response = await client.post(f"/admin/tenants/{TENANT}/conversations/{conversation.id}/summary")

    data = response.json()
    assert data["success"] is True
    assert data["response"] == "Cliente pediu orçamento."


# ==================== Usage & Learning ====================


@pytest.mark.asyncio
async def test_usage_stats(client, tenant_plan, quota):
    await quota.record_usage(TENANT, "chat", prompt_tokens=100, completion_tokens=50)

    response = await client.get(f"/admin/tenants/{TENANT}/usage")

    data = response.json()
    assert data["monthly"]["used"] == 150
    assert data["by_feature"]["chat"]["tokens"] == 150


@pytest.mark.asyncio
async def test_feedback_flow(client):
    created = await client.post(
        f"/admin/tenants/{TENANT}/learning/feedback",
        json={
            "user_message": "Vocês entregam em Campinas?",
            "ai_response": "Sim, entregamos em Campinas.",
            "rating": "positive",
        },
    )
    assert created.status_code == 201
    assert created.json()["rating"] == "positive"

    processed = await client.post(f"/admin/tenants/{TENANT}/learning/feedback/process")
    assert processed.json() == {"processed": 1}

    faqs = (await client.get(f"/admin/tenants/{TENANT}/learning/faqs")).json()
    assert faqs["count"] == 1
    assert faqs["faqs"][0]["question"] == "Vocês entregam em Campinas?"

    stats = (await client.get(f"/admin/tenants/{TENANT}/learning/stats")).json()
    assert stats["feedback"] == {"total": 1, "positive": 1, "negative": 0, "pending": 0}
    assert stats["faq"]["total"] == 1


@pytest.mark.asyncio
async def test_model_info(client):
    data = (await client.get("/admin/ai/model")).json()

    assert data["provider"] == "Groq"
    assert data["configured"] is True
