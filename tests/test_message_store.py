"""Tests for message persistence, sends and delivery receipts."""

import asyncio

import pytest

from wacrm.core.exceptions import UnresolvableRecipient
from wacrm.models import MessageDirection, MessageEvent, MessageStatus


@pytest.mark.asyncio
async def test_duplicate_webhook_delivery_stores_once(ingestor, session, storage, make_payload):
    """The same provider message id delivered concurrently is stored exactly once."""
    payload = make_payload(messageId="ABC123")

    results = await asyncio.gather(*(ingestor.handle(dict(payload)) for _ in range(5)))

    assert all(r["success"] for r in results)
    stored = await storage.get_message_by_provider_id(session.tenant_id, "ABC123")
    assert stored is not None
    conversations = await storage.list_conversations(session.tenant_id, session.id)
    assert len(conversations) == 1
    assert await storage.count_messages(session.tenant_id, conversations[0].id) == 1


@pytest.mark.asyncio
async def test_create_incoming_from_phone(message_store, conversation, make_payload):
    """Messages typed on the phone are stored as outgoing without a contact name."""
    payload = make_payload(fromMe=True, messageId="PHONE-1", text="Já te respondo")
    event = MessageEvent.model_validate(payload)

    message = await message_store.create_incoming(conversation.tenant_id, conversation, event)

    assert message.direction == MessageDirection.OUTGOING
    assert message.status == MessageStatus.SENT
    assert message.sender_name is None
    assert message.content == "Já te respondo"


@pytest.mark.asyncio
async def test_status_updates_are_forward_only(message_store, conversation, make_payload):
    event = MessageEvent.model_validate(make_payload(messageId="M-1"))
    await message_store.create_incoming(conversation.tenant_id, conversation, event)

    message = await message_store.update_status(conversation.tenant_id, "M-1", "sent")
    assert message.status == MessageStatus.DELIVERED

    message = await message_store.update_status(conversation.tenant_id, "M-1", "read")
    assert message.status == MessageStatus.READ
    assert message.read_at is not None

    message = await message_store.update_status(conversation.tenant_id, "M-1", "delivered")
    assert message.status == MessageStatus.READ

    message = await message_store.update_status(conversation.tenant_id, "M-1", "failed")
    assert message.status == MessageStatus.FAILED


@pytest.mark.asyncio
async def test_status_for_unknown_message_or_status(message_store):
    assert await message_store.update_status("test-tenant", "missing", "read") is None
    assert await message_store.update_status("test-tenant", "missing", "played") is None


@pytest.mark.asyncio
async def test_send_text_clears_unread(message_store, storage, channel, conversation):
    conversation.unread_count = 3
    await storage.save_conversation(conversation)

    message = await message_store.send_text(
        conversation.tenant_id, conversation, "Olá! Como posso ajudar?", sender_id="owner-1"
    )

    assert channel.sent == [
        {"session_id": "session-1", "to": "5511999990000@s.whatsapp.net", "text": "Olá! Como posso ajudar?"}
    ]
    assert message.provider_message_id == "OUT-1"
    assert message.sender_id == "owner-1"
    updated = await storage.get_conversation(conversation.tenant_id, conversation.id)
    assert updated.unread_count == 0
    assert updated.last_message_at == message.created_at


@pytest.mark.asyncio
async def test_send_to_lid_without_phone_fails(message_store, storage, channel, make_conversation):
    conversation = await storage.insert_conversation(
        make_conversation(id="conv-lid", remote_jid="98765@lid", contact_phone=None)
    )

    with pytest.raises(UnresolvableRecipient):
        await message_store.send_text(conversation.tenant_id, conversation, "Oi")

    assert channel.sent == []


@pytest.mark.asyncio
async def test_send_to_lid_resolves_phone(message_store, storage, channel, make_conversation):
    conversation = await storage.insert_conversation(
        make_conversation(id="conv-lid", remote_jid="98765@lid", contact_phone="+55 (11) 97777-6666")
    )

    await message_store.send_text(conversation.tenant_id, conversation, "Oi")

    assert channel.sent[0]["to"] == "5511977776666@s.whatsapp.net"


@pytest.mark.asyncio
async def test_echo_before_send_result_keeps_sender(message_store, storage, conversation, make_payload):
    """The channel may echo our send through the webhook before the send call returns."""
    echo = MessageEvent.model_validate(make_payload(fromMe=True, messageId="OUT-1", text="Resposta"))
    await message_store.create_incoming(conversation.tenant_id, conversation, echo)

    message = await message_store.send_text(
        conversation.tenant_id, conversation, "Resposta", sender_name="AI Agent"
    )

    assert message.provider_message_id == "OUT-1"
    assert message.sender_name == "AI Agent"
    assert await storage.count_messages(conversation.tenant_id, conversation.id) == 1


@pytest.mark.asyncio
async def test_fetch_history_saves_new_messages(message_store, storage, channel, conversation, make_payload):
    existing = MessageEvent.model_validate(make_payload(messageId="H-1"))
    await message_store.create_incoming(conversation.tenant_id, conversation, existing)
    channel.history = [
        {"messageId": "H-1", "text": "primeira", "type": "text", "fromMe": False},
        {"messageId": "H-2", "text": "segunda", "type": "text", "fromMe": False},
        {"messageId": "H-3", "text": "resposta", "type": "text", "fromMe": True},
    ]

    result = await message_store.fetch_history(conversation.tenant_id, conversation, count=10)

    assert result == {"total_fetched": 3, "new_saved": 2}
    assert await storage.count_messages(conversation.tenant_id, conversation.id) == 3
