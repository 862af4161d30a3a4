"""Tests for conversation identity resolution."""

import asyncio

import pytest

from wacrm.models import Lifecycle, MessageEvent
from wacrm.services.conversation.resolver import extract_contact_data


@pytest.fixture
def event(make_payload):
    def _event(**overrides) -> MessageEvent:
        return MessageEvent.model_validate(make_payload(**overrides))

    return _event


@pytest.mark.asyncio
async def test_first_contact_creates_conversation(resolver, session, event, storage):
    conversation = await resolver.resolve(session, event())

    assert conversation.remote_jid == "5511999990000@s.whatsapp.net"
    assert conversation.contact_name == "Maria"
    assert conversation.assigned_user_id == session.user_id
    assert conversation.unread_count == 1
    assert len(await storage.list_conversations(session.tenant_id, session.id)) == 1


@pytest.mark.asyncio
async def test_concurrent_first_contact_single_conversation(resolver, session, event, storage):
    """Many simultaneous first messages from one contact yield one conversation."""
    results = await asyncio.gather(
        *(resolver.resolve(session, event(messageId=f"MSG-{i}")) for i in range(10))
    )

    ids = {conv.id for conv in results if conv is not None}
    assert len(ids) == 1
    assert len(await storage.list_conversations(session.tenant_id, session.id)) == 1


@pytest.mark.asyncio
async def test_existing_conversation_counts_unread(resolver, session, event, conversation):
    resolved = await resolver.resolve(session, event(pushName="Maria Silva"))

    assert resolved.id == conversation.id
    assert resolved.unread_count == 1
    assert resolved.contact_name == "Maria Silva"


@pytest.mark.asyncio
async def test_profile_update_keeps_concurrent_unread(
    resolver, session, event, storage, conversation, monkeypatch
):
    """An unread bump landing between the count and the profile write is not overwritten."""
    update_fields = storage.update_conversation_fields

    async def update_after_concurrent_message(tenant_id, conversation_id, fields):
        await storage.increment_unread(tenant_id, conversation_id, conversation.created_at)
        return await update_fields(tenant_id, conversation_id, fields)

    monkeypatch.setattr(storage, "update_conversation_fields", update_after_concurrent_message)

    await resolver.resolve(session, event(pushName="Maria Silva"))

    stored = await storage.get_conversation(session.tenant_id, conversation.id)
    assert stored.unread_count == 2
    assert stored.contact_name == "Maria Silva"


@pytest.mark.asyncio
async def test_lid_conversation_matched_by_lid(resolver, session, event, storage, make_conversation):
    await storage.insert_conversation(
        make_conversation(
            id="conv-phone",
            remote_jid="5511977776666@s.whatsapp.net",
            contact_phone="5511977776666",
            lid_jid="98765@lid",
        )
    )

    resolved = await resolver.resolve(session, event(**{"from": "98765@lid"}))

    assert resolved.id == "conv-phone"


@pytest.mark.asyncio
async def test_lid_conversation_migrates_to_phone_jid(resolver, session, event, storage, make_conversation):
    """A message carrying originalLidJid moves the LID conversation onto the stable JID."""
    await storage.insert_conversation(
        make_conversation(id="conv-lid", remote_jid="98765@lid", contact_phone=None)
    )

    resolved = await resolver.resolve(
        session,
        event(**{"from": "5511977776666@s.whatsapp.net", "originalLidJid": "98765@lid"}),
    )

    assert resolved.id == "conv-lid"
    assert resolved.remote_jid == "5511977776666@s.whatsapp.net"
    assert resolved.lid_jid == "98765@lid"
    assert resolved.contact_phone == "5511977776666"
    assert await storage.find_conversation_by_jid(session.tenant_id, session.id, "98765@lid") is None


@pytest.mark.asyncio
async def test_phone_fallback_merges_duplicates(
    resolver, session, event, storage, make_conversation, make_message
):
    """Two conversations with the same number collapse into the stable-JID one."""
    stable = await storage.insert_conversation(
        make_conversation(
            id="conv-stable",
            remote_jid="5511977776666@s.whatsapp.net",
            contact_phone="+55 11 97777-6666",
        )
    )
    legacy = await storage.insert_conversation(
        make_conversation(id="conv-legacy", remote_jid="5511977776666@c.us", contact_phone="5511977776666")
    )
    await storage.insert_message(make_message(session.tenant_id, legacy.id, "OLD-1"))

    resolved = await resolver.resolve(
        session,
        event(**{"from": "11223@lid", "senderPhone": "5511977776666"}),
    )

    assert resolved.id == stable.id
    assert await storage.count_messages(session.tenant_id, stable.id) == 1
    merged = await storage.get_conversation(session.tenant_id, legacy.id)
    assert merged.lifecycle == Lifecycle.REMOVED


@pytest.mark.asyncio
async def test_removed_conversation_restored(resolver, session, event, storage, conversation):
    conversation.lifecycle = Lifecycle.REMOVED
    conversation.is_archived = True
    await storage.save_conversation(conversation)

    resolved = await resolver.resolve(session, event())

    assert resolved.id == conversation.id
    assert resolved.lifecycle == Lifecycle.ACTIVE
    assert resolved.is_archived is False
    assert resolved.unread_count == 1


@pytest.mark.asyncio
async def test_group_conversation(resolver, session, event):
    resolved = await resolver.resolve(
        session,
        event(
            **{
                "from": "120363025@g.us",
                "participant": "5511955554444@s.whatsapp.net",
                "groupName": "Equipe Vendas",
                "senderName": "João",
            }
        ),
    )

    assert resolved.is_group is True
    assert resolved.group_name == "Equipe Vendas"
    assert resolved.contact_name == "Equipe Vendas"
    assert resolved.lid_jid is None


def test_contact_data_from_me_has_no_name(make_payload):
    contact = extract_contact_data(MessageEvent.model_validate(make_payload(fromMe=True)))

    assert contact.contact_name is None
    assert contact.phone_number == "5511999990000"

