"""Tests for storage backends."""

import asyncio
from datetime import date

import pytest

from wacrm.core.exceptions import DuplicateRecordError
from wacrm.models import (
    AIPlan,
    Lifecycle,
    MessageDirection,
    PatternEntry,
    TenantPlan,
)


@pytest.mark.asyncio
async def test_session_lifecycle(storage, session):
    """Removed sessions stay readable but drop out of the default listing."""
    assert [s.id for s in await storage.list_sessions(session.tenant_id)] == [session.id]

    session.lifecycle = Lifecycle.REMOVED
    await storage.save_session(session)

    assert await storage.list_sessions(session.tenant_id) == []
    assert len(await storage.list_sessions(session.tenant_id, include_removed=True)) == 1
    retrieved = await storage.get_session(session.id)
    assert retrieved is not None
    assert retrieved.is_removed


@pytest.mark.asyncio
async def test_conversation_unique_per_session_jid(storage, conversation, make_conversation):
    """A second conversation with the same (session, remote_jid) is rejected."""
    with pytest.raises(DuplicateRecordError):
        await storage.insert_conversation(make_conversation(id="conv-2"))

    found = await storage.find_conversation_by_jid(
        conversation.tenant_id, conversation.session_id, conversation.remote_jid
    )
    assert found is not None
    assert found.id == conversation.id


@pytest.mark.asyncio
async def test_conversation_jid_migration_keeps_uniqueness(storage, make_conversation):
    """Changing remote_jid frees the old key and claims the new one."""
    lid = await storage.insert_conversation(make_conversation(id="conv-lid", remote_jid="123456@lid"))
    lid.remote_jid = "5511977776666@s.whatsapp.net"
    lid.lid_jid = "123456@lid"
    await storage.save_conversation(lid)

    assert await storage.find_conversation_by_jid(lid.tenant_id, lid.session_id, "123456@lid") is None
    by_lid = await storage.find_conversation_by_lid(lid.tenant_id, lid.session_id, "123456@lid")
    assert by_lid is not None
    assert by_lid.id == "conv-lid"

    # The freed key can be used again
    await storage.insert_conversation(make_conversation(id="conv-new", remote_jid="123456@lid"))


@pytest.mark.asyncio
async def test_conversation_tenant_isolation(storage, conversation):
    """Reads are always scoped by tenant."""
    assert await storage.get_conversation("other-tenant", conversation.id) is None


@pytest.mark.asyncio
async def test_message_provider_id_unique(storage, conversation, make_message):
    """The provider id is unique per tenant; messages without one are not constrained."""
    tenant_id = conversation.tenant_id
    await storage.insert_message(make_message(tenant_id, conversation.id, "ABC123"))
    with pytest.raises(DuplicateRecordError):
        await storage.insert_message(make_message(tenant_id, conversation.id, "ABC123"))

    await storage.insert_message(make_message(tenant_id, conversation.id, None))
    await storage.insert_message(make_message(tenant_id, conversation.id, None))
    assert await storage.count_messages(tenant_id, conversation.id) == 3

    # Another tenant may reuse the id
    await storage.insert_message(make_message("other-tenant", conversation.id, "ABC123"))


@pytest.mark.asyncio
async def test_list_messages_filters_and_order(storage, conversation, make_message):
    tenant_id = conversation.tenant_id
    first = make_message(tenant_id, conversation.id, "IN-1", content="primeira")
    await storage.insert_message(first)
    await asyncio.sleep(0.001)
    await storage.insert_message(
        make_message(
            tenant_id, conversation.id, "OUT-1", content="resposta", direction=MessageDirection.OUTGOING
        )
    )
    await asyncio.sleep(0.001)
    await storage.insert_message(make_message(tenant_id, conversation.id, "IN-2", content="segunda"))

    incoming = await storage.list_messages(tenant_id, conversation.id, direction=MessageDirection.INCOMING)
    assert [m.content for m in incoming] == ["primeira", "segunda"]

    latest = await storage.list_messages(tenant_id, conversation.id, limit=1)
    assert [m.content for m in latest] == ["segunda"]

    since = await storage.list_messages(tenant_id, conversation.id, since=first.created_at)
    assert len(since) == 3


@pytest.mark.asyncio
async def test_reassign_messages(storage, conversation, make_conversation, make_message):
    other = await storage.insert_conversation(make_conversation(id="conv-2", remote_jid="x@s.whatsapp.net"))
    await storage.insert_message(make_message(conversation.tenant_id, other.id, "M-1"))
    await storage.insert_message(make_message(conversation.tenant_id, other.id, "M-2"))

    moved = await storage.reassign_messages(conversation.tenant_id, other.id, conversation.id)

    assert moved == 2
    assert await storage.count_messages(conversation.tenant_id, conversation.id) == 2
    assert await storage.count_messages(conversation.tenant_id, other.id) == 0


@pytest.mark.asyncio
async def test_increment_unread_is_atomic(storage, conversation):
    """Concurrent increments are never lost."""
    await asyncio.gather(
        *(
            storage.increment_unread(conversation.tenant_id, conversation.id, conversation.created_at)
            for _ in range(20)
        )
    )
    updated = await storage.get_conversation(conversation.tenant_id, conversation.id)
    assert updated.unread_count == 20


@pytest.mark.asyncio
async def test_update_conversation_fields_leaves_counters(storage, conversation):
    await storage.increment_unread(conversation.tenant_id, conversation.id, conversation.created_at)

    updated = await storage.update_conversation_fields(
        conversation.tenant_id, conversation.id, {"contact_name": "Maria Silva"}
    )

    assert updated.contact_name == "Maria Silva"
    assert updated.unread_count == 1
    missing = await storage.update_conversation_fields("other-tenant", conversation.id, {"contact_name": "X"})
    assert missing is None


@pytest.mark.asyncio
async def test_reset_usage_once_per_day_boundary(storage):
    """The daily counter resets once on the first call of a new day, not before."""
    await storage.create_tenant_plan_if_absent(
        TenantPlan(
            tenant_id="t1",
            plan=AIPlan(id="p", name="Free", slug="free"),
            tokens_used_this_month=500,
            tokens_used_today=200,
            last_reset_date=date(2025, 3, 10),
        )
    )

    # Same day: nothing to reset
    assert await storage.reset_usage_if_stale("t1", date(2025, 3, 10)) is False
    # Earlier date (clock skew): never reset
    assert await storage.reset_usage_if_stale("t1", date(2025, 3, 9)) is False

    results = await asyncio.gather(
        *(storage.reset_usage_if_stale("t1", date(2025, 3, 11)) for _ in range(10))
    )
    assert results.count(True) == 1

    plan = await storage.get_tenant_plan("t1")
    assert plan.tokens_used_today == 0
    assert plan.tokens_used_this_month == 500
    assert plan.last_reset_date == date(2025, 3, 11)


@pytest.mark.asyncio
async def test_reset_usage_monthly_boundary(storage):
    await storage.create_tenant_plan_if_absent(
        TenantPlan(
            tenant_id="t1",
            tokens_used_this_month=9000,
            tokens_used_today=100,
            last_reset_date=date(2025, 3, 31),
        )
    )

    assert await storage.reset_usage_if_stale("t1", date(2025, 4, 1)) is True

    plan = await storage.get_tenant_plan("t1")
    assert plan.tokens_used_this_month == 0
    assert plan.tokens_used_today == 0


@pytest.mark.asyncio
async def test_increment_usage_concurrent(storage):
    await storage.create_tenant_plan_if_absent(TenantPlan(tenant_id="t1", last_reset_date=date.today()))

    await asyncio.gather(*(storage.increment_usage("t1", 10) for _ in range(25)))

    plan = await storage.get_tenant_plan("t1")
    assert plan.tokens_used_this_month == 250
    assert plan.tokens_used_today == 250


@pytest.mark.asyncio
async def test_save_plan_keeps_counters(storage):
    """Plan edits never overwrite the atomically managed counters."""
    await storage.create_tenant_plan_if_absent(
        TenantPlan(tenant_id="t1", tokens_used_this_month=42, tokens_used_today=7)
    )

    await storage.save_tenant_plan(TenantPlan(tenant_id="t1", custom_monthly_limit=50000))

    plan = await storage.get_tenant_plan("t1")
    assert plan.custom_monthly_limit == 50000
    assert plan.tokens_used_this_month == 42
    assert plan.tokens_used_today == 7


@pytest.mark.asyncio
async def test_pattern_dedup_ignores_keyword_order(storage):
    entry = PatternEntry(
        id="p1",
        tenant_id="t1",
        intent="price_inquiry",
        trigger_keywords=["preço", "plano"],
        pattern_template="price_inquiry",
        response_template="R$ 99",
    )
    await storage.insert_pattern(entry)

    found = await storage.find_pattern("t1", "price_inquiry", ["plano", "preço"])
    assert found is not None
    assert found.id == "p1"

    with pytest.raises(DuplicateRecordError):
        await storage.insert_pattern(
            entry.model_copy(update={"id": "p2", "trigger_keywords": ["plano", "preço"]})
        )


@pytest.mark.asyncio
async def test_merge_conversation_context(storage):
    """Topics are a capped union; sentiment is kept unless a new one is given."""
    await storage.merge_conversation_context("t1", "c1", ["preço", "plano"], sentiment="positive")
    ctx = await storage.merge_conversation_context("t1", "c1", ["plano", "entrega"], max_topics=3)

    assert ctx.topics == ["preço", "plano", "entrega"]
    assert ctx.message_count == 2
    assert ctx.sentiment == "positive"

    ctx = await storage.merge_conversation_context("t1", "c1", ["frete"], max_topics=3, sentiment="negative")
    assert ctx.topics == ["preço", "plano", "entrega"]
    assert ctx.sentiment == "negative"


@pytest.mark.asyncio
async def test_health_check(storage):
    assert await storage.health_check() is True
