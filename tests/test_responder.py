"""Tests for cheapest-first reply generation."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from wacrm.models import AIAgent, CustomInstructions, FAQEntry
from wacrm.services.agent import ChatResponder, ReplySource
from wacrm.services.agent.responder import response_cache_key
from wacrm.services.learning.text import hash_question

TENANT_ID = "test-tenant"


def completion(text: str):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(prompt_tokens=30, completion_tokens=10),
    )


@pytest.fixture
def acompletion():
    with patch("wacrm.services.llm.gateway.litellm.acompletion", new_callable=AsyncMock) as mock:
        yield mock


@pytest.fixture
def responder(gateway, learning, cache, quota):
    return ChatResponder(gateway, learning, cache, quota)


@pytest.mark.asyncio
async def test_filler_gets_quick_reply_without_tokens(responder, acompletion, storage, tenant_plan):
    """"oi" is answered from the canned replies; no provider call, no usage."""
    reply = await responder.generate(TENANT_ID, "oi")

    assert reply.success
    assert reply.source == ReplySource.QUICK_RESPONSE
    assert reply.response
    assert reply.tokens_saved
    acompletion.assert_not_awaited()

    plan = await storage.get_tenant_plan(TENANT_ID)
    assert plan.tokens_used_this_month == 0
    assert await storage.list_token_usage(TENANT_ID) == []


@pytest.mark.asyncio
async def test_helpful_faq_answers_directly(responder, storage, acompletion, tenant_plan):
    """An FAQ with helpfulness 0.8 answers without a provider call and counts the ask."""
    question = "Qual o horário de funcionamento?"
    await storage.insert_faq(
        FAQEntry(
            id="faq-1",
            tenant_id=TENANT_ID,
            question=question,
            question_hash=hash_question(question),
            answer="Das 9h às 18h, de segunda a sexta.",
            times_asked=5,
            times_helpful=4,
            helpfulness_score=0.8,
        )
    )

    reply = await responder.generate(TENANT_ID, question)

    assert reply.source == ReplySource.LEARNED_FAQ
    assert reply.response == "Das 9h às 18h, de segunda a sexta."
    assert reply.confidence == pytest.approx(0.8)
    acompletion.assert_not_awaited()

    stored = await storage.get_faq_by_hash(TENANT_ID, hash_question(question))
    assert stored.times_asked == 6


@pytest.mark.asyncio
async def test_provider_reply_is_cached(responder, acompletion, cache, storage, tenant_plan):
    acompletion.return_value = completion("Aceitamos pix, boleto e cartão.")

    first = await responder.generate(TENANT_ID, "Quais formas de pagamento?")
    second = await responder.generate(TENANT_ID, "quais formas de pagamento?")

    assert first.source == ReplySource.PROVIDER
    assert second.source == ReplySource.CACHE
    assert second.response == "Aceitamos pix, boleto e cartão."
    assert acompletion.await_count == 1
    assert await cache.get(response_cache_key(TENANT_ID, "Quais formas de pagamento?")) is not None

    usage = await storage.list_token_usage(TENANT_ID)
    assert [u.cache_hit for u in usage] == [False, True]
    assert usage[1].total_tokens == 0


@pytest.mark.asyncio
async def test_long_messages_are_not_cached(responder, acompletion, cache, tenant_plan):
    acompletion.return_value = completion("Resposta detalhada.")
    message = "Gostaria de entender " + "com detalhes " * 15 + "como funciona o plano?"

    await responder.generate(TENANT_ID, message)

    assert await cache.get(response_cache_key(TENANT_ID, message)) is None


@pytest.mark.asyncio
async def test_agent_instructions_shape_prompt(responder, acompletion, tenant_plan):
    acompletion.return_value = completion("Olá! Sou a assistente da Loja X.")
    agent = AIAgent(
        id="a1",
        tenant_id=TENANT_ID,
        name="Loja X",
        instructions=CustomInstructions(custom_instructions="Você atende a Loja X."),
    )

    await responder.generate(TENANT_ID, "Vocês vendem tênis de corrida?", agent)

    system = acompletion.await_args.kwargs["messages"][0]
    assert system["role"] == "system"
    assert "Loja X" in system["content"]


@pytest.mark.asyncio
async def test_quota_decline_is_reported(responder, acompletion, storage, tenant_plan):
    await storage.increment_usage(TENANT_ID, 10000)

    reply = await responder.generate(TENANT_ID, "Quais formas de pagamento?")

    assert not reply.success
    assert reply.reason == "monthly_limit_exceeded"
    acompletion.assert_not_awaited()
