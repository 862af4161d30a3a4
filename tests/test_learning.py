"""Tests for the learning store and the post-reply learning queue."""

import pytest

from wacrm.models import FeedbackRating, MemoryType
from wacrm.services.learning import LearningJob, LearningQueue
from wacrm.services.learning.text import (
    detect_intent,
    extract_keywords,
    hash_question,
    is_generic_fallback,
)

TENANT_ID = "test-tenant"


def _job(question: str, answer: str = "O plano mensal custa R$ 99.") -> LearningJob:
    return LearningJob(
        tenant_id=TENANT_ID,
        session_id="session-1",
        conversation_id="conv-1",
        agent_id="agent-1",
        question=question,
        answer=answer,
    )


# ==================== Text ====================


def test_hash_ignores_case_and_punctuation():
    assert hash_question("Qual o horário?") == hash_question("  qual o   HORÁRIO ")


def test_extract_keywords_filters_stop_words():
    assert extract_keywords("Qual o preço do plano para empresas?") == ["preço", "plano", "empresas"]


def test_detect_intent_first_match_wins():
    assert detect_intent("Quanto custa a entrega?") == "price_inquiry"
    assert detect_intent("Qual o prazo de entrega?") == "delivery"
    assert detect_intent("xyz") == "general"


def test_generic_fallback_detection():
    assert is_generic_fallback("Desculpe, não entendi muito bem. Pode repetir?")
    assert not is_generic_fallback("Nosso horário é das 9h às 18h.")


# ==================== FAQ ====================


@pytest.mark.asyncio
async def test_generic_fallback_never_cached(learning, storage):
    faq = await learning.create_or_update_faq(
        TENANT_ID, "Vocês fazem entrega no sábado?", "Estou aqui para ajudar! O que você procura?"
    )

    assert faq is None
    assert await storage.list_faqs(TENANT_ID) == []


@pytest.mark.asyncio
async def test_new_faq_starts_unhelpful(learning):
    faq = await learning.create_or_update_faq(TENANT_ID, "Vocês fazem entrega no sábado?", "Sim, até 14h.")

    assert faq.times_asked == 1
    assert faq.times_helpful == 0
    assert faq.helpfulness_score == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_exact_faq_hit_counts_as_asked(learning):
    await learning.create_or_update_faq(
        TENANT_ID, "Qual o horário de funcionamento?", "Das 9h às 18h.", assume_helpful=True
    )

    faq = await learning.find_similar_faq(TENANT_ID, "qual o HORÁRIO de funcionamento")

    assert faq is not None
    assert faq.answer == "Das 9h às 18h."
    assert faq.times_asked == 2


@pytest.mark.asyncio
async def test_exact_hit_preferred_over_fuzzy(learning):
    await learning.create_or_update_faq(
        TENANT_ID, "Funcionamento aos sábados e domingos?", "Só aos sábados.", assume_helpful=True
    )
    await learning.create_or_update_faq(
        TENANT_ID, "Qual o horário de funcionamento?", "Das 9h às 18h."
    )

    # Unhelpful entry, but it is an exact match
    faq = await learning.find_similar_faq(TENANT_ID, "Qual o horário de funcionamento?")

    assert faq.answer == "Das 9h às 18h."


@pytest.mark.asyncio
async def test_fuzzy_match_requires_helpfulness(learning):
    await learning.create_or_update_faq(TENANT_ID, "Vocês aceitam pagamento via pix?", "Sim, aceitamos pix.")

    assert await learning.find_similar_faq(TENANT_ID, "posso pagar com pix amanhã") is None

    await learning.create_or_update_faq(
        TENANT_ID, "Vocês aceitam pagamento via pix?", "Sim, aceitamos pix.", assume_helpful=True
    )
    faq = await learning.find_similar_faq(TENANT_ID, "posso pagar com pix amanhã")
    assert faq is not None
    assert faq.answer == "Sim, aceitamos pix."


# ==================== Memories & Feedback ====================


@pytest.mark.asyncio
async def test_recall_counts_usage(learning, storage):
    await learning.remember(TENANT_ID, "frete grátis", "Frete grátis acima de R$ 200", confidence=0.6)

    memories = await learning.recall(TENANT_ID, "Tem frete grátis?")

    assert [m.key for m in memories] == ["frete grátis"]
    stored = await storage.list_memories(TENANT_ID)
    assert stored[0].usage_count == 1


@pytest.mark.asyncio
async def test_positive_feedback_boosts_memories(learning, storage):
    await learning.remember(TENANT_ID, "garantia", "Garantia de 12 meses", confidence=0.5)

    await learning.record_feedback(
        TENANT_ID, "Qual a garantia?", "12 meses.", FeedbackRating.POSITIVE
    )

    memory = (await storage.list_memories(TENANT_ID))[0]
    assert memory.confidence_score == pytest.approx(0.55)
    assert memory.success_count == 1


@pytest.mark.asyncio
async def test_negative_feedback_with_correction(learning, storage):
    await learning.record_feedback(
        TENANT_ID,
        "Qual a garantia?",
        "6 meses.",
        FeedbackRating.NEGATIVE,
        correction="A garantia é de 12 meses.",
    )

    memories = await storage.list_memories(TENANT_ID)
    assert len(memories) == 1
    assert memories[0].type == MemoryType.CORRECTION
    assert memories[0].confidence_score == pytest.approx(0.8)


@pytest.mark.asyncio
async def test_process_pending_feedback_creates_faq(learning, storage):
    await learning.record_feedback(
        TENANT_ID, "Vocês entregam em Campinas?", "Sim, entregamos.", FeedbackRating.POSITIVE
    )

    assert await learning.process_pending_feedback(TENANT_ID) == 1
    assert await learning.process_pending_feedback(TENANT_ID) == 0

    faqs = await storage.list_faqs(TENANT_ID)
    assert len(faqs) == 1
    assert faqs[0].helpfulness_score == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_pattern_success_rate(learning):
    await learning.learn_pattern(TENANT_ID, "delivery", ["prazo", "entrega"], "3 dias úteis")
    pattern = await learning.learn_pattern(
        TENANT_ID, "delivery", ["entrega", "prazo"], "3 dias úteis", was_successful=False
    )

    assert pattern.times_used == 2
    assert pattern.times_successful == 1
    assert pattern.success_rate == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_enriched_context(learning, storage):
    await learning.remember(TENANT_ID, "entrega", "Entregamos em todo o Brasil", confidence=0.9)
    await learning.create_or_update_faq(
        TENANT_ID, "Qual o prazo de entrega?", "Até 5 dias úteis.", assume_helpful=True
    )
    await learning.update_conversation_context(TENANT_ID, "conv-1", "Quero saber sobre entrega")

    context = await learning.build_enriched_context(TENANT_ID, "Qual o prazo de entrega?", "conv-1")

    assert context.memories[0].key == "entrega"
    assert context.faq is not None
    assert context.conversation_context.topics == ["quero", "saber", "sobre", "entrega"]

    skipped = await learning.build_enriched_context(
        TENANT_ID, "Qual o prazo de entrega?", include_faq=False
    )
    assert skipped.faq is None


# ==================== Learning Queue ====================


@pytest.mark.asyncio
async def test_learning_job_records_interaction(learning, storage):
    queue = LearningQueue(learning)
    assert queue.enqueue(_job("Quanto custa o plano mensal de vocês?"))

    assert await queue.drain() == 1

    faqs = await storage.list_faqs(TENANT_ID)
    assert [f.question for f in faqs] == ["Quanto custa o plano mensal de vocês?"]
    assert faqs[0].helpfulness_score == pytest.approx(0.1)

    patterns = await storage.list_patterns(TENANT_ID)
    assert patterns[0].intent == "price_inquiry"

    context = await storage.get_conversation_context(TENANT_ID, "conv-1")
    assert context.message_count == 1

    feedback = await storage.list_feedback(TENANT_ID)
    assert feedback[0].rating == FeedbackRating.NEUTRAL
    assert feedback[0].feature == "whatsapp_auto"
    assert feedback[0].metadata["agent_id"] == "agent-1"


@pytest.mark.asyncio
async def test_learning_job_skips_faq_for_short_or_general(learning, storage):
    queue = LearningQueue(learning)
    queue.enqueue(_job("Preço?"))
    queue.enqueue(_job("Gostaria de conversar com alguém"))

    await queue.drain()

    assert await storage.list_faqs(TENANT_ID) == []
    assert len(await storage.list_feedback(TENANT_ID)) == 2


@pytest.mark.asyncio
async def test_full_queue_drops_job(learning):
    queue = LearningQueue(learning, maxsize=1)

    assert queue.enqueue(_job("Quanto custa o plano mensal de vocês?")) is True
    assert queue.enqueue(_job("Qual o prazo de entrega para Campinas?")) is False
    assert queue.pending == 1


@pytest.mark.asyncio
async def test_worker_processes_in_background(learning, storage):
    queue = LearningQueue(learning)
    queue.start()
    try:
        queue.enqueue(_job("Quanto custa o plano mensal de vocês?"))
        await queue.join()
    finally:
        await queue.stop()

    assert len(await storage.list_feedback(TENANT_ID)) == 1
