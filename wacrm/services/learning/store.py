"""Learning store - tenant-scoped memories, FAQ cache, patterns and conversation context."""

import uuid
from typing import Any

import structlog

from wacrm.core.config import settings
from wacrm.core.exceptions import DuplicateRecordError
from wacrm.models import (
    ConversationContext,
    EnrichedContext,
    FAQEntry,
    FeedbackRating,
    FeedbackRecord,
    MemoryEntry,
    MemoryType,
    PatternEntry,
)
from wacrm.services.learning.text import (
    extract_keywords,
    extract_topics,
    hash_question,
    is_generic_fallback,
)
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()

MIN_RECALL_CONFIDENCE = 0.3
MIN_FUZZY_HELPFULNESS = 0.5
MIN_PATTERN_SUCCESS = 0.5
ENRICHED_FAQ_THRESHOLD = 0.7
MIN_FAQ_QUESTION_LENGTH = 8
CORRECTION_CONFIDENCE = 0.8
MAX_CONTEXT_TOPICS = 10


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0


class LearningStore:
    """Keyword-indexed knowledge learned from past interactions.

    Handles:
    - Memories (upsert by key/type, keyword recall, confidence boosts)
    - FAQ cache (exact hash hit first, then keyword fuzzy match)
    - Patterns (intent + keyword set with a running success rate)
    - Feedback (immediate effects plus deferred processing)
    - Conversation context (merged topics and counters)

    Scores only ever go up on positive signals and are capped at 1.0.
    """

    def __init__(self, storage: StorageBackend) -> None:
        self.storage = storage

    # ==================== Memory ====================

    async def remember(
        self,
        tenant_id: str,
        key: str,
        value: str,
        memory_type: MemoryType = MemoryType.FACT,
        category: str | None = None,
        context: str | None = None,
        source: str = "conversation",
        source_id: str | None = None,
        confidence: float = 0.5,
    ) -> MemoryEntry:
        """Store or update a memory keyed by (tenant, key, type)."""
        return await self.storage.upsert_memory(
            MemoryEntry(
                id=str(uuid.uuid4()),
                tenant_id=tenant_id,
                key=key,
                value=value,
                type=memory_type,
                category=category,
                context=context,
                source=source,
                source_id=source_id,
                confidence_score=confidence,
            )
        )

    async def recall(self, tenant_id: str, query: str, limit: int = 5) -> list[MemoryEntry]:
        """Find memories matching any keyword of ``query`` and count the use."""
        keywords = extract_keywords(query)
        if not keywords:
            return []

        memories = await self.storage.search_memories(
            tenant_id, keywords, min_confidence=MIN_RECALL_CONFIDENCE, limit=limit
        )
        if memories:
            await self.storage.touch_memories(tenant_id, [m.id for m in memories])
        return memories

    async def _boost_related_memories(self, tenant_id: str, message: str) -> int:
        keywords = extract_keywords(message)
        if not keywords:
            return 0
        return await self.storage.boost_memories(tenant_id, keywords, settings.memory_confidence_boost)

    async def _learn_from_correction(self, tenant_id: str, message: str, correction: str) -> None:
        await self.remember(
            tenant_id,
            key=message,
            value=correction,
            memory_type=MemoryType.CORRECTION,
            source="feedback",
            confidence=CORRECTION_CONFIDENCE,
        )

    # ==================== Feedback ====================

    async def record_feedback(
        self,
        tenant_id: str,
        user_message: str,
        ai_response: str,
        rating: FeedbackRating,
        feature: str = "chat",
        user_id: str | None = None,
        correction: str | None = None,
        comment: str | None = None,
        conversation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> FeedbackRecord:
        """Store feedback on an AI response.

        Positive feedback boosts related memories right away; negative feedback
        with a correction is learned as a high-confidence correction memory.
        """
        record = await self.storage.save_feedback(
            FeedbackRecord(
                id=str(uuid.uuid4()),
                tenant_id=tenant_id,
                user_message=user_message,
                ai_response=ai_response,
                rating=rating,
                feature=feature,
                user_id=user_id,
                correction=correction,
                comment=comment,
                conversation_id=conversation_id,
                metadata=metadata or {},
            )
        )

        if rating == FeedbackRating.POSITIVE:
            await self._boost_related_memories(tenant_id, user_message)
        if rating == FeedbackRating.NEGATIVE and correction:
            await self._learn_from_correction(tenant_id, user_message, correction)

        return record

    async def process_pending_feedback(self, tenant_id: str, limit: int = 100) -> int:
        """Promote unprocessed feedback into FAQ entries and corrections.

        Returns:
            Number of feedback records processed
        """
        pending = await self.storage.list_feedback(tenant_id, processed=False, limit=limit)
        processed = 0

        for item in pending:
            try:
                if item.rating == FeedbackRating.POSITIVE:
                    await self.create_or_update_faq(
                        tenant_id, item.user_message, item.ai_response, assume_helpful=True
                    )
                    await self._boost_related_memories(tenant_id, item.user_message)
                if item.rating == FeedbackRating.NEGATIVE and item.correction:
                    await self._learn_from_correction(tenant_id, item.user_message, item.correction)

                await self.storage.mark_feedback_processed(tenant_id, item.id)
                processed += 1
            except Exception as e:
                logger.error("Error processing AI feedback", feedback_id=item.id, error=str(e))

        return processed

    # ==================== FAQ ====================

    async def find_similar_faq(self, tenant_id: str, question: str) -> FAQEntry | None:
        """Exact normalized-hash hit first (counted as asked), then keyword match."""
        exact = await self.storage.get_faq_by_hash(tenant_id, hash_question(question))
        if exact is not None:
            updated = await self.storage.increment_faq_asked(tenant_id, exact.id)
            return updated or exact

        keywords = extract_keywords(question)
        if not keywords:
            return None

        similar = await self.storage.search_faqs(
            tenant_id, keywords, min_helpfulness=MIN_FUZZY_HELPFULNESS, limit=1
        )
        return similar[0] if similar else None

    async def create_or_update_faq(
        self,
        tenant_id: str,
        question: str,
        answer: str,
        assume_helpful: bool = False,
    ) -> FAQEntry | None:
        """Cache a question/answer pair.

        New entries start unhelpful unless ``assume_helpful``. Generic fallback
        answers and very short questions are never cached.
        """
        if is_generic_fallback(answer):
            return None
        if len(question.strip()) < MIN_FAQ_QUESTION_LENGTH:
            return None

        question_hash = hash_question(question)
        existing = await self.storage.get_faq_by_hash(tenant_id, question_hash)
        if existing is None:
            try:
                return await self.storage.insert_faq(
                    FAQEntry(
                        id=str(uuid.uuid4()),
                        tenant_id=tenant_id,
                        question=question,
                        question_hash=question_hash,
                        answer=answer,
                        times_asked=1,
                        times_helpful=1 if assume_helpful else 0,
                        helpfulness_score=1.0 if assume_helpful else 0.1,
                        last_asked_at=None,
                    )
                )
            except DuplicateRecordError:
                existing = await self.storage.get_faq_by_hash(tenant_id, question_hash)
                if existing is None:
                    raise

        if assume_helpful:
            return await self.storage.mark_faq_helpful(tenant_id, existing.id)
        return existing

    # ==================== Patterns ====================

    async def learn_pattern(
        self,
        tenant_id: str,
        intent: str,
        trigger_keywords: list[str],
        response_template: str,
        was_successful: bool = True,
    ) -> PatternEntry | None:
        """Record one observation of an intent/keyword-set pattern."""
        existing = await self.storage.find_pattern(tenant_id, intent, trigger_keywords)
        if existing is None:
            try:
                return await self.storage.insert_pattern(
                    PatternEntry(
                        id=str(uuid.uuid4()),
                        tenant_id=tenant_id,
                        intent=intent,
                        trigger_keywords=trigger_keywords,
                        pattern_template=intent,
                        response_template=response_template,
                        times_used=1,
                        times_successful=1 if was_successful else 0,
                        success_rate=1.0 if was_successful else 0.0,
                    )
                )
            except DuplicateRecordError:
                existing = await self.storage.find_pattern(tenant_id, intent, trigger_keywords)
                if existing is None:
                    raise

        return await self.storage.record_pattern_use(tenant_id, existing.id, was_successful)

    async def find_matching_patterns(
        self,
        tenant_id: str,
        message: str,
        limit: int = 3,
    ) -> list[PatternEntry]:
        keywords = extract_keywords(message)
        if not keywords:
            return []
        return await self.storage.search_patterns(
            tenant_id, keywords, min_success_rate=MIN_PATTERN_SUCCESS, limit=limit
        )

    # ==================== Context ====================

    async def build_enriched_context(
        self,
        tenant_id: str,
        message: str,
        conversation_id: str | None = None,
        include_faq: bool = True,
    ) -> EnrichedContext:
        """Gather memories, a confident FAQ, patterns and conversation context for a prompt.

        Pass ``include_faq=False`` when the caller already looked the FAQ up, so
        an exact hit is not counted as asked twice.
        """
        context = EnrichedContext(memories=await self.recall(tenant_id, message, limit=5))

        if include_faq:
            faq = await self.find_similar_faq(tenant_id, message)
            if faq is not None and faq.helpfulness_score >= ENRICHED_FAQ_THRESHOLD:
                context.faq = faq

        context.patterns = await self.find_matching_patterns(tenant_id, message, limit=2)

        if conversation_id:
            context.conversation_context = await self.storage.get_conversation_context(
                tenant_id, conversation_id
            )

        return context

    async def update_conversation_context(
        self,
        tenant_id: str,
        conversation_id: str,
        message: str,
        sentiment: str | None = None,
    ) -> ConversationContext:
        """Merge this exchange's topics into the conversation context."""
        return await self.storage.merge_conversation_context(
            tenant_id,
            conversation_id,
            extract_topics(message),
            max_topics=MAX_CONTEXT_TOPICS,
            sentiment=sentiment,
        )

    # ==================== Statistics ====================

    async def get_stats(self, tenant_id: str) -> dict[str, Any]:
        memories = await self.storage.list_memories(tenant_id)
        feedback = await self.storage.list_feedback(tenant_id, limit=10_000)
        faqs = await self.storage.list_faqs(tenant_id, limit=10_000)
        patterns = await self.storage.list_patterns(tenant_id)

        return {
            "memories": {
                "total": len(memories),
                "active": sum(1 for m in memories if m.is_active),
                "verified": sum(1 for m in memories if m.is_verified),
                "avg_confidence": _mean([m.confidence_score for m in memories]),
            },
            "feedback": {
                "total": len(feedback),
                "positive": sum(1 for f in feedback if f.rating == FeedbackRating.POSITIVE),
                "negative": sum(1 for f in feedback if f.rating == FeedbackRating.NEGATIVE),
                "pending": sum(1 for f in feedback if not f.processed),
            },
            "faq": {
                "total": len(faqs),
                "verified": sum(1 for f in faqs if f.is_verified),
                "avg_helpfulness": _mean([f.helpfulness_score for f in faqs]),
            },
            "patterns": {
                "total": len(patterns),
                "active": sum(1 for p in patterns if p.is_active),
                "avg_success_rate": _mean([p.success_rate for p in patterns]),
            },
        }
