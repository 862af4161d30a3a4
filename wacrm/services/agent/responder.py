"""Chat responder - cheapest-first reply generation for one customer message."""

import hashlib
from dataclasses import dataclass, field
from typing import Any

import structlog

from wacrm.cache.base import CacheBackend
from wacrm.core.config import settings
from wacrm.models import AIAgent, AIFeature, EnrichedContext
from wacrm.services.learning.store import LearningStore
from wacrm.services.llm import prompts
from wacrm.services.llm.gateway import AIGateway, is_simple_message
from wacrm.services.quota.enforcer import QuotaEnforcer

logger = structlog.get_logger()

SIMPLE_REPLY_MAX_TOKENS = 100
CHAT_REPLY_MAX_TOKENS = 150
CHAT_TEMPERATURE = 0.7


class ReplySource:
    QUICK_RESPONSE = "quick_response"
    LEARNED_FAQ = "learned_faq"
    CACHE = "cache"
    PROVIDER = "provider"


@dataclass
class ChatReply:
    """Outcome of reply generation."""

    success: bool
    response: str | None = None
    source: str = ReplySource.PROVIDER
    message: str | None = None
    reason: str | None = None
    confidence: float | None = None
    model_used: str | None = None
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def tokens_saved(self) -> bool:
        return self.success and self.source != ReplySource.PROVIDER

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "source": self.source}
        for key in ("response", "message", "reason", "confidence", "model_used"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.usage:
            data["usage"] = self.usage
        if self.tokens_saved:
            data["tokens_saved"] = True
        return data


def response_cache_key(tenant_id: str, message: str) -> str:
    digest = hashlib.md5(message.strip().lower().encode("utf-8")).hexdigest()
    return f"ai_response:{tenant_id}:{digest}"


class ChatResponder:
    """Generates a reply, trying each source in strict priority order.

    1. Canned reply for conversational fillers (no provider call)
    2. Learned FAQ with helpfulness at or above the direct threshold
    3. Tenant response cache (bounded message length, TTL)
    4. Provider call through the gateway (quota and rate gated)

    The first source that answers wins; later ones are never attempted.
    """

    def __init__(
        self,
        gateway: AIGateway,
        learning: LearningStore,
        cache: CacheBackend,
        quota: QuotaEnforcer,
    ) -> None:
        self.gateway = gateway
        self.learning = learning
        self.cache = cache
        self.quota = quota

    @staticmethod
    def _is_cacheable_message(message: str) -> bool:
        return settings.response_cache_min_length <= len(message) <= settings.response_cache_max_length

    async def generate(
        self,
        tenant_id: str,
        message: str,
        agent: AIAgent | None = None,
        conversation_id: str | None = None,
    ) -> ChatReply:
        """Produce a reply for ``message``.

        Args:
            tenant_id: Tenant being answered
            message: Customer text (possibly several combined messages)
            agent: Agent whose instructions and documents shape the prompt
            conversation_id: Conversation for learned topic context

        Returns:
            ChatReply; on failure ``message`` holds the user-presentable reason
        """
        quick = prompts.quick_response(message)
        if quick:
            logger.debug("Using quick response (no API call)", message=message[:30])
            return ChatReply(success=True, response=quick, source=ReplySource.QUICK_RESPONSE)

        faq = await self.learning.find_similar_faq(tenant_id, message)
        if faq is not None and faq.helpfulness_score >= settings.faq_direct_threshold:
            logger.info("Using learned FAQ response", tenant_id=tenant_id, question=message[:50])
            return ChatReply(
                success=True,
                response=faq.answer,
                source=ReplySource.LEARNED_FAQ,
                confidence=faq.helpfulness_score,
            )

        cache_key = response_cache_key(tenant_id, message)
        cacheable = self._is_cacheable_message(message)
        if cacheable:
            cached = await self.cache.get(cache_key)
            if cached:
                await self.quota.record_usage(
                    tenant_id,
                    AIFeature.CHAT,
                    prompt_tokens=0,
                    completion_tokens=0,
                    model=self.gateway.model,
                    cache_hit=True,
                )
                return ChatReply(success=True, response=cached, source=ReplySource.CACHE)

        learned = EnrichedContext()
        if prompts.needs_enriched_context(message):
            learned = await self.learning.build_enriched_context(
                tenant_id, message, conversation_id, include_faq=False
            )
        if faq is not None and faq.helpfulness_score >= settings.faq_hint_threshold:
            learned.faq = faq

        system_prompt = prompts.build_system_prompt(agent.instructions if agent else None)
        user_prompt = prompts.build_chat_prompt(
            message,
            learned,
            knowledge_base=agent.knowledge_base() if agent else None,
            faq_hint_threshold=settings.faq_hint_threshold,
            faq_direct_threshold=settings.faq_direct_threshold,
        )
        max_tokens = SIMPLE_REPLY_MAX_TOKENS if is_simple_message(message) else CHAT_REPLY_MAX_TOKENS

        result = await self.gateway.generate(
            tenant_id,
            AIFeature.CHAT,
            user_prompt,
            system_prompt,
            temperature=CHAT_TEMPERATURE,
            max_tokens=max_tokens,
        )
        if not result.success:
            return ChatReply(
                success=False,
                message=result.message,
                reason=result.reason,
                model_used=result.model_used,
            )

        if cacheable and len(result.response) < settings.response_cache_max_response:
            await self.cache.set(cache_key, result.response, ttl=settings.response_cache_ttl_seconds)

        return ChatReply(
            success=True,
            response=result.response,
            source=ReplySource.PROVIDER,
            model_used=result.model_used,
            usage=result.usage,
        )
