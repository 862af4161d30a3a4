"""In-memory storage backend for development and testing.

Records are stored as copies so callers cannot mutate stored state without
going through the backend, mirroring a real database.
"""

import asyncio
from datetime import date, datetime

from wacrm.core.exceptions import DuplicateRecordError
from wacrm.core.timeutils import utcnow
from wacrm.models import (
    AIAgent,
    Conversation,
    ConversationContext,
    FAQEntry,
    FeedbackRecord,
    Lifecycle,
    MemoryEntry,
    Message,
    MessageDirection,
    PatternEntry,
    Session,
    TenantPlan,
    TokenUsageRecord,
)
from wacrm.storage.base import StorageBackend, matches_any_keyword, pattern_key


class InMemoryStorage(StorageBackend):
    """In-memory storage implementation for development."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._conversations: dict[str, Conversation] = {}
        self._conversation_keys: dict[tuple[str, str], str] = {}
        self._messages: dict[str, Message] = {}
        self._message_keys: dict[tuple[str, str], str] = {}
        self._agents: dict[str, AIAgent] = {}
        self._plans: dict[str, TenantPlan] = {}
        self._usage: list[TokenUsageRecord] = []
        self._memories: dict[tuple[str, str, str], MemoryEntry] = {}
        self._faqs: dict[tuple[str, str], FAQEntry] = {}
        self._patterns: dict[tuple[str, str, tuple[str, ...]], PatternEntry] = {}
        self._feedback: dict[str, FeedbackRecord] = {}
        self._contexts: dict[tuple[str, str], ConversationContext] = {}
        self._lock = asyncio.Lock()

    # ==================== Session Operations ====================

    async def get_session(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def save_session(self, session: Session) -> Session:
        session.updated_at = utcnow()
        self._sessions[session.id] = session.model_copy(deep=True)
        return session

    async def list_sessions(self, tenant_id: str, include_removed: bool = False) -> list[Session]:
        sessions = [s for s in self._sessions.values() if s.tenant_id == tenant_id]
        if not include_removed:
            sessions = [s for s in sessions if not s.is_removed]
        sessions.sort(key=lambda s: s.created_at)
        return [s.model_copy(deep=True) for s in sessions]

    # ==================== Conversation Operations ====================

    async def get_conversation(self, tenant_id: str, conversation_id: str) -> Conversation | None:
        conv = self._conversations.get(conversation_id)
        if conv is None or conv.tenant_id != tenant_id:
            return None
        return conv.model_copy(deep=True)

    async def find_conversation_by_jid(
        self,
        tenant_id: str,
        session_id: str,
        remote_jid: str,
    ) -> Conversation | None:
        conv_id = self._conversation_keys.get((session_id, remote_jid))
        if conv_id is None:
            return None
        return await self.get_conversation(tenant_id, conv_id)

    async def find_conversation_by_lid(
        self,
        tenant_id: str,
        session_id: str,
        lid_jid: str,
    ) -> Conversation | None:
        for conv in self._conversations.values():
            if conv.tenant_id == tenant_id and conv.session_id == session_id and conv.lid_jid == lid_jid:
                return conv.model_copy(deep=True)
        return None

    async def list_conversations(
        self,
        tenant_id: str,
        session_id: str,
        is_group: bool | None = None,
        include_removed: bool = True,
    ) -> list[Conversation]:
        convs = [
            c
            for c in self._conversations.values()
            if c.tenant_id == tenant_id and c.session_id == session_id
        ]
        if is_group is not None:
            convs = [c for c in convs if c.is_group == is_group]
        if not include_removed:
            convs = [c for c in convs if not c.is_removed]
        return [c.model_copy(deep=True) for c in convs]

    async def insert_conversation(self, conversation: Conversation) -> Conversation:
        async with self._lock:
            key = (conversation.session_id, conversation.remote_jid)
            if key in self._conversation_keys:
                raise DuplicateRecordError("conversation", f"{key[0]}:{key[1]}")
            self._conversation_keys[key] = conversation.id
            self._conversations[conversation.id] = conversation.model_copy(deep=True)
        return conversation

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        async with self._lock:
            current = self._conversations.get(conversation.id)
            new_key = (conversation.session_id, conversation.remote_jid)
            owner = self._conversation_keys.get(new_key)
            if owner is not None and owner != conversation.id:
                raise DuplicateRecordError("conversation", f"{new_key[0]}:{new_key[1]}")
            if current is not None:
                self._conversation_keys.pop((current.session_id, current.remote_jid), None)
            self._conversation_keys[new_key] = conversation.id
            conversation.updated_at = utcnow()
            self._conversations[conversation.id] = conversation.model_copy(deep=True)
        return conversation

    async def increment_unread(
        self,
        tenant_id: str,
        conversation_id: str,
        last_message_at: datetime,
    ) -> Conversation | None:
        async with self._lock:
            conv = self._conversations.get(conversation_id)
            if conv is None or conv.tenant_id != tenant_id:
                return None
            conv.unread_count += 1
            conv.last_message_at = last_message_at
            conv.updated_at = utcnow()
            return conv.model_copy(deep=True)

    async def update_conversation_fields(
        self,
        tenant_id: str,
        conversation_id: str,
        fields: dict[str, str],
    ) -> Conversation | None:
        async with self._lock:
            conv = self._conversations.get(conversation_id)
            if conv is None or conv.tenant_id != tenant_id:
                return None
            for name, value in fields.items():
                setattr(conv, name, value)
            conv.updated_at = utcnow()
            return conv.model_copy(deep=True)

    # ==================== Message Operations ====================

    async def insert_message(self, message: Message) -> Message:
        async with self._lock:
            if message.provider_message_id:
                key = (message.tenant_id, message.provider_message_id)
                if key in self._message_keys:
                    raise DuplicateRecordError("message", message.provider_message_id)
                self._message_keys[key] = message.id
            self._messages[message.id] = message.model_copy(deep=True)
        return message

    async def save_message(self, message: Message) -> Message:
        self._messages[message.id] = message.model_copy(deep=True)
        return message

    async def get_message_by_provider_id(
        self,
        tenant_id: str,
        provider_message_id: str,
    ) -> Message | None:
        msg_id = self._message_keys.get((tenant_id, provider_message_id))
        if msg_id is None:
            return None
        return self._messages[msg_id].model_copy(deep=True)

    async def list_messages(
        self,
        tenant_id: str,
        conversation_id: str,
        direction: MessageDirection | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[Message]:
        messages = [
            m
            for m in self._messages.values()
            if m.tenant_id == tenant_id and m.conversation_id == conversation_id
        ]
        if direction is not None:
            messages = [m for m in messages if m.direction == direction]
        if since is not None:
            messages = [m for m in messages if m.created_at >= since]
        messages.sort(key=lambda m: m.created_at)
        return [m.model_copy(deep=True) for m in messages[-limit:]]

    async def count_messages(self, tenant_id: str, conversation_id: str) -> int:
        return sum(
            1
            for m in self._messages.values()
            if m.tenant_id == tenant_id and m.conversation_id == conversation_id
        )

    async def reassign_messages(
        self,
        tenant_id: str,
        from_conversation_id: str,
        to_conversation_id: str,
    ) -> int:
        moved = 0
        async with self._lock:
            for msg in self._messages.values():
                if msg.tenant_id == tenant_id and msg.conversation_id == from_conversation_id:
                    msg.conversation_id = to_conversation_id
                    moved += 1
        return moved

    # ==================== Agent Operations ====================

    async def save_agent(self, agent: AIAgent) -> AIAgent:
        agent.updated_at = utcnow()
        self._agents[agent.id] = agent.model_copy(deep=True)
        return agent

    async def list_agents(self, tenant_id: str) -> list[AIAgent]:
        agents = [a for a in self._agents.values() if a.tenant_id == tenant_id]
        agents.sort(key=lambda a: a.created_at)
        return [a.model_copy(deep=True) for a in agents]

    # ==================== Plan & Usage Operations ====================

    async def get_tenant_plan(self, tenant_id: str) -> TenantPlan | None:
        plan = self._plans.get(tenant_id)
        return plan.model_copy(deep=True) if plan else None

    async def save_tenant_plan(self, tenant_plan: TenantPlan) -> TenantPlan:
        async with self._lock:
            current = self._plans.get(tenant_plan.tenant_id)
            stored = tenant_plan.model_copy(deep=True)
            if current is not None:
                stored.tokens_used_this_month = current.tokens_used_this_month
                stored.tokens_used_today = current.tokens_used_today
                stored.last_reset_date = current.last_reset_date
            self._plans[tenant_plan.tenant_id] = stored
            return stored.model_copy(deep=True)

    async def create_tenant_plan_if_absent(self, tenant_plan: TenantPlan) -> TenantPlan:
        async with self._lock:
            if tenant_plan.tenant_id not in self._plans:
                self._plans[tenant_plan.tenant_id] = tenant_plan.model_copy(deep=True)
            return self._plans[tenant_plan.tenant_id].model_copy(deep=True)

    async def reset_usage_if_stale(self, tenant_id: str, today: date) -> bool:
        async with self._lock:
            plan = self._plans.get(tenant_id)
            if plan is None:
                return False
            last = plan.last_reset_date
            if last is not None and last >= today:
                return False
            plan.tokens_used_today = 0
            if last is None or (last.year, last.month) != (today.year, today.month):
                plan.tokens_used_this_month = 0
            plan.last_reset_date = today
            return True

    async def increment_usage(self, tenant_id: str, tokens: int) -> TenantPlan | None:
        async with self._lock:
            plan = self._plans.get(tenant_id)
            if plan is None:
                return None
            plan.tokens_used_this_month += tokens
            plan.tokens_used_today += tokens
            return plan.model_copy(deep=True)

    async def record_token_usage(self, record: TokenUsageRecord) -> None:
        self._usage.append(record.model_copy(deep=True))

    async def list_token_usage(
        self,
        tenant_id: str,
        since: date | None = None,
    ) -> list[TokenUsageRecord]:
        records = [r for r in self._usage if r.tenant_id == tenant_id]
        if since is not None:
            records = [r for r in records if r.usage_date >= since]
        return [r.model_copy(deep=True) for r in records]

    # ==================== Memory Operations ====================

    async def upsert_memory(self, entry: MemoryEntry) -> MemoryEntry:
        key = (entry.tenant_id, entry.key, entry.type.value)
        async with self._lock:
            current = self._memories.get(key)
            if current is None:
                self._memories[key] = entry.model_copy(deep=True)
                return entry
            current.value = entry.value
            current.category = entry.category
            current.context = entry.context
            current.source = entry.source
            current.source_id = entry.source_id
            current.confidence_score = entry.confidence_score
            current.is_active = True
            current.updated_at = utcnow()
            return current.model_copy(deep=True)

    async def search_memories(
        self,
        tenant_id: str,
        keywords: list[str],
        min_confidence: float = 0.3,
        limit: int = 5,
    ) -> list[MemoryEntry]:
        found = [
            m
            for m in self._memories.values()
            if m.tenant_id == tenant_id
            and m.is_active
            and m.confidence_score >= min_confidence
            and matches_any_keyword((m.key, m.value, m.context), keywords)
        ]
        found.sort(key=lambda m: (m.confidence_score, m.usage_count), reverse=True)
        return [m.model_copy(deep=True) for m in found[:limit]]

    async def touch_memories(self, tenant_id: str, memory_ids: list[str]) -> None:
        ids = set(memory_ids)
        now = utcnow()
        async with self._lock:
            for memory in self._memories.values():
                if memory.tenant_id == tenant_id and memory.id in ids:
                    memory.usage_count += 1
                    memory.last_used_at = now

    async def boost_memories(self, tenant_id: str, keywords: list[str], increment: float) -> int:
        boosted = 0
        async with self._lock:
            for memory in self._memories.values():
                if memory.tenant_id == tenant_id and matches_any_keyword((memory.key,), keywords):
                    memory.success_count += 1
                    memory.confidence_score = min(memory.confidence_score + increment, 1.0)
                    boosted += 1
        return boosted

    async def list_memories(self, tenant_id: str) -> list[MemoryEntry]:
        return [m.model_copy(deep=True) for m in self._memories.values() if m.tenant_id == tenant_id]

    # ==================== FAQ Operations ====================

    def _faq_by_id(self, tenant_id: str, faq_id: str) -> FAQEntry | None:
        for faq in self._faqs.values():
            if faq.tenant_id == tenant_id and faq.id == faq_id:
                return faq
        return None

    async def get_faq_by_hash(self, tenant_id: str, question_hash: str) -> FAQEntry | None:
        faq = self._faqs.get((tenant_id, question_hash))
        return faq.model_copy(deep=True) if faq else None

    async def increment_faq_asked(self, tenant_id: str, faq_id: str) -> FAQEntry | None:
        async with self._lock:
            faq = self._faq_by_id(tenant_id, faq_id)
            if faq is None:
                return None
            faq.times_asked += 1
            faq.last_asked_at = utcnow()
            return faq.model_copy(deep=True)

    async def search_faqs(
        self,
        tenant_id: str,
        keywords: list[str],
        min_helpfulness: float = 0.5,
        limit: int = 1,
    ) -> list[FAQEntry]:
        found = [
            f
            for f in self._faqs.values()
            if f.tenant_id == tenant_id
            and f.helpfulness_score >= min_helpfulness
            and matches_any_keyword((f.question,), keywords)
        ]
        found.sort(key=lambda f: (f.helpfulness_score, f.times_asked), reverse=True)
        return [f.model_copy(deep=True) for f in found[:limit]]

    async def insert_faq(self, entry: FAQEntry) -> FAQEntry:
        key = (entry.tenant_id, entry.question_hash)
        async with self._lock:
            if key in self._faqs:
                raise DuplicateRecordError("faq", entry.question_hash)
            self._faqs[key] = entry.model_copy(deep=True)
        return entry

    async def mark_faq_helpful(self, tenant_id: str, faq_id: str) -> FAQEntry | None:
        async with self._lock:
            faq = self._faq_by_id(tenant_id, faq_id)
            if faq is None:
                return None
            faq.times_helpful += 1
            faq.helpfulness_score = min(faq.times_helpful / max(faq.times_asked, 1), 1.0)
            faq.updated_at = utcnow()
            return faq.model_copy(deep=True)

    async def list_faqs(self, tenant_id: str, limit: int = 50) -> list[FAQEntry]:
        faqs = [f for f in self._faqs.values() if f.tenant_id == tenant_id]
        faqs.sort(key=lambda f: (f.helpfulness_score, f.times_asked), reverse=True)
        return [f.model_copy(deep=True) for f in faqs[:limit]]

    # ==================== Pattern Operations ====================

    async def find_pattern(
        self,
        tenant_id: str,
        intent: str,
        trigger_keywords: list[str],
    ) -> PatternEntry | None:
        pattern = self._patterns.get((tenant_id, intent, pattern_key(trigger_keywords)))
        return pattern.model_copy(deep=True) if pattern else None

    async def insert_pattern(self, entry: PatternEntry) -> PatternEntry:
        key = (entry.tenant_id, entry.intent, pattern_key(entry.trigger_keywords))
        async with self._lock:
            if key in self._patterns:
                raise DuplicateRecordError("pattern", f"{entry.intent}:{','.join(key[2])}")
            self._patterns[key] = entry.model_copy(deep=True)
        return entry

    async def record_pattern_use(
        self,
        tenant_id: str,
        pattern_id: str,
        successful: bool,
    ) -> PatternEntry | None:
        async with self._lock:
            for pattern in self._patterns.values():
                if pattern.tenant_id == tenant_id and pattern.id == pattern_id:
                    pattern.times_used += 1
                    if successful:
                        pattern.times_successful += 1
                    pattern.success_rate = pattern.times_successful / pattern.times_used
                    pattern.updated_at = utcnow()
                    return pattern.model_copy(deep=True)
        return None

    async def search_patterns(
        self,
        tenant_id: str,
        keywords: list[str],
        min_success_rate: float = 0.5,
        limit: int = 3,
    ) -> list[PatternEntry]:
        found = [
            p
            for p in self._patterns.values()
            if p.tenant_id == tenant_id
            and p.is_active
            and p.success_rate >= min_success_rate
            and matches_any_keyword(p.trigger_keywords, keywords)
        ]
        found.sort(key=lambda p: (p.success_rate, p.times_used), reverse=True)
        return [p.model_copy(deep=True) for p in found[:limit]]

    async def list_patterns(self, tenant_id: str) -> list[PatternEntry]:
        return [p.model_copy(deep=True) for p in self._patterns.values() if p.tenant_id == tenant_id]

    # ==================== Feedback Operations ====================

    async def save_feedback(self, feedback: FeedbackRecord) -> FeedbackRecord:
        self._feedback[feedback.id] = feedback.model_copy(deep=True)
        return feedback

    async def list_feedback(
        self,
        tenant_id: str,
        processed: bool | None = None,
        limit: int = 100,
    ) -> list[FeedbackRecord]:
        records = [f for f in self._feedback.values() if f.tenant_id == tenant_id]
        if processed is not None:
            records = [f for f in records if f.processed == processed]
        records.sort(key=lambda f: f.created_at)
        return [f.model_copy(deep=True) for f in records[:limit]]

    async def mark_feedback_processed(self, tenant_id: str, feedback_id: str) -> None:
        record = self._feedback.get(feedback_id)
        if record is not None and record.tenant_id == tenant_id:
            record.processed = True
            record.processed_at = utcnow()

    # ==================== Conversation Context Operations ====================

    async def get_conversation_context(
        self,
        tenant_id: str,
        conversation_id: str,
    ) -> ConversationContext | None:
        ctx = self._contexts.get((tenant_id, conversation_id))
        return ctx.model_copy(deep=True) if ctx else None

    async def merge_conversation_context(
        self,
        tenant_id: str,
        conversation_id: str,
        topics: list[str],
        max_topics: int = 10,
        sentiment: str | None = None,
    ) -> ConversationContext:
        key = (tenant_id, conversation_id)
        async with self._lock:
            ctx = self._contexts.get(key)
            if ctx is None:
                ctx = ConversationContext(tenant_id=tenant_id, conversation_id=conversation_id)
                self._contexts[key] = ctx
            merged = list(dict.fromkeys([*ctx.topics, *topics]))
            ctx.topics = merged[:max_topics]
            ctx.message_count += 1
            ctx.ai_response_count += 1
            if sentiment is not None:
                ctx.sentiment = sentiment
            ctx.updated_at = utcnow()
            return ctx.model_copy(deep=True)

    # ==================== Health Check ====================

    async def health_check(self) -> bool:
        return True

    # ==================== Development Helpers ====================

    async def clear_all(self) -> None:
        """Clear all data (for testing)."""
        for store in (
            self._sessions,
            self._conversations,
            self._conversation_keys,
            self._messages,
            self._message_keys,
            self._agents,
            self._plans,
            self._memories,
            self._faqs,
            self._patterns,
            self._feedback,
            self._contexts,
        ):
            store.clear()
        self._usage.clear()

    async def count_active_conversations(self, tenant_id: str) -> int:
        """Count non-removed conversations for a tenant (for tests and admin views)."""
        return sum(
            1
            for c in self._conversations.values()
            if c.tenant_id == tenant_id and c.lifecycle == Lifecycle.ACTIVE
        )
