"""Firestore storage backend for production."""

import hashlib
import os
from datetime import date, datetime

import structlog
from google.api_core.exceptions import AlreadyExists, DeadlineExceeded, ServiceUnavailable
from google.cloud import firestore
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from wacrm.core.exceptions import DuplicateRecordError
from wacrm.core.timeutils import utcnow
from wacrm.models import (
    AIAgent,
    Conversation,
    ConversationContext,
    FAQEntry,
    FeedbackRecord,
    MemoryEntry,
    Message,
    MessageDirection,
    PatternEntry,
    Session,
    TenantPlan,
    TokenUsageRecord,
)
from wacrm.storage.base import StorageBackend, matches_any_keyword, pattern_key

logger = structlog.get_logger()

# Reads are idempotent, so transient backend errors are retried
retry_transient = retry(
    retry=retry_if_exception_type((ServiceUnavailable, DeadlineExceeded)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    reraise=True,
)


def _digest(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


class FirestoreStorage(StorageBackend):
    """Firestore storage implementation for production.

    Collection structure:
    - sessions/{session_id}
    - conversations/{conversation_id}
    - conversation_keys/{session_id}:{remote_jid}     (uniqueness guard)
    - messages/{message_id}
    - message_keys/{tenant_id}:{provider_message_id}  (uniqueness guard)
    - agents/{agent_id}
    - tenant_plans/{tenant_id}
    - token_usage/{auto}
    - memories/{tenant_id}:{md5(key)}:{type}
    - faqs/{tenant_id}:{question_hash}
    - patterns/{tenant_id}:{md5(intent + keywords)}
    - feedback/{feedback_id}
    - conversation_contexts/{tenant_id}:{conversation_id}

    Keyword searches run a tenant-scoped query and filter client-side, since
    Firestore has no substring operator.
    """

    def __init__(self, project_id: str | None = None) -> None:
        self._project_id = project_id
        self._db = None
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        """Lazy initialization of Firestore client."""
        if self._initialized:
            return

        try:
            if os.environ.get("FIRESTORE_EMULATOR_HOST"):
                logger.info("Using Firestore emulator")

            self._db = firestore.AsyncClient(project=self._project_id)
            self._initialized = True
            logger.info("Firestore client initialized", project=self._project_id)
        except Exception as e:
            logger.error("Failed to initialize Firestore", error=str(e))
            raise

    def _col(self, name: str):
        return self._db.collection(name)

    async def _tenant_docs(self, collection: str, tenant_id: str) -> list[dict]:
        docs = await self._col(collection).where("tenant_id", "==", tenant_id).get()
        return [doc.to_dict() for doc in docs]

    # ==================== Session Operations ====================

    @retry_transient
    async def get_session(self, session_id: str) -> Session | None:
        await self._ensure_initialized()
        doc = await self._col("sessions").document(session_id).get()
        if not doc.exists:
            return None
        return Session(**doc.to_dict())

    async def save_session(self, session: Session) -> Session:
        await self._ensure_initialized()
        session.updated_at = utcnow()
        await self._col("sessions").document(session.id).set(session.model_dump(mode="json"))
        return session

    @retry_transient
    async def list_sessions(self, tenant_id: str, include_removed: bool = False) -> list[Session]:
        await self._ensure_initialized()
        sessions = [Session(**data) for data in await self._tenant_docs("sessions", tenant_id)]
        if not include_removed:
            sessions = [s for s in sessions if not s.is_removed]
        sessions.sort(key=lambda s: s.created_at)
        return sessions

    # ==================== Conversation Operations ====================

    def _conversation_key_ref(self, session_id: str, remote_jid: str):
        return self._col("conversation_keys").document(f"{session_id}:{remote_jid}")

    @retry_transient
    async def get_conversation(self, tenant_id: str, conversation_id: str) -> Conversation | None:
        await self._ensure_initialized()
        doc = await self._col("conversations").document(conversation_id).get()
        if not doc.exists:
            return None
        conv = Conversation(**doc.to_dict())
        return conv if conv.tenant_id == tenant_id else None

    @retry_transient
    async def find_conversation_by_jid(
        self,
        tenant_id: str,
        session_id: str,
        remote_jid: str,
    ) -> Conversation | None:
        await self._ensure_initialized()
        key_doc = await self._conversation_key_ref(session_id, remote_jid).get()
        if not key_doc.exists:
            return None
        return await self.get_conversation(tenant_id, key_doc.to_dict()["conversation_id"])

    @retry_transient
    async def find_conversation_by_lid(
        self,
        tenant_id: str,
        session_id: str,
        lid_jid: str,
    ) -> Conversation | None:
        await self._ensure_initialized()
        query = (
            self._col("conversations")
            .where("tenant_id", "==", tenant_id)
            .where("session_id", "==", session_id)
            .where("lid_jid", "==", lid_jid)
            .limit(1)
        )
        docs = await query.get()
        for doc in docs:
            return Conversation(**doc.to_dict())
        return None

    @retry_transient
    async def list_conversations(
        self,
        tenant_id: str,
        session_id: str,
        is_group: bool | None = None,
        include_removed: bool = True,
    ) -> list[Conversation]:
        await self._ensure_initialized()
        query = (
            self._col("conversations")
            .where("tenant_id", "==", tenant_id)
            .where("session_id", "==", session_id)
        )
        if is_group is not None:
            query = query.where("is_group", "==", is_group)
        convs = [Conversation(**doc.to_dict()) for doc in await query.get()]
        if not include_removed:
            convs = [c for c in convs if not c.is_removed]
        return convs

    async def insert_conversation(self, conversation: Conversation) -> Conversation:
        await self._ensure_initialized()
        try:
            await self._conversation_key_ref(conversation.session_id, conversation.remote_jid).create(
                {"conversation_id": conversation.id, "tenant_id": conversation.tenant_id}
            )
        except AlreadyExists:
            raise DuplicateRecordError(
                "conversation", f"{conversation.session_id}:{conversation.remote_jid}"
            )
        await self._col("conversations").document(conversation.id).set(
            conversation.model_dump(mode="json")
        )
        return conversation

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        await self._ensure_initialized()
        ref = self._col("conversations").document(conversation.id)
        current = await ref.get()
        if current.exists:
            previous_jid = current.to_dict()["remote_jid"]
            if previous_jid != conversation.remote_jid:
                # Identifier migration: claim the new key before releasing the old one
                try:
                    await self._conversation_key_ref(
                        conversation.session_id, conversation.remote_jid
                    ).create({"conversation_id": conversation.id, "tenant_id": conversation.tenant_id})
                except AlreadyExists:
                    raise DuplicateRecordError(
                        "conversation", f"{conversation.session_id}:{conversation.remote_jid}"
                    )
                await self._conversation_key_ref(conversation.session_id, previous_jid).delete()
        conversation.updated_at = utcnow()
        await ref.set(conversation.model_dump(mode="json"))
        return conversation

    async def increment_unread(
        self,
        tenant_id: str,
        conversation_id: str,
        last_message_at: datetime,
    ) -> Conversation | None:
        await self._ensure_initialized()
        if await self.get_conversation(tenant_id, conversation_id) is None:
            return None
        ref = self._col("conversations").document(conversation_id)
        await ref.update({
            "unread_count": firestore.Increment(1),
            "last_message_at": last_message_at.isoformat(),
            "updated_at": utcnow().isoformat(),
        })
        return await self.get_conversation(tenant_id, conversation_id)

    async def update_conversation_fields(
        self,
        tenant_id: str,
        conversation_id: str,
        fields: dict[str, str],
    ) -> Conversation | None:
        await self._ensure_initialized()
        if await self.get_conversation(tenant_id, conversation_id) is None:
            return None
        ref = self._col("conversations").document(conversation_id)
        await ref.update({**fields, "updated_at": utcnow().isoformat()})
        return await self.get_conversation(tenant_id, conversation_id)

    # ==================== Message Operations ====================

    async def insert_message(self, message: Message) -> Message:
        await self._ensure_initialized()
        if message.provider_message_id:
            key_ref = self._col("message_keys").document(
                f"{message.tenant_id}:{message.provider_message_id}"
            )
            try:
                await key_ref.create({"message_id": message.id})
            except AlreadyExists:
                raise DuplicateRecordError("message", message.provider_message_id)
        await self._col("messages").document(message.id).set(message.model_dump(mode="json"))
        return message

    async def save_message(self, message: Message) -> Message:
        await self._ensure_initialized()
        await self._col("messages").document(message.id).set(message.model_dump(mode="json"))
        return message

    @retry_transient
    async def get_message_by_provider_id(
        self,
        tenant_id: str,
        provider_message_id: str,
    ) -> Message | None:
        await self._ensure_initialized()
        key_doc = await self._col("message_keys").document(f"{tenant_id}:{provider_message_id}").get()
        if not key_doc.exists:
            return None
        doc = await self._col("messages").document(key_doc.to_dict()["message_id"]).get()
        return Message(**doc.to_dict()) if doc.exists else None

    @retry_transient
    async def list_messages(
        self,
        tenant_id: str,
        conversation_id: str,
        direction: MessageDirection | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[Message]:
        await self._ensure_initialized()
        query = (
            self._col("messages")
            .where("tenant_id", "==", tenant_id)
            .where("conversation_id", "==", conversation_id)
        )
        if direction is not None:
            query = query.where("direction", "==", direction.value)
        if since is not None:
            query = query.where("created_at", ">=", since.isoformat())
        query = query.order_by("created_at", direction="DESCENDING").limit(limit)
        docs = await query.get()
        messages = [Message(**doc.to_dict()) for doc in docs]
        return list(reversed(messages))

    @retry_transient
    async def count_messages(self, tenant_id: str, conversation_id: str) -> int:
        await self._ensure_initialized()
        query = (
            self._col("messages")
            .where("tenant_id", "==", tenant_id)
            .where("conversation_id", "==", conversation_id)
        )
        results = await query.count().get()
        return int(results[0][0].value)

    async def reassign_messages(
        self,
        tenant_id: str,
        from_conversation_id: str,
        to_conversation_id: str,
    ) -> int:
        await self._ensure_initialized()
        query = (
            self._col("messages")
            .where("tenant_id", "==", tenant_id)
            .where("conversation_id", "==", from_conversation_id)
        )
        docs = await query.get()
        batch = self._db.batch()
        for doc in docs:
            batch.update(doc.reference, {"conversation_id": to_conversation_id})
        if docs:
            await batch.commit()
        return len(docs)

    # ==================== Agent Operations ====================

    async def save_agent(self, agent: AIAgent) -> AIAgent:
        await self._ensure_initialized()
        agent.updated_at = utcnow()
        await self._col("agents").document(agent.id).set(agent.model_dump(mode="json"))
        return agent

    @retry_transient
    async def list_agents(self, tenant_id: str) -> list[AIAgent]:
        await self._ensure_initialized()
        agents = [AIAgent(**data) for data in await self._tenant_docs("agents", tenant_id)]
        agents.sort(key=lambda a: a.created_at)
        return agents

    # ==================== Plan & Usage Operations ====================

    _COUNTER_FIELDS = ("tokens_used_this_month", "tokens_used_today", "last_reset_date")

    @retry_transient
    async def get_tenant_plan(self, tenant_id: str) -> TenantPlan | None:
        await self._ensure_initialized()
        doc = await self._col("tenant_plans").document(tenant_id).get()
        if not doc.exists:
            return None
        return TenantPlan(**doc.to_dict())

    async def save_tenant_plan(self, tenant_plan: TenantPlan) -> TenantPlan:
        await self._ensure_initialized()
        ref = self._col("tenant_plans").document(tenant_plan.tenant_id)
        data = tenant_plan.model_dump(mode="json", exclude=set(self._COUNTER_FIELDS))
        await ref.set(data, merge=True)
        return await self.get_tenant_plan(tenant_plan.tenant_id)

    async def create_tenant_plan_if_absent(self, tenant_plan: TenantPlan) -> TenantPlan:
        await self._ensure_initialized()
        try:
            await self._col("tenant_plans").document(tenant_plan.tenant_id).create(
                tenant_plan.model_dump(mode="json")
            )
        except AlreadyExists:
            logger.debug("Tenant plan already exists", tenant_id=tenant_plan.tenant_id)
        return await self.get_tenant_plan(tenant_plan.tenant_id)

    async def reset_usage_if_stale(self, tenant_id: str, today: date) -> bool:
        await self._ensure_initialized()
        ref = self._col("tenant_plans").document(tenant_id)

        @firestore.async_transactional
        async def _reset(transaction) -> bool:
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            raw = snapshot.to_dict().get("last_reset_date")
            last = date.fromisoformat(raw) if raw else None
            if last is not None and last >= today:
                return False
            updates = {"tokens_used_today": 0, "last_reset_date": today.isoformat()}
            if last is None or (last.year, last.month) != (today.year, today.month):
                updates["tokens_used_this_month"] = 0
            transaction.update(ref, updates)
            return True

        return await _reset(self._db.transaction())

    async def increment_usage(self, tenant_id: str, tokens: int) -> TenantPlan | None:
        await self._ensure_initialized()
        ref = self._col("tenant_plans").document(tenant_id)
        if not (await ref.get()).exists:
            return None
        await ref.update({
            "tokens_used_this_month": firestore.Increment(tokens),
            "tokens_used_today": firestore.Increment(tokens),
        })
        return await self.get_tenant_plan(tenant_id)

    async def record_token_usage(self, record: TokenUsageRecord) -> None:
        await self._ensure_initialized()
        await self._col("token_usage").add(record.model_dump(mode="json"))

    @retry_transient
    async def list_token_usage(
        self,
        tenant_id: str,
        since: date | None = None,
    ) -> list[TokenUsageRecord]:
        await self._ensure_initialized()
        query = self._col("token_usage").where("tenant_id", "==", tenant_id)
        if since is not None:
            query = query.where("usage_date", ">=", since.isoformat())
        return [TokenUsageRecord(**doc.to_dict()) for doc in await query.get()]

    # ==================== Memory Operations ====================

    def _memory_ref(self, tenant_id: str, key: str, memory_type: str):
        return self._col("memories").document(f"{tenant_id}:{_digest(key)}:{memory_type}")

    async def upsert_memory(self, entry: MemoryEntry) -> MemoryEntry:
        await self._ensure_initialized()
        ref = self._memory_ref(entry.tenant_id, entry.key, entry.type.value)
        snapshot = await ref.get()
        if not snapshot.exists:
            await ref.set(entry.model_dump(mode="json"))
            return entry
        await ref.update({
            "value": entry.value,
            "category": entry.category,
            "context": entry.context,
            "source": entry.source,
            "source_id": entry.source_id,
            "confidence_score": entry.confidence_score,
            "is_active": True,
            "updated_at": utcnow().isoformat(),
        })
        return MemoryEntry(**(await ref.get()).to_dict())

    @retry_transient
    async def search_memories(
        self,
        tenant_id: str,
        keywords: list[str],
        min_confidence: float = 0.3,
        limit: int = 5,
    ) -> list[MemoryEntry]:
        await self._ensure_initialized()
        query = (
            self._col("memories")
            .where("tenant_id", "==", tenant_id)
            .where("is_active", "==", True)
            .where("confidence_score", ">=", min_confidence)
        )
        found = [MemoryEntry(**doc.to_dict()) for doc in await query.get()]
        found = [m for m in found if matches_any_keyword((m.key, m.value, m.context), keywords)]
        found.sort(key=lambda m: (m.confidence_score, m.usage_count), reverse=True)
        return found[:limit]

    async def touch_memories(self, tenant_id: str, memory_ids: list[str]) -> None:
        await self._ensure_initialized()
        if not memory_ids:
            return
        ids = set(memory_ids)
        batch = self._db.batch()
        now = utcnow().isoformat()
        for doc in await self._col("memories").where("tenant_id", "==", tenant_id).get():
            if doc.to_dict().get("id") in ids:
                batch.update(doc.reference, {"usage_count": firestore.Increment(1), "last_used_at": now})
        await batch.commit()

    async def boost_memories(self, tenant_id: str, keywords: list[str], increment: float) -> int:
        await self._ensure_initialized()
        boosted = 0
        for doc in await self._col("memories").where("tenant_id", "==", tenant_id).get():
            data = doc.to_dict()
            if not matches_any_keyword((data.get("key"),), keywords):
                continue

            @firestore.async_transactional
            async def _boost(transaction, ref=doc.reference) -> None:
                snapshot = await ref.get(transaction=transaction)
                current = snapshot.to_dict()
                transaction.update(ref, {
                    "success_count": current.get("success_count", 0) + 1,
                    "confidence_score": min(current.get("confidence_score", 0.5) + increment, 1.0),
                })

            await _boost(self._db.transaction())
            boosted += 1
        return boosted

    @retry_transient
    async def list_memories(self, tenant_id: str) -> list[MemoryEntry]:
        await self._ensure_initialized()
        return [MemoryEntry(**data) for data in await self._tenant_docs("memories", tenant_id)]

    # ==================== FAQ Operations ====================

    def _faq_ref(self, tenant_id: str, question_hash: str):
        return self._col("faqs").document(f"{tenant_id}:{question_hash}")

    async def _faq_ref_by_id(self, tenant_id: str, faq_id: str):
        query = self._col("faqs").where("tenant_id", "==", tenant_id).where("id", "==", faq_id).limit(1)
        for doc in await query.get():
            return doc.reference
        return None

    @retry_transient
    async def get_faq_by_hash(self, tenant_id: str, question_hash: str) -> FAQEntry | None:
        await self._ensure_initialized()
        doc = await self._faq_ref(tenant_id, question_hash).get()
        return FAQEntry(**doc.to_dict()) if doc.exists else None

    async def increment_faq_asked(self, tenant_id: str, faq_id: str) -> FAQEntry | None:
        await self._ensure_initialized()
        ref = await self._faq_ref_by_id(tenant_id, faq_id)
        if ref is None:
            return None
        await ref.update({"times_asked": firestore.Increment(1), "last_asked_at": utcnow().isoformat()})
        return FAQEntry(**(await ref.get()).to_dict())

    @retry_transient
    async def search_faqs(
        self,
        tenant_id: str,
        keywords: list[str],
        min_helpfulness: float = 0.5,
        limit: int = 1,
    ) -> list[FAQEntry]:
        await self._ensure_initialized()
        query = (
            self._col("faqs")
            .where("tenant_id", "==", tenant_id)
            .where("helpfulness_score", ">=", min_helpfulness)
        )
        found = [FAQEntry(**doc.to_dict()) for doc in await query.get()]
        found = [f for f in found if matches_any_keyword((f.question,), keywords)]
        found.sort(key=lambda f: (f.helpfulness_score, f.times_asked), reverse=True)
        return found[:limit]

    async def insert_faq(self, entry: FAQEntry) -> FAQEntry:
        await self._ensure_initialized()
        try:
            await self._faq_ref(entry.tenant_id, entry.question_hash).create(entry.model_dump(mode="json"))
        except AlreadyExists:
            raise DuplicateRecordError("faq", entry.question_hash)
        return entry

    async def mark_faq_helpful(self, tenant_id: str, faq_id: str) -> FAQEntry | None:
        await self._ensure_initialized()
        ref = await self._faq_ref_by_id(tenant_id, faq_id)
        if ref is None:
            return None

        @firestore.async_transactional
        async def _mark(transaction) -> dict:
            current = (await ref.get(transaction=transaction)).to_dict()
            helpful = current.get("times_helpful", 0) + 1
            asked = max(current.get("times_asked", 1), 1)
            updates = {
                "times_helpful": helpful,
                "helpfulness_score": min(helpful / asked, 1.0),
                "updated_at": utcnow().isoformat(),
            }
            transaction.update(ref, updates)
            return {**current, **updates}

        return FAQEntry(**await _mark(self._db.transaction()))

    @retry_transient
    async def list_faqs(self, tenant_id: str, limit: int = 50) -> list[FAQEntry]:
        await self._ensure_initialized()
        faqs = [FAQEntry(**data) for data in await self._tenant_docs("faqs", tenant_id)]
        faqs.sort(key=lambda f: (f.helpfulness_score, f.times_asked), reverse=True)
        return faqs[:limit]

    # ==================== Pattern Operations ====================

    def _pattern_ref(self, tenant_id: str, intent: str, trigger_keywords: list[str]):
        digest = _digest(intent + "|" + ",".join(pattern_key(trigger_keywords)))
        return self._col("patterns").document(f"{tenant_id}:{digest}")

    @retry_transient
    async def find_pattern(
        self,
        tenant_id: str,
        intent: str,
        trigger_keywords: list[str],
    ) -> PatternEntry | None:
        await self._ensure_initialized()
        doc = await self._pattern_ref(tenant_id, intent, trigger_keywords).get()
        return PatternEntry(**doc.to_dict()) if doc.exists else None

    async def insert_pattern(self, entry: PatternEntry) -> PatternEntry:
        await self._ensure_initialized()
        ref = self._pattern_ref(entry.tenant_id, entry.intent, entry.trigger_keywords)
        try:
            await ref.create(entry.model_dump(mode="json"))
        except AlreadyExists:
            raise DuplicateRecordError("pattern", entry.intent)
        return entry

    async def record_pattern_use(
        self,
        tenant_id: str,
        pattern_id: str,
        successful: bool,
    ) -> PatternEntry | None:
        await self._ensure_initialized()
        query = (
            self._col("patterns")
            .where("tenant_id", "==", tenant_id)
            .where("id", "==", pattern_id)
            .limit(1)
        )
        refs = [doc.reference for doc in await query.get()]
        if not refs:
            return None
        ref = refs[0]

        @firestore.async_transactional
        async def _use(transaction) -> dict:
            current = (await ref.get(transaction=transaction)).to_dict()
            used = current.get("times_used", 0) + 1
            succeeded = current.get("times_successful", 0) + (1 if successful else 0)
            updates = {
                "times_used": used,
                "times_successful": succeeded,
                "success_rate": succeeded / used,
                "updated_at": utcnow().isoformat(),
            }
            transaction.update(ref, updates)
            return {**current, **updates}

        return PatternEntry(**await _use(self._db.transaction()))

    @retry_transient
    async def search_patterns(
        self,
        tenant_id: str,
        keywords: list[str],
        min_success_rate: float = 0.5,
        limit: int = 3,
    ) -> list[PatternEntry]:
        await self._ensure_initialized()
        query = (
            self._col("patterns")
            .where("tenant_id", "==", tenant_id)
            .where("is_active", "==", True)
            .where("success_rate", ">=", min_success_rate)
        )
        found = [PatternEntry(**doc.to_dict()) for doc in await query.get()]
        found = [p for p in found if matches_any_keyword(p.trigger_keywords, keywords)]
        found.sort(key=lambda p: (p.success_rate, p.times_used), reverse=True)
        return found[:limit]

    @retry_transient
    async def list_patterns(self, tenant_id: str) -> list[PatternEntry]:
        await self._ensure_initialized()
        return [PatternEntry(**data) for data in await self._tenant_docs("patterns", tenant_id)]

    # ==================== Feedback Operations ====================

    async def save_feedback(self, feedback: FeedbackRecord) -> FeedbackRecord:
        await self._ensure_initialized()
        await self._col("feedback").document(feedback.id).set(feedback.model_dump(mode="json"))
        return feedback

    @retry_transient
    async def list_feedback(
        self,
        tenant_id: str,
        processed: bool | None = None,
        limit: int = 100,
    ) -> list[FeedbackRecord]:
        await self._ensure_initialized()
        query = self._col("feedback").where("tenant_id", "==", tenant_id)
        if processed is not None:
            query = query.where("processed", "==", processed)
        records = [FeedbackRecord(**doc.to_dict()) for doc in await query.get()]
        records.sort(key=lambda f: f.created_at)
        return records[:limit]

    async def mark_feedback_processed(self, tenant_id: str, feedback_id: str) -> None:
        await self._ensure_initialized()
        ref = self._col("feedback").document(feedback_id)
        snapshot = await ref.get()
        if snapshot.exists and snapshot.to_dict().get("tenant_id") == tenant_id:
            await ref.update({"processed": True, "processed_at": utcnow().isoformat()})

    # ==================== Conversation Context Operations ====================

    def _context_ref(self, tenant_id: str, conversation_id: str):
        return self._col("conversation_contexts").document(f"{tenant_id}:{conversation_id}")

    @retry_transient
    async def get_conversation_context(
        self,
        tenant_id: str,
        conversation_id: str,
    ) -> ConversationContext | None:
        await self._ensure_initialized()
        doc = await self._context_ref(tenant_id, conversation_id).get()
        return ConversationContext(**doc.to_dict()) if doc.exists else None

    async def merge_conversation_context(
        self,
        tenant_id: str,
        conversation_id: str,
        topics: list[str],
        max_topics: int = 10,
        sentiment: str | None = None,
    ) -> ConversationContext:
        await self._ensure_initialized()
        ref = self._context_ref(tenant_id, conversation_id)

        @firestore.async_transactional
        async def _merge(transaction) -> ConversationContext:
            snapshot = await ref.get(transaction=transaction)
            if snapshot.exists:
                ctx = ConversationContext(**snapshot.to_dict())
            else:
                ctx = ConversationContext(tenant_id=tenant_id, conversation_id=conversation_id)
            ctx.topics = list(dict.fromkeys([*ctx.topics, *topics]))[:max_topics]
            ctx.message_count += 1
            ctx.ai_response_count += 1
            if sentiment is not None:
                ctx.sentiment = sentiment
            ctx.updated_at = utcnow()
            transaction.set(ref, ctx.model_dump(mode="json"))
            return ctx

        return await _merge(self._db.transaction())

    # ==================== Health Check ====================

    async def health_check(self) -> bool:
        try:
            await self._ensure_initialized()
            await self._db.collection("_health").document("check").get()
            return True
        except Exception as e:
            logger.error("Firestore health check failed", error=str(e))
            return False
