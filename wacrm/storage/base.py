"""Abstract base class for storage backends.

Every operation takes the tenant id explicitly; backends never infer it from
ambient context. Uniqueness violations raise ``DuplicateRecordError`` and
counter updates are store-level atomic operations.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import date, datetime

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


def matches_any_keyword(fields: Iterable[str | None], keywords: Iterable[str]) -> bool:
    """Case-insensitive substring match of any keyword in any field."""
    haystacks = [f.lower() for f in fields if f]
    return any(kw.lower() in h for kw in keywords for h in haystacks)


def pattern_key(keywords: Iterable[str]) -> tuple[str, ...]:
    """Canonical form of a trigger-keyword set."""
    return tuple(sorted(set(keywords)))


class StorageBackend(ABC):
    """Abstract storage backend interface."""

    # ==================== Session Operations ====================

    @abstractmethod
    async def get_session(self, session_id: str) -> Session | None:
        """Get a session by ID, whatever its lifecycle."""
        ...

    @abstractmethod
    async def save_session(self, session: Session) -> Session:
        """Save or update a session."""
        ...

    @abstractmethod
    async def list_sessions(self, tenant_id: str, include_removed: bool = False) -> list[Session]:
        """List sessions for a tenant."""
        ...

    # ==================== Conversation Operations ====================

    @abstractmethod
    async def get_conversation(self, tenant_id: str, conversation_id: str) -> Conversation | None:
        """Get a conversation by ID."""
        ...

    @abstractmethod
    async def find_conversation_by_jid(
        self,
        tenant_id: str,
        session_id: str,
        remote_jid: str,
    ) -> Conversation | None:
        """Find a conversation (any lifecycle) by its primary remote identifier."""
        ...

    @abstractmethod
    async def find_conversation_by_lid(
        self,
        tenant_id: str,
        session_id: str,
        lid_jid: str,
    ) -> Conversation | None:
        """Find a conversation (any lifecycle) previously tagged with an ephemeral id."""
        ...

    @abstractmethod
    async def list_conversations(
        self,
        tenant_id: str,
        session_id: str,
        is_group: bool | None = None,
        include_removed: bool = True,
    ) -> list[Conversation]:
        """List conversations of a session."""
        ...

    @abstractmethod
    async def insert_conversation(self, conversation: Conversation) -> Conversation:
        """Insert a new conversation.

        Raises:
            DuplicateRecordError: If (session_id, remote_jid) is already taken
        """
        ...

    @abstractmethod
    async def save_conversation(self, conversation: Conversation) -> Conversation:
        """Update an existing conversation (remote_jid changes keep uniqueness)."""
        ...

    @abstractmethod
    async def increment_unread(
        self,
        tenant_id: str,
        conversation_id: str,
        last_message_at: datetime,
    ) -> Conversation | None:
        """Atomically add one unread message and bump last activity."""
        ...

    @abstractmethod
    async def update_conversation_fields(
        self,
        tenant_id: str,
        conversation_id: str,
        fields: dict[str, str],
    ) -> Conversation | None:
        """Set only the given profile fields, leaving counters untouched."""
        ...

    # ==================== Message Operations ====================

    @abstractmethod
    async def insert_message(self, message: Message) -> Message:
        """Insert a message.

        Raises:
            DuplicateRecordError: If the provider message id already exists for the tenant
        """
        ...

    @abstractmethod
    async def save_message(self, message: Message) -> Message:
        """Update an existing message."""
        ...

    @abstractmethod
    async def get_message_by_provider_id(
        self,
        tenant_id: str,
        provider_message_id: str,
    ) -> Message | None:
        """Get a message by the channel-assigned id."""
        ...

    @abstractmethod
    async def list_messages(
        self,
        tenant_id: str,
        conversation_id: str,
        direction: MessageDirection | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[Message]:
        """Get messages in chronological order (the most recent ``limit``)."""
        ...

    @abstractmethod
    async def count_messages(self, tenant_id: str, conversation_id: str) -> int:
        """Count messages in a conversation."""
        ...

    @abstractmethod
    async def reassign_messages(
        self,
        tenant_id: str,
        from_conversation_id: str,
        to_conversation_id: str,
    ) -> int:
        """Move all messages of one conversation to another. Returns the count moved."""
        ...

    # ==================== Agent Operations ====================

    @abstractmethod
    async def save_agent(self, agent: AIAgent) -> AIAgent:
        """Save or update an AI agent."""
        ...

    @abstractmethod
    async def list_agents(self, tenant_id: str) -> list[AIAgent]:
        """List AI agents for a tenant."""
        ...

    # ==================== Plan & Usage Operations ====================

    @abstractmethod
    async def get_tenant_plan(self, tenant_id: str) -> TenantPlan | None:
        """Get a tenant's plan and counters."""
        ...

    @abstractmethod
    async def save_tenant_plan(self, tenant_plan: TenantPlan) -> TenantPlan:
        """Save plan settings (counters are managed by the atomic operations)."""
        ...

    @abstractmethod
    async def create_tenant_plan_if_absent(self, tenant_plan: TenantPlan) -> TenantPlan:
        """Insert a plan unless one exists; returns whichever is stored."""
        ...

    @abstractmethod
    async def reset_usage_if_stale(self, tenant_id: str, today: date) -> bool:
        """Conditionally reset counters when the stored reset date is before ``today``.

        Daily counter always resets; the monthly counter also resets when the
        month differs. Returns True only for the caller that performed the reset.
        """
        ...

    @abstractmethod
    async def increment_usage(self, tenant_id: str, tokens: int) -> TenantPlan | None:
        """Atomically add tokens to both the monthly and daily counters."""
        ...

    @abstractmethod
    async def record_token_usage(self, record: TokenUsageRecord) -> None:
        """Append a usage log record."""
        ...

    @abstractmethod
    async def list_token_usage(
        self,
        tenant_id: str,
        since: date | None = None,
    ) -> list[TokenUsageRecord]:
        """List usage log records, optionally from a date on."""
        ...

    # ==================== Memory Operations ====================

    @abstractmethod
    async def upsert_memory(self, entry: MemoryEntry) -> MemoryEntry:
        """Insert or update a memory keyed by (tenant, key, type)."""
        ...

    @abstractmethod
    async def search_memories(
        self,
        tenant_id: str,
        keywords: list[str],
        min_confidence: float = 0.3,
        limit: int = 5,
    ) -> list[MemoryEntry]:
        """Active memories whose key, value or context contains any keyword.

        Ordered by confidence then usage count, descending.
        """
        ...

    @abstractmethod
    async def touch_memories(self, tenant_id: str, memory_ids: list[str]) -> None:
        """Atomically bump usage counters of recalled memories."""
        ...

    @abstractmethod
    async def boost_memories(self, tenant_id: str, keywords: list[str], increment: float) -> int:
        """Raise confidence (capped at 1.0) of memories whose key matches a keyword."""
        ...

    @abstractmethod
    async def list_memories(self, tenant_id: str) -> list[MemoryEntry]:
        """List all memories for a tenant."""
        ...

    # ==================== FAQ Operations ====================

    @abstractmethod
    async def get_faq_by_hash(self, tenant_id: str, question_hash: str) -> FAQEntry | None:
        """Get an FAQ entry by normalized-question hash."""
        ...

    @abstractmethod
    async def increment_faq_asked(self, tenant_id: str, faq_id: str) -> FAQEntry | None:
        """Atomically add one to times_asked."""
        ...

    @abstractmethod
    async def search_faqs(
        self,
        tenant_id: str,
        keywords: list[str],
        min_helpfulness: float = 0.5,
        limit: int = 1,
    ) -> list[FAQEntry]:
        """FAQs whose question contains any keyword, by helpfulness then times_asked."""
        ...

    @abstractmethod
    async def insert_faq(self, entry: FAQEntry) -> FAQEntry:
        """Insert an FAQ entry.

        Raises:
            DuplicateRecordError: If the question hash already exists for the tenant
        """
        ...

    @abstractmethod
    async def mark_faq_helpful(self, tenant_id: str, faq_id: str) -> FAQEntry | None:
        """Atomically add one to times_helpful and recompute helpfulness."""
        ...

    @abstractmethod
    async def list_faqs(self, tenant_id: str, limit: int = 50) -> list[FAQEntry]:
        """List FAQ entries by helpfulness."""
        ...

    # ==================== Pattern Operations ====================

    @abstractmethod
    async def find_pattern(
        self,
        tenant_id: str,
        intent: str,
        trigger_keywords: list[str],
    ) -> PatternEntry | None:
        """Find a pattern by intent and exact keyword set."""
        ...

    @abstractmethod
    async def insert_pattern(self, entry: PatternEntry) -> PatternEntry:
        """Insert a pattern.

        Raises:
            DuplicateRecordError: If (intent, keyword set) already exists for the tenant
        """
        ...

    @abstractmethod
    async def record_pattern_use(
        self,
        tenant_id: str,
        pattern_id: str,
        successful: bool,
    ) -> PatternEntry | None:
        """Atomically count one use and recompute the success rate."""
        ...

    @abstractmethod
    async def search_patterns(
        self,
        tenant_id: str,
        keywords: list[str],
        min_success_rate: float = 0.5,
        limit: int = 3,
    ) -> list[PatternEntry]:
        """Active patterns with a trigger keyword containing any keyword."""
        ...

    @abstractmethod
    async def list_patterns(self, tenant_id: str) -> list[PatternEntry]:
        """List all patterns for a tenant."""
        ...

    # ==================== Feedback Operations ====================

    @abstractmethod
    async def save_feedback(self, feedback: FeedbackRecord) -> FeedbackRecord:
        """Save a feedback record."""
        ...

    @abstractmethod
    async def list_feedback(
        self,
        tenant_id: str,
        processed: bool | None = None,
        limit: int = 100,
    ) -> list[FeedbackRecord]:
        """List feedback records, oldest first."""
        ...

    @abstractmethod
    async def mark_feedback_processed(self, tenant_id: str, feedback_id: str) -> None:
        """Flag a feedback record as processed."""
        ...

    # ==================== Conversation Context Operations ====================

    @abstractmethod
    async def get_conversation_context(
        self,
        tenant_id: str,
        conversation_id: str,
    ) -> ConversationContext | None:
        """Get the learning context of a conversation."""
        ...

    @abstractmethod
    async def merge_conversation_context(
        self,
        tenant_id: str,
        conversation_id: str,
        topics: list[str],
        max_topics: int = 10,
        sentiment: str | None = None,
    ) -> ConversationContext:
        """Atomically merge topics (union, capped), bump counters, keep sentiment unless given."""
        ...

    # ==================== Health Check ====================

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if storage is healthy."""
        ...
