"""Learning store models: memories, FAQ cache, patterns, feedback and conversation context."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from wacrm.core.timeutils import utcnow


class MemoryType(str, Enum):
    """Kinds of stored memory."""

    FACT = "fact"
    CORRECTION = "correction"
    PREFERENCE = "preference"


class FeedbackRating(str, Enum):
    """Rating attached to an AI response."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class MemoryEntry(BaseModel):
    """A keyword-searchable fact learned for a tenant. Unique per (tenant, key, type)."""

    kind: Literal["memory"] = "memory"
    id: str
    tenant_id: str
    key: str
    value: str
    type: MemoryType = MemoryType.FACT
    category: str | None = None
    context: str | None = None
    source: str = "conversation"
    source_id: str | None = None
    confidence_score: float = Field(default=0.5, ge=0.0, le=1.0)
    usage_count: int = 0
    success_count: int = 0
    is_active: bool = True
    is_verified: bool = False
    last_used_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class FAQEntry(BaseModel):
    """A previously answered question. Unique per (tenant, question_hash)."""

    kind: Literal["faq"] = "faq"
    id: str
    tenant_id: str
    question: str
    question_hash: str
    answer: str
    times_asked: int = 1
    times_helpful: int = 0
    helpfulness_score: float = Field(default=0.1, ge=0.0, le=1.0)
    is_verified: bool = False
    last_asked_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PatternEntry(BaseModel):
    """An intent/keyword-set pattern with a running success rate."""

    kind: Literal["pattern"] = "pattern"
    id: str
    tenant_id: str
    intent: str
    trigger_keywords: list[str]
    pattern_template: str
    response_template: str
    times_used: int = 1
    times_successful: int = 0
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


LearningEntry = Annotated[
    MemoryEntry | FAQEntry | PatternEntry,
    Field(discriminator="kind"),
]


class FeedbackRecord(BaseModel):
    """Feedback on one AI response, processed later for learning."""

    id: str
    tenant_id: str
    user_message: str
    ai_response: str
    rating: FeedbackRating
    feature: str = "chat"
    user_id: str | None = None
    correction: str | None = None
    comment: str | None = None
    conversation_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    processed: bool = False
    processed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)


class ConversationContext(BaseModel):
    """Accumulated per-conversation learning context."""

    tenant_id: str
    conversation_id: str
    topics: list[str] = Field(default_factory=list)
    message_count: int = 0
    ai_response_count: int = 0
    sentiment: str | None = None
    summary: str | None = None
    customer_preferences: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class EnrichedContext(BaseModel):
    """Learned data gathered for a prompt."""

    memories: list[MemoryEntry] = Field(default_factory=list)
    faq: FAQEntry | None = None
    patterns: list[PatternEntry] = Field(default_factory=list)
    conversation_context: ConversationContext | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.memories or self.faq or self.patterns or self.conversation_context)
