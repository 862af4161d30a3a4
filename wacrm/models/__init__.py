"""Data models for the application."""

from wacrm.models.agent import (
    AgentInstructions,
    AIAgent,
    CustomInstructions,
    KnowledgeDocument,
    ServiceWindow,
    StructuredInstructions,
)
from wacrm.models.conversation import Conversation
from wacrm.models.events import (
    ConnectedEvent,
    DisconnectedEvent,
    LoggedOutEvent,
    MessageEvent,
    MessageStatusEvent,
    QrCodeEvent,
    WebhookEvent,
)
from wacrm.models.learning import (
    ConversationContext,
    EnrichedContext,
    FAQEntry,
    FeedbackRating,
    FeedbackRecord,
    LearningEntry,
    MemoryEntry,
    MemoryType,
    PatternEntry,
)
from wacrm.models.message import (
    Message,
    MessageDirection,
    MessageStatus,
    SendResult,
)
from wacrm.models.plan import (
    AIFeature,
    AIPlan,
    PlanStatus,
    QuotaDecision,
    QuotaReason,
    RateDecision,
    TenantPlan,
    TokenUsageRecord,
)
from wacrm.models.session import Lifecycle, Session, SessionStatus

__all__ = [
    # Session
    "Lifecycle",
    "Session",
    "SessionStatus",
    # Conversation
    "Conversation",
    # Message
    "Message",
    "MessageDirection",
    "MessageStatus",
    "SendResult",
    # Agent
    "AIAgent",
    "AgentInstructions",
    "CustomInstructions",
    "KnowledgeDocument",
    "ServiceWindow",
    "StructuredInstructions",
    # Plan / quota
    "AIFeature",
    "AIPlan",
    "PlanStatus",
    "QuotaDecision",
    "QuotaReason",
    "RateDecision",
    "TenantPlan",
    "TokenUsageRecord",
    # Learning
    "ConversationContext",
    "EnrichedContext",
    "FAQEntry",
    "FeedbackRating",
    "FeedbackRecord",
    "LearningEntry",
    "MemoryEntry",
    "MemoryType",
    "PatternEntry",
    # Webhook events
    "ConnectedEvent",
    "DisconnectedEvent",
    "LoggedOutEvent",
    "MessageEvent",
    "MessageStatusEvent",
    "QrCodeEvent",
    "WebhookEvent",
]
