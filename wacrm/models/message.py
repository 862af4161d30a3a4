"""Message models for the WhatsApp channel."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from wacrm.core.timeutils import utcnow

AI_AGENT_SENDER_NAME = "AI Agent"


class MessageDirection(str, Enum):
    """Direction of the message."""

    INCOMING = "incoming"  # From contact
    OUTGOING = "outgoing"  # From us (human or AI)


class MessageStatus(str, Enum):
    """Delivery status of a message."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


# Forward-only ordering of delivery statuses; FAILED is handled separately
STATUS_RANK: dict[MessageStatus, int] = {
    MessageStatus.PENDING: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}


class Message(BaseModel):
    """One inbound or outbound unit of a conversation."""

    id: str = Field(..., description="Local message identifier")
    tenant_id: str = Field(..., description="Tenant ID")
    conversation_id: str = Field(..., description="Parent conversation ID")
    provider_message_id: str | None = Field(
        default=None, description="Channel-assigned id, unique per tenant when present"
    )

    direction: MessageDirection
    type: str = "text"
    content: str | None = None
    media_url: str | None = None
    media_filename: str | None = None
    status: MessageStatus = MessageStatus.SENT

    # Sender (inbound contact data, or the composing user/agent for outbound)
    sender_name: str | None = None
    sender_phone: str | None = None
    sender_id: str | None = None

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None

    @property
    def is_from_ai(self) -> bool:
        return self.direction == MessageDirection.OUTGOING and self.sender_name == AI_AGENT_SENDER_NAME


class SendResult(BaseModel):
    """Result of an outbound send through the channel service."""

    provider_message_id: str | None = None
    to: str
