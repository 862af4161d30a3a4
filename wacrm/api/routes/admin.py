"""Admin endpoints for sessions, agents, conversations, usage and learning."""

import uuid
from typing import Any

import structlog
from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from wacrm.api.dependencies import (
    GatewayDep,
    LearningDep,
    MessagesDep,
    QuotaDep,
    SessionsDep,
    StorageDep,
)
from wacrm.core.exceptions import ConversationNotFound
from wacrm.models import (
    AgentInstructions,
    AIAgent,
    Conversation,
    FeedbackRating,
    KnowledgeDocument,
    ServiceWindow,
    Session,
    StructuredInstructions,
)
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()

router = APIRouter(prefix="/admin", tags=["Admin"])


# ==================== Pydantic Schemas ====================


class SessionCreate(BaseModel):
    """Schema for creating a WhatsApp session."""

    phone_number: str
    name: str | None = None
    user_id: str | None = None


class SessionResponse(BaseModel):
    """Response schema for a session."""

    id: str
    tenant_id: str
    user_id: str | None
    name: str | None
    phone_number: str | None
    status: str
    lifecycle: str


class AgentCreate(BaseModel):
    """Schema for creating or replacing an AI agent."""

    name: str
    is_active: bool = True
    session_id: str | None = None
    human_service_hours: dict[str, ServiceWindow] = Field(default_factory=dict)
    instructions: AgentInstructions = Field(default_factory=StructuredInstructions)
    documents: list[KnowledgeDocument] = Field(default_factory=list)


class SendText(BaseModel):
    """Schema for a human reply."""

    text: str = Field(..., min_length=1)
    sender_id: str | None = None
    sender_name: str | None = None


class FeedbackCreate(BaseModel):
    """Schema for rating an AI response."""

    user_message: str
    ai_response: str
    rating: FeedbackRating
    feature: str = "chat"
    user_id: str | None = None
    correction: str | None = None
    comment: str | None = None
    conversation_id: str | None = None


class EmailDraftRequest(BaseModel):
    purpose: str
    contact: dict[str, Any] = Field(default_factory=dict)
    tone: str = "professional"


class AutofillRequest(BaseModel):
    card: dict[str, Any]
    comments: list[dict[str, Any]] = Field(default_factory=list)


def _session_response(session: Session) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        tenant_id=session.tenant_id,
        user_id=session.user_id,
        name=session.name,
        phone_number=session.phone_number,
        status=session.status.value,
        lifecycle=session.lifecycle.value,
    )


async def _get_conversation(storage: StorageBackend, tenant_id: str, conversation_id: str) -> Conversation:
    conversation = await storage.get_conversation(tenant_id, conversation_id)
    if conversation is None or conversation.is_removed:
        raise ConversationNotFound(tenant_id, conversation_id)
    return conversation


# ==================== Session Endpoints ====================


@router.post(
    "/tenants/{tenant_id}/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_session(tenant_id: str, data: SessionCreate, sessions: SessionsDep) -> SessionResponse:
    """Create a session and start provisioning on the WhatsApp service."""
    session = await sessions.create_session(tenant_id, data.phone_number, data.name, data.user_id)
    return _session_response(session)


@router.get("/tenants/{tenant_id}/sessions", response_model=list[SessionResponse])
async def list_sessions(tenant_id: str, sessions: SessionsDep) -> list[SessionResponse]:
    return [_session_response(s) for s in await sessions.list_sessions(tenant_id)]


@router.get("/tenants/{tenant_id}/sessions/{session_id}/qr-code")
async def get_qr_code(tenant_id: str, session_id: str, sessions: SessionsDep) -> dict[str, Any]:
    return await sessions.get_qr_code(tenant_id, session_id)


@router.post("/tenants/{tenant_id}/sessions/{session_id}/disconnect", response_model=SessionResponse)
async def disconnect_session(tenant_id: str, session_id: str, sessions: SessionsDep) -> SessionResponse:
    return _session_response(await sessions.disconnect_session(tenant_id, session_id))


@router.delete("/tenants/{tenant_id}/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(tenant_id: str, session_id: str, sessions: SessionsDep) -> None:
    """Remove a session; later webhooks for it are acknowledged and ignored."""
    await sessions.remove_session(tenant_id, session_id)


# ==================== Agent Endpoints ====================


@router.post("/tenants/{tenant_id}/agents", status_code=status.HTTP_201_CREATED)
async def create_agent(tenant_id: str, data: AgentCreate, storage: StorageDep) -> AIAgent:
    agent = AIAgent(id=str(uuid.uuid4()), tenant_id=tenant_id, **data.model_dump())
    await storage.save_agent(agent)

    logger.info("Created AI agent", tenant_id=tenant_id, agent_id=agent.id, session_id=agent.session_id)

    return agent


@router.get("/tenants/{tenant_id}/agents")
async def list_agents(tenant_id: str, storage: StorageDep) -> list[AIAgent]:
    return await storage.list_agents(tenant_id)


# ==================== Conversation Endpoints ====================


@router.get("/tenants/{tenant_id}/conversations/{conversation_id}/messages")
async def get_conversation_messages(
    tenant_id: str,
    conversation_id: str,
    storage: StorageDep,
    limit: int = 50,
) -> dict[str, Any]:
    """Get messages for a conversation."""
    await _get_conversation(storage, tenant_id, conversation_id)
    messages = await storage.list_messages(tenant_id, conversation_id, limit=limit)

    return {
        "conversation_id": conversation_id,
        "count": len(messages),
        "messages": [
            {
                "id": m.id,
                "content": m.content,
                "direction": m.direction.value,
                "status": m.status.value,
                "sender_name": m.sender_name,
                "created_at": m.created_at.isoformat(),
            }
            for m in messages
        ],
    }


@router.post(
    "/tenants/{tenant_id}/conversations/{conversation_id}/messages",
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    tenant_id: str,
    conversation_id: str,
    data: SendText,
    storage: StorageDep,
    messages: MessagesDep,
) -> dict[str, Any]:
    """Send a human reply through WhatsApp."""
    conversation = await _get_conversation(storage, tenant_id, conversation_id)
    message = await messages.send_text(
        tenant_id, conversation, data.text, sender_id=data.sender_id, sender_name=data.sender_name
    )
    return {
        "id": message.id,
        "provider_message_id": message.provider_message_id,
        "status": message.status.value,
    }


@router.post("/tenants/{tenant_id}/conversations/{conversation_id}/history")
async def fetch_history(
    tenant_id: str,
    conversation_id: str,
    storage: StorageDep,
    messages: MessagesDep,
    count: int = 50,
) -> dict[str, Any]:
    conversation = await _get_conversation(storage, tenant_id, conversation_id)
    return await messages.fetch_history(tenant_id, conversation, count)


@router.post("/tenants/{tenant_id}/conversations/{conversation_id}/summary")
async def summarize_conversation(
    tenant_id: str,
    conversation_id: str,
    storage: StorageDep,
    gateway: GatewayDep,
) -> dict[str, Any]:
    await _get_conversation(storage, tenant_id, conversation_id)
    messages = await storage.list_messages(tenant_id, conversation_id, limit=8)
    result = await gateway.summarize(
        tenant_id,
        [{"direction": m.direction.value, "content": m.content} for m in messages],
    )
    return result.to_dict()


# ==================== AI Feature Endpoints ====================


@router.get("/ai/model")
async def get_model_info(gateway: GatewayDep) -> dict[str, Any]:
    return gateway.get_model_info()


@router.post("/tenants/{tenant_id}/ai/autofill")
async def autofill(tenant_id: str, data: AutofillRequest, gateway: GatewayDep) -> dict[str, Any]:
    return await gateway.autofill(tenant_id, data.card, data.comments)


@router.post("/tenants/{tenant_id}/ai/email-draft")
async def email_draft(tenant_id: str, data: EmailDraftRequest, gateway: GatewayDep) -> dict[str, Any]:
    result = await gateway.email_draft(tenant_id, data.purpose, data.contact, data.tone)
    return result.to_dict()


@router.post("/tenants/{tenant_id}/ai/lead-analysis")
async def lead_analysis(tenant_id: str, lead: dict[str, Any], gateway: GatewayDep) -> dict[str, Any]:
    return await gateway.lead_analysis(tenant_id, lead)


# ==================== Usage Endpoints ====================


@router.get("/tenants/{tenant_id}/usage")
async def get_usage(tenant_id: str, quota: QuotaDep) -> dict[str, Any]:
    """Token usage, limits and recent history for a tenant."""
    return await quota.get_usage_stats(tenant_id)


# ==================== Learning Endpoints ====================


@router.get("/tenants/{tenant_id}/learning/stats")
async def get_learning_stats(tenant_id: str, learning: LearningDep) -> dict[str, Any]:
    return await learning.get_stats(tenant_id)


@router.post("/tenants/{tenant_id}/learning/feedback", status_code=status.HTTP_201_CREATED)
async def record_feedback(tenant_id: str, data: FeedbackCreate, learning: LearningDep) -> dict[str, Any]:
    record = await learning.record_feedback(tenant_id, **data.model_dump())

    logger.info("Recorded AI feedback", tenant_id=tenant_id, rating=record.rating.value)

    return {"id": record.id, "rating": record.rating.value}


@router.post("/tenants/{tenant_id}/learning/feedback/process")
async def process_feedback(tenant_id: str, learning: LearningDep, limit: int = 100) -> dict[str, int]:
    """Promote unprocessed feedback into FAQ entries and corrections."""
    return {"processed": await learning.process_pending_feedback(tenant_id, limit=limit)}


@router.get("/tenants/{tenant_id}/learning/faqs")
async def list_faqs(tenant_id: str, storage: StorageDep, limit: int = 50) -> dict[str, Any]:
    faqs = await storage.list_faqs(tenant_id, limit=limit)
    return {
        "tenant_id": tenant_id,
        "count": len(faqs),
        "faqs": [
            {
                "id": f.id,
                "question": f.question,
                "answer": f.answer,
                "times_asked": f.times_asked,
                "helpfulness_score": f.helpfulness_score,
            }
            for f in faqs
        ],
    }
