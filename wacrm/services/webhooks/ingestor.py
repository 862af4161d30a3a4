"""Webhook ingestor - routes channel events to sessions, conversations and the AI agent."""

from datetime import timedelta
from typing import Any

import structlog
from pydantic import ValidationError

from wacrm.core.config import settings
from wacrm.core.exceptions import InvalidSessionTransition
from wacrm.core.timeutils import utcnow
from wacrm.models import (
    ConnectedEvent,
    DisconnectedEvent,
    LoggedOutEvent,
    Message,
    MessageEvent,
    MessageStatusEvent,
    QrCodeEvent,
    Session,
    SessionStatus,
)
from wacrm.models.events import KNOWN_EVENTS, webhook_event_adapter
from wacrm.services.agent.orchestrator import ResponseOrchestrator
from wacrm.services.conversation.resolver import ConversationResolver
from wacrm.services.messages.store import MessageStore
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()

# Protocol-level message subtypes that never become conversation messages
SYSTEM_MESSAGE_TYPES = frozenset(
    {
        "messageContextInfo",
        "senderKeyDistributionMessage",
        "protocolMessage",
        "reactionMessage",
        "ephemeralMessage",
        "viewOnceMessage",
        "deviceSentMessage",
        "encReactionMessage",
        "unknown",
    }
)


def _ack(success: bool = True, message: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": success}
    if message:
        body["message"] = message
    return body


def is_ai_eligible(event: MessageEvent) -> bool:
    """Only fresh inbound direct text messages may trigger an automatic reply."""
    if event.from_me or event.group or event.type != "text" or event.is_history:
        return False
    if event.timestamp is not None:
        age = utcnow() - event.timestamp
        if age > timedelta(seconds=settings.ai_agent_recent_threshold_seconds):
            return False
    return True


class WebhookIngestor:
    """Entry point for events posted by the WhatsApp channel service.

    Handles:
    - Session state events (qr_code, connected, disconnected, logged_out)
    - Inbound and phone-sent messages (resolve, persist, maybe auto-reply)
    - Delivery receipts

    Never raises for a bad event; the caller always acknowledges the webhook.
    """

    def __init__(
        self,
        storage: StorageBackend,
        resolver: ConversationResolver,
        messages: MessageStore,
        orchestrator: ResponseOrchestrator | None = None,
    ) -> None:
        self.storage = storage
        self.resolver = resolver
        self.messages = messages
        self.orchestrator = orchestrator

    async def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Process one webhook payload.

        Returns:
            ``{"success": bool, "message": str?}`` acknowledgement body
        """
        session_id = payload.get("sessionId")
        event_name = payload.get("event")
        if not session_id:
            logger.warning("Webhook without sessionId", event=event_name)
            return _ack(False, "Missing sessionId")

        session = await self.storage.get_session(session_id)
        if session is None:
            logger.warning("Session not found for webhook", session_id=session_id, event=event_name)
            return _ack(False, "Session not found")

        if session.is_removed:
            logger.info("Ignoring webhook for removed session", session_id=session_id, event=event_name)
            return _ack(True, "Session deleted, ignoring webhook")

        if event_name not in KNOWN_EVENTS:
            logger.warning("Unknown webhook event", session_id=session_id, event=event_name)
            return _ack()

        try:
            event = webhook_event_adapter.validate_python(payload)
        except ValidationError as e:
            logger.warning("Invalid webhook payload", session_id=session_id, event=event_name, error=str(e))
            return _ack(False, "Invalid payload")

        if isinstance(event, MessageEvent):
            await self._handle_message(session, event)
        elif isinstance(event, MessageStatusEvent):
            await self.messages.update_status(session.tenant_id, event.message_id, event.status)
        else:
            await self._handle_session_event(session, event)

        return _ack()

    # ==================== Session Events ====================

    async def _handle_session_event(
        self,
        session: Session,
        event: QrCodeEvent | ConnectedEvent | DisconnectedEvent | LoggedOutEvent,
    ) -> None:
        target = SessionStatus(event.event)
        try:
            session.transition(target)
        except InvalidSessionTransition as e:
            logger.warning("Ignoring session event", session_id=session.id, error=e.message)
            return

        now = utcnow()
        if isinstance(event, QrCodeEvent):
            session.qr_code = event.qr_code
        elif isinstance(event, ConnectedEvent):
            session.phone_number = event.phone_number or session.phone_number
            session.connected_at = now
            session.last_activity_at = now
            session.qr_code = None
        else:
            session.qr_code = None

        await self.storage.save_session(session)
        logger.info("Session status updated", session_id=session.id, status=target.value)

    # ==================== Messages ====================

    async def _handle_message(self, session: Session, event: MessageEvent) -> Message | None:
        if event.type in SYSTEM_MESSAGE_TYPES:
            logger.debug("Skipping system message", session_id=session.id, type=event.type)
            return None

        conversation = await self.resolver.resolve(session, event)
        if conversation is None:
            logger.warning("Could not resolve conversation", session_id=session.id, jid=event.remote_jid)
            return None

        message = await self.messages.create_incoming(session.tenant_id, conversation, event)
        if message is None:
            return None

        logger.info(
            "Message stored",
            session_id=session.id,
            conversation_id=conversation.id,
            direction=message.direction.value,
        )

        if self.orchestrator is not None and is_ai_eligible(event):
            self.orchestrator.schedule(session, conversation, message)

        return message
