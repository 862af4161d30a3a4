"""Message store - idempotent persistence of inbound and outbound messages."""

import uuid
from typing import Any

import structlog
from pydantic import ValidationError

from wacrm.core.exceptions import ConfigurationError, DuplicateRecordError
from wacrm.core.timeutils import utcnow
from wacrm.models import (
    Conversation,
    Message,
    MessageDirection,
    MessageEvent,
    MessageStatus,
)
from wacrm.models.message import STATUS_RANK
from wacrm.services.channels.base import ChannelClient
from wacrm.services.channels.whatsapp import resolve_send_jid
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()


class MessageStore:
    """Persistence of messages for one channel.

    Handles:
    - Inbound messages (exactly-once per provider message id)
    - Outbound messages (human or AI), advancing the conversation
    - Delivery status updates (forward-only, idempotent)
    - Sends and history fetches through the channel client
    """

    def __init__(self, storage: StorageBackend, channel: ChannelClient | None = None) -> None:
        self.storage = storage
        self.channel = channel

    # ==================== Inbound ====================

    async def create_incoming(
        self,
        tenant_id: str,
        conversation: Conversation,
        event: MessageEvent,
    ) -> Message | None:
        """Persist one message event.

        Returns:
            The stored message, or None when the provider id was already stored
        """
        if event.message_id:
            existing = await self.storage.get_message_by_provider_id(tenant_id, event.message_id)
            if existing is not None:
                logger.info("Message already exists, skipping", message_id=event.message_id)
                return None

        from_me = event.from_me
        message = Message(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            conversation_id=conversation.id,
            provider_message_id=event.message_id,
            direction=MessageDirection.OUTGOING if from_me else MessageDirection.INCOMING,
            type=event.type or "text",
            content=event.content,
            media_url=event.media_url,
            media_filename=event.media_filename,
            status=MessageStatus.SENT if from_me else MessageStatus.DELIVERED,
            sender_name=None if from_me else (event.sender_name or event.push_name),
            sender_phone=None if from_me else event.sender_phone,
            sent_at=event.timestamp,
        )

        try:
            return await self.storage.insert_message(message)
        except DuplicateRecordError:
            logger.info("Message stored concurrently, skipping", message_id=event.message_id)
            return None

    # ==================== Outbound ====================

    async def create_outgoing(
        self,
        tenant_id: str,
        conversation: Conversation,
        content: str | None,
        provider_message_id: str | None = None,
        message_type: str = "text",
        sender_id: str | None = None,
        sender_name: str | None = None,
        media_url: str | None = None,
        media_filename: str | None = None,
    ) -> Message:
        """Persist a reply and advance the conversation (activity now, unread cleared)."""
        now = utcnow()
        message = Message(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            conversation_id=conversation.id,
            provider_message_id=provider_message_id,
            direction=MessageDirection.OUTGOING,
            type=message_type,
            content=content,
            media_url=media_url,
            media_filename=media_filename,
            status=MessageStatus.SENT,
            sender_id=sender_id,
            sender_name=sender_name,
            created_at=now,
            sent_at=now,
        )

        try:
            message = await self.storage.insert_message(message)
        except DuplicateRecordError:
            # The channel echoed our own send back through the webhook first
            logger.info("Outgoing message already stored", message_id=provider_message_id)
            existing = await self.storage.get_message_by_provider_id(tenant_id, provider_message_id)
            if existing is None:
                raise
            existing.sender_id = sender_id or existing.sender_id
            existing.sender_name = sender_name or existing.sender_name
            message = await self.storage.save_message(existing)

        current = await self.storage.get_conversation(tenant_id, conversation.id) or conversation
        current.last_message_at = now
        current.unread_count = 0
        await self.storage.save_conversation(current)

        return message

    async def send_text(
        self,
        tenant_id: str,
        conversation: Conversation,
        text: str,
        sender_id: str | None = None,
        sender_name: str | None = None,
    ) -> Message:
        """Send a text through the channel, then store it.

        Raises:
            UnresolvableRecipient: ephemeral contact without a usable phone
            ChannelError: the channel service rejected the send
        """
        channel = self._require_channel()
        to = resolve_send_jid(conversation)
        result = await channel.send_text(conversation.session_id, to, text)
        return await self.create_outgoing(
            tenant_id,
            conversation,
            text,
            provider_message_id=result.provider_message_id,
            sender_id=sender_id,
            sender_name=sender_name,
        )

    async def send_media(
        self,
        tenant_id: str,
        conversation: Conversation,
        media_type: str,
        media: bytes,
        mimetype: str,
        filename: str,
        caption: str | None = None,
        sender_id: str | None = None,
    ) -> Message:
        """Send a media file through the channel, then store it."""
        channel = self._require_channel()
        to = resolve_send_jid(conversation)
        result = await channel.send_media(
            conversation.session_id, to, media_type, media, mimetype, filename, caption
        )
        return await self.create_outgoing(
            tenant_id,
            conversation,
            caption or filename,
            provider_message_id=result.provider_message_id,
            message_type=media_type,
            sender_id=sender_id,
            media_filename=filename,
        )

    # ==================== Status ====================

    async def update_status(
        self,
        tenant_id: str,
        provider_message_id: str,
        status: MessageStatus | str,
    ) -> Message | None:
        """Apply a delivery receipt.

        Unknown messages and unknown statuses are no-ops. Statuses never move
        backwards, except ``failed`` which is always applied.
        """
        try:
            status = MessageStatus(status)
        except ValueError:
            logger.warning("Unknown message status", message_id=provider_message_id, status=status)
            return None

        message = await self.storage.get_message_by_provider_id(tenant_id, provider_message_id)
        if message is None:
            logger.debug("Status for unknown message", message_id=provider_message_id)
            return None

        if status != MessageStatus.FAILED and message.status != MessageStatus.FAILED:
            if STATUS_RANK[status] < STATUS_RANK[message.status]:
                return message

        now = utcnow()
        message.status = status
        if status == MessageStatus.DELIVERED and message.delivered_at is None:
            message.delivered_at = now
        if status == MessageStatus.READ:
            message.read_at = message.read_at or now
            message.delivered_at = message.delivered_at or now

        return await self.storage.save_message(message)

    # ==================== History ====================

    async def fetch_history(
        self,
        tenant_id: str,
        conversation: Conversation,
        count: int = 50,
    ) -> dict[str, Any]:
        """Pull recent messages of a chat from the channel and store the new ones."""
        channel = self._require_channel()
        items = await channel.fetch_history(conversation.session_id, conversation.remote_jid, count)

        saved = 0
        for item in items:
            try:
                event = MessageEvent.model_validate(
                    {
                        "from": conversation.remote_jid,
                        **item,
                        "event": "message",
                        "sessionId": conversation.session_id,
                    }
                )
            except ValidationError as e:
                logger.warning("Skipping malformed history item", error=str(e))
                continue
            if await self.create_incoming(tenant_id, conversation, event):
                saved += 1

        latest = await self.storage.list_messages(tenant_id, conversation.id, limit=1)
        if latest:
            current = await self.storage.get_conversation(tenant_id, conversation.id) or conversation
            current.last_message_at = latest[-1].created_at
            await self.storage.save_conversation(current)

        logger.info(
            "Fetched conversation history",
            conversation_id=conversation.id,
            total_fetched=len(items),
            new_saved=saved,
        )
        return {"total_fetched": len(items), "new_saved": saved}

    def _require_channel(self) -> ChannelClient:
        if self.channel is None:
            raise ConfigurationError("MessageStore has no channel client configured")
        return self.channel
