"""Conversation identity resolver - find-or-create a conversation for an inbound message.

Direct chats may arrive under a stable phone JID, an ephemeral LID, or both (the
LID plus the phone JID the channel resolved it to). Resolution order:

1. exact (session, remote_jid) match, any lifecycle
2. current JID is a LID: match a conversation tagged with that LID
3. event carries ``originalLidJid``: match the conversation keyed by that LID and
   migrate it to the stable JID, keeping the LID for cross-reference
4. normalized phone match (10-15 digits), merging duplicates into the best one
5. create

Creation is optimistic: a uniqueness violation means another event created the
conversation first, so it is re-read and treated as the match.
"""

import uuid
from dataclasses import dataclass

import structlog

from wacrm.core.exceptions import DuplicateRecordError
from wacrm.core.timeutils import utcnow
from wacrm.models import Conversation, Lifecycle, MessageEvent, Session
from wacrm.models.conversation import (
    PHONE_SUFFIX,
    is_plausible_phone,
    normalize_phone,
    strip_jid_suffix,
)
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()

DEFAULT_GROUP_NAME = "Grupo"

# Phone-fallback candidate scoring
STABLE_JID_SCORE = 1_000_000
MESSAGE_SCORE = 100


@dataclass
class ContactData:
    """Contact fields extracted from a message event."""

    phone_number: str | None = None
    contact_name: str | None = None
    group_name: str | None = None
    is_lid: bool = False
    original_lid_jid: str | None = None
    profile_picture: str | None = None


def extract_contact_data(event: MessageEvent) -> ContactData:
    """Pull phone, name and identity hints out of a message event."""
    if event.group:
        return ContactData(
            phone_number=event.sender_phone or strip_jid_suffix(event.participant or ""),
            contact_name=None if event.from_me else (event.sender_name or event.push_name),
            group_name=event.group_name or DEFAULT_GROUP_NAME,
        )

    return ContactData(
        phone_number=event.sender_phone or strip_jid_suffix(event.remote_jid),
        contact_name=None if event.from_me else event.push_name,
        is_lid=event.ephemeral,
        original_lid_jid=event.original_lid_jid,
        profile_picture=event.profile_picture,
    )


class ConversationResolver:
    """Find-or-create conversations under identity ambiguity and concurrent first contact.

    Handles:
    - Stable vs. ephemeral (LID) identifier matching and migration
    - Phone-number fallback with duplicate merging
    - Restore of removed conversations instead of duplicating them
    - Insert races (re-read the winner, count the message on it)
    """

    def __init__(self, storage: StorageBackend) -> None:
        self.storage = storage

    async def resolve(self, session: Session, event: MessageEvent) -> Conversation | None:
        """Resolve the conversation for ``event`` and apply per-message upkeep.

        Returns:
            The matched, restored or created conversation; None only when an
            insert race left no visible row
        """
        tenant_id = session.tenant_id
        remote_jid = event.remote_jid
        is_group = event.group
        contact = extract_contact_data(event)

        try:
            conversation = await self._match(session, remote_jid, is_group, contact)

            if conversation is None:
                return await self._create(session, remote_jid, is_group, contact)

            if conversation.is_removed:
                return await self._restore(session, conversation, is_group, contact)

            return await self._update_existing(session, conversation, is_group, contact)
        except DuplicateRecordError:
            return await self._handle_race(tenant_id, session, remote_jid)

    # ==================== Matching ====================

    async def _match(
        self,
        session: Session,
        remote_jid: str,
        is_group: bool,
        contact: ContactData,
    ) -> Conversation | None:
        tenant_id = session.tenant_id

        conversation = await self.storage.find_conversation_by_jid(tenant_id, session.id, remote_jid)
        if conversation is not None or is_group:
            return conversation

        if contact.is_lid:
            conversation = await self.storage.find_conversation_by_lid(tenant_id, session.id, remote_jid)
        elif contact.original_lid_jid:
            conversation = await self._migrate_from_lid(session, remote_jid, contact.original_lid_jid)

        if conversation is None:
            conversation = await self._match_by_phone(session, remote_jid, contact)

        return conversation

    async def _migrate_from_lid(
        self,
        session: Session,
        remote_jid: str,
        original_lid: str,
    ) -> Conversation | None:
        conversation = await self.storage.find_conversation_by_jid(
            session.tenant_id, session.id, original_lid
        )
        if conversation is None:
            return None

        conversation.remote_jid = remote_jid
        conversation.lid_jid = original_lid
        conversation = await self.storage.save_conversation(conversation)
        logger.info(
            "Conversation JID updated from LID to phone",
            conversation_id=conversation.id,
            lid=original_lid,
            phone_jid=remote_jid,
        )
        return conversation

    async def _match_by_phone(
        self,
        session: Session,
        remote_jid: str,
        contact: ContactData,
    ) -> Conversation | None:
        phone = normalize_phone(contact.phone_number or strip_jid_suffix(remote_jid))
        if not is_plausible_phone(phone):
            return None

        candidates = [
            conv
            for conv in await self.storage.list_conversations(
                session.tenant_id, session.id, is_group=False, include_removed=False
            )
            if conv.normalized_phone == phone
        ]
        if not candidates:
            return None

        best = await self._select_best(session.tenant_id, candidates)
        logger.info(
            "Conversation matched by normalized phone",
            normalized_phone=phone,
            candidates_found=len(candidates),
            selected=best.id,
            existing_jid=best.remote_jid,
            new_jid=remote_jid,
        )

        if len(candidates) > 1:
            await self._merge_duplicates(session.tenant_id, candidates, best)
        return best

    async def _select_best(self, tenant_id: str, candidates: list[Conversation]) -> Conversation:
        """Prefer stable phone JIDs, then more messages, then most recent activity."""
        scored = []
        for conv in candidates:
            score = 0.0
            if conv.remote_jid.endswith(PHONE_SUFFIX):
                score += STABLE_JID_SCORE
            score += await self.storage.count_messages(tenant_id, conv.id) * MESSAGE_SCORE
            if conv.last_message_at is not None:
                score += conv.last_message_at.timestamp()
            scored.append((score, conv))

        scored.sort(key=lambda item: item[0], reverse=True)
        return scored[0][1]

    async def _merge_duplicates(
        self,
        tenant_id: str,
        candidates: list[Conversation],
        keep: Conversation,
    ) -> None:
        """Move duplicates' messages into ``keep`` and mark the duplicates removed."""
        duplicates = [conv for conv in candidates if conv.id != keep.id]
        try:
            for duplicate in duplicates:
                moved = await self.storage.reassign_messages(tenant_id, duplicate.id, keep.id)
                duplicate.lifecycle = Lifecycle.REMOVED
                await self.storage.save_conversation(duplicate)
                logger.info(
                    "Merged duplicate conversation",
                    kept=keep.id,
                    duplicate=duplicate.id,
                    duplicate_jid=duplicate.remote_jid,
                    messages_moved=moved,
                )
        except Exception as e:
            logger.error(
                "Failed to merge duplicate conversations",
                kept=keep.id,
                error=str(e),
            )

    # ==================== Upkeep ====================

    async def _create(
        self,
        session: Session,
        remote_jid: str,
        is_group: bool,
        contact: ContactData,
    ) -> Conversation:
        lid_jid = remote_jid if contact.is_lid else contact.original_lid_jid
        group_name = (contact.group_name or DEFAULT_GROUP_NAME) if is_group else None

        conversation = Conversation(
            id=str(uuid.uuid4()),
            tenant_id=session.tenant_id,
            session_id=session.id,
            remote_jid=remote_jid,
            lid_jid=None if is_group else lid_jid,
            is_group=is_group,
            group_name=group_name,
            contact_phone=(
                contact.phone_number or strip_jid_suffix(remote_jid)
                if is_group
                else contact.phone_number
            ),
            contact_name=group_name if is_group else contact.contact_name,
            profile_picture=contact.profile_picture,
            assigned_user_id=session.user_id,
            last_message_at=utcnow(),
            unread_count=1,
        )
        conversation = await self.storage.insert_conversation(conversation)
        logger.info(
            "Created conversation",
            conversation_id=conversation.id,
            tenant_id=session.tenant_id,
            session_id=session.id,
            remote_jid=remote_jid,
            is_group=is_group,
        )
        return conversation

    async def _restore(
        self,
        session: Session,
        conversation: Conversation,
        is_group: bool,
        contact: ContactData,
    ) -> Conversation:
        conversation.lifecycle = Lifecycle.ACTIVE
        conversation.is_group = is_group
        conversation.is_archived = False
        conversation.unread_count = 1
        conversation.last_message_at = utcnow()

        if is_group:
            conversation.group_name = contact.group_name or DEFAULT_GROUP_NAME
            conversation.contact_name = conversation.group_name
            conversation.contact_phone = contact.phone_number or strip_jid_suffix(conversation.remote_jid)
        else:
            conversation.group_name = None
            conversation.contact_name = contact.contact_name or conversation.contact_name
            conversation.contact_phone = contact.phone_number or conversation.contact_phone
        conversation.profile_picture = contact.profile_picture or conversation.profile_picture

        if conversation.assigned_user_id is None and session.user_id:
            conversation.assigned_user_id = session.user_id

        conversation = await self.storage.save_conversation(conversation)
        logger.info("Restored conversation", conversation_id=conversation.id, tenant_id=session.tenant_id)
        return conversation

    async def _update_existing(
        self,
        session: Session,
        conversation: Conversation,
        is_group: bool,
        contact: ContactData,
    ) -> Conversation:
        updated = await self.storage.increment_unread(session.tenant_id, conversation.id, utcnow())
        if updated is not None:
            conversation = updated

        # Counters were bumped atomically above; write back only the profile fields
        changes: dict[str, str] = {}
        if conversation.assigned_user_id is None and session.user_id:
            changes["assigned_user_id"] = session.user_id

        if is_group and contact.group_name and contact.group_name != conversation.group_name:
            changes["group_name"] = contact.group_name
        elif not is_group and contact.contact_name and contact.contact_name != conversation.contact_name:
            changes["contact_name"] = contact.contact_name

        if contact.profile_picture and contact.profile_picture != conversation.profile_picture:
            changes["profile_picture"] = contact.profile_picture

        if contact.original_lid_jid and not conversation.lid_jid:
            changes["lid_jid"] = contact.original_lid_jid

        if not is_group and not conversation.contact_phone and contact.phone_number:
            changes["contact_phone"] = contact.phone_number

        if changes:
            updated = await self.storage.update_conversation_fields(
                session.tenant_id, conversation.id, changes
            )
            if updated is not None:
                conversation = updated
        return conversation

    async def _handle_race(
        self,
        tenant_id: str,
        session: Session,
        remote_jid: str,
    ) -> Conversation | None:
        conversation = await self.storage.find_conversation_by_jid(tenant_id, session.id, remote_jid)
        if conversation is None:
            logger.error(
                "Failed to find conversation after unique constraint violation",
                session_id=session.id,
                remote_jid=remote_jid,
            )
            return None

        if conversation.is_removed:
            conversation.lifecycle = Lifecycle.ACTIVE
            conversation = await self.storage.save_conversation(conversation)

        updated = await self.storage.increment_unread(tenant_id, conversation.id, utcnow())
        logger.info("Conversation created concurrently, reusing", conversation_id=conversation.id)
        return updated or conversation
