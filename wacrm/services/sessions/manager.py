"""Session manager - provisioning of WhatsApp sessions on the channel service."""

import uuid
from typing import Any

import structlog

from wacrm.core.exceptions import ChannelError, SessionNotFound
from wacrm.models import Lifecycle, Session, SessionStatus
from wacrm.models.conversation import normalize_phone
from wacrm.services.channels.base import ChannelClient
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()


class SessionManager:
    """Creates, connects and removes channel sessions.

    Handles:
    - Provisioning on the channel service (status ``connecting``, ``failed`` on error)
    - Reuse of a previous session for the same phone number
    - Disconnect and removal (lifecycle ``removed``, never hard-deleted)
    """

    def __init__(self, storage: StorageBackend, channel: ChannelClient) -> None:
        self.storage = storage
        self.channel = channel

    async def create_session(
        self,
        tenant_id: str,
        phone_number: str,
        name: str | None = None,
        user_id: str | None = None,
    ) -> Session:
        """Create (or revive) a session and ask the channel service to start it.

        Args:
            tenant_id: Owning tenant
            phone_number: Number to connect, any formatting
            name: Display name
            user_id: Owning user; None makes the session global

        Returns:
            The session, in ``connecting`` or ``failed`` status
        """
        phone = normalize_phone(phone_number)
        session = await self._find_by_phone(tenant_id, phone)

        if session is None:
            session = Session(
                id=str(uuid.uuid4()),
                tenant_id=tenant_id,
                user_id=user_id,
                name=name,
                phone_number=phone,
            )
        else:
            logger.info("Reusing existing session for phone", session_id=session.id, tenant_id=tenant_id)
            session.lifecycle = Lifecycle.ACTIVE
            session.user_id = user_id
            session.name = name or session.name
            session.qr_code = None
            session.status = SessionStatus.CONNECTING

        await self.storage.save_session(session)

        try:
            await self.channel.create_session(session.id, phone)
        except ChannelError as e:
            logger.error("Failed to provision session", session_id=session.id, error=e.message)
            session.transition(SessionStatus.FAILED)
            return await self.storage.save_session(session)

        logger.info("Session created", session_id=session.id, tenant_id=tenant_id)
        return session

    async def get_session(self, tenant_id: str, session_id: str) -> Session:
        session = await self.storage.get_session(session_id)
        if session is None or session.tenant_id != tenant_id or session.is_removed:
            raise SessionNotFound(session_id)
        return session

    async def list_sessions(self, tenant_id: str) -> list[Session]:
        return await self.storage.list_sessions(tenant_id)

    async def get_qr_code(self, tenant_id: str, session_id: str) -> dict[str, Any]:
        """Latest QR code, from the stored session or the channel service."""
        session = await self.get_session(tenant_id, session_id)
        if session.qr_code:
            return {"qr_code": session.qr_code, "status": session.status.value}

        data = await self.channel.get_qr_code(session.id)
        return {"qr_code": data.get("qrCode") or data.get("qr"), "status": session.status.value}

    async def disconnect_session(self, tenant_id: str, session_id: str) -> Session:
        session = await self.get_session(tenant_id, session_id)
        await self.channel.disconnect_session(session.id)

        session.transition(SessionStatus.DISCONNECTED)
        session.qr_code = None
        logger.info("Session disconnected", session_id=session.id)
        return await self.storage.save_session(session)

    async def remove_session(self, tenant_id: str, session_id: str) -> Session:
        """Delete on the channel service and mark the session removed.

        Channel errors are logged; the local removal always happens so late
        webhooks for this session are ignored.
        """
        session = await self.get_session(tenant_id, session_id)
        try:
            await self.channel.delete_session(session.id)
        except ChannelError as e:
            logger.warning("Channel delete failed, removing locally", session_id=session.id, error=e.message)

        session.lifecycle = Lifecycle.REMOVED
        session.qr_code = None
        logger.info("Session removed", session_id=session.id)
        return await self.storage.save_session(session)

    async def _find_by_phone(self, tenant_id: str, phone: str) -> Session | None:
        if not phone:
            return None
        for session in await self.storage.list_sessions(tenant_id, include_removed=True):
            if normalize_phone(session.phone_number) == phone:
                return session
        return None
