"""WhatsApp channel client for the self-hosted WhatsApp web service."""

import base64
from typing import Any

import httpx
import structlog

from wacrm.core.config import settings
from wacrm.core.exceptions import ChannelError, UnresolvableRecipient
from wacrm.models import Conversation, SendResult
from wacrm.models.conversation import PHONE_SUFFIX, normalize_phone
from wacrm.services.channels.base import ChannelClient

logger = structlog.get_logger()

MIN_SEND_PHONE_DIGITS = 10


def resolve_send_jid(conversation: Conversation) -> str:
    """Pick the identifier to send to.

    Stable identifiers are used as-is. An ephemeral (LID) identifier is
    replaced by the contact's phone JID; without a usable phone the send
    fails with UnresolvableRecipient.
    """
    if not conversation.is_lid:
        return conversation.remote_jid

    digits = normalize_phone(conversation.contact_phone)
    if len(digits) >= MIN_SEND_PHONE_DIGITS:
        resolved = f"{digits}{PHONE_SUFFIX}"
        logger.info(
            "Resolved LID to phone for sending",
            conversation_id=conversation.id,
            original_jid=conversation.remote_jid,
            resolved_jid=resolved,
        )
        return resolved

    logger.error(
        "Cannot send to LID JID - no valid phone number available",
        conversation_id=conversation.id,
        remote_jid=conversation.remote_jid,
        contact_phone=conversation.contact_phone,
    )
    raise UnresolvableRecipient(conversation.id, conversation.remote_jid)


class WhatsAppChannelClient(ChannelClient):
    """HTTP client for the WhatsApp web service.

    Handles:
    - Text and media sends (POST /messages/send/text, /messages/send/media)
    - History fetch (POST /sessions/{id}/fetch-history)
    - Session provisioning (create, QR code, disconnect, delete)

    Transport errors and non-2xx answers raise ChannelError. Nothing is retried:
    a repeated send would duplicate the message on the contact's phone.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        media_timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.whatsapp_service_url).rstrip("/")
        self.timeout = timeout or settings.whatsapp_timeout_seconds
        self.media_timeout = media_timeout or settings.whatsapp_media_timeout_seconds
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

    @property
    def channel_name(self) -> str:
        return "whatsapp"

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(
                method, path, json=json, timeout=timeout or self.timeout
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "WhatsApp service request failed",
                method=method,
                path=path,
                status=e.response.status_code,
                response=e.response.text[:500],
            )
            raise ChannelError(
                f"WhatsApp service returned {e.response.status_code}",
                channel=self.channel_name,
                details={"path": path, "status": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            logger.error("WhatsApp service unreachable", method=method, path=path, error=str(e))
            raise ChannelError(
                f"WhatsApp service error: {e}",
                channel=self.channel_name,
                details={"path": path},
            ) from e

        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _message_id(body: dict[str, Any]) -> str | None:
        data = body.get("data") or {}
        return data.get("messageId") if isinstance(data, dict) else None

    # ==================== Messages ====================

    async def send_text(self, session_id: str, to: str, text: str) -> SendResult:
        body = await self._request(
            "POST",
            "/messages/send/text",
            json={"sessionId": session_id, "to": to, "text": text},
        )
        result = SendResult(provider_message_id=self._message_id(body), to=to)
        logger.info(
            "Sent WhatsApp message",
            session_id=session_id,
            to=to,
            message_id=result.provider_message_id,
        )
        return result

    async def send_media(
        self,
        session_id: str,
        to: str,
        media_type: str,
        media: bytes,
        mimetype: str,
        filename: str,
        caption: str | None = None,
    ) -> SendResult:
        payload: dict[str, Any] = {
            "sessionId": session_id,
            "to": to,
            "type": media_type,
            "media": base64.b64encode(media).decode("ascii"),
            "mimetype": mimetype,
            "filename": filename,
        }
        if caption:
            payload["caption"] = caption

        body = await self._request(
            "POST", "/messages/send/media", json=payload, timeout=self.media_timeout
        )
        result = SendResult(provider_message_id=self._message_id(body), to=to)
        logger.info(
            "Sent WhatsApp media",
            session_id=session_id,
            to=to,
            media_type=media_type,
            message_id=result.provider_message_id,
        )
        return result

    async def fetch_history(self, session_id: str, jid: str, count: int = 50) -> list[dict[str, Any]]:
        body = await self._request(
            "POST",
            f"/sessions/{session_id}/fetch-history",
            json={"jid": jid, "count": count},
        )
        data = body.get("data") or []
        return data if isinstance(data, list) else []

    # ==================== Sessions ====================

    async def create_session(self, session_id: str, phone_number: str | None) -> None:
        await self._request(
            "POST", "/sessions", json={"sessionId": session_id, "phoneNumber": phone_number}
        )

    async def get_qr_code(self, session_id: str) -> dict[str, Any]:
        body = await self._request("GET", f"/sessions/{session_id}/qr-code")
        data = body.get("data") or {}
        return data if isinstance(data, dict) else {}

    async def disconnect_session(self, session_id: str) -> None:
        await self._request("POST", f"/sessions/{session_id}/disconnect")

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/sessions/{session_id}")

    async def close(self) -> None:
        await self._client.aclose()


# Singleton instance
_whatsapp_client: WhatsAppChannelClient | None = None


def get_whatsapp_client() -> WhatsAppChannelClient:
    """Get or create the WhatsApp channel client singleton."""
    global _whatsapp_client
    if _whatsapp_client is None:
        _whatsapp_client = WhatsAppChannelClient()
    return _whatsapp_client
