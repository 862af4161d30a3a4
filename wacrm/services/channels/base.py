"""Abstract base class for channel clients."""

from abc import ABC, abstractmethod
from typing import Any

from wacrm.models import SendResult


class ChannelClient(ABC):
    """Outbound side of a messaging channel service.

    Inbound events arrive through the webhook; everything the service asks
    the channel to do goes through this interface.
    """

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Get the channel name identifier."""
        ...

    @abstractmethod
    async def send_text(self, session_id: str, to: str, text: str) -> SendResult:
        """Send a text message.

        Args:
            session_id: Session to send from
            to: Recipient channel identifier
            text: Message text

        Returns:
            SendResult with the provider message id
        """
        ...

    @abstractmethod
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
        """Send a media message (base64-encoded on the wire)."""
        ...

    @abstractmethod
    async def fetch_history(self, session_id: str, jid: str, count: int = 50) -> list[dict[str, Any]]:
        """Fetch recent raw message payloads of one chat."""
        ...

    @abstractmethod
    async def create_session(self, session_id: str, phone_number: str | None) -> None:
        ...

    @abstractmethod
    async def get_qr_code(self, session_id: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def disconnect_session(self, session_id: str) -> None:
        ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        ...

    async def close(self) -> None:
        """Release client resources."""
        return None
