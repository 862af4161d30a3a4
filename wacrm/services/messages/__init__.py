"""Message service - idempotent message persistence and sends."""

from wacrm.services.messages.store import MessageStore

__all__ = ["MessageStore"]
