"""Custom exceptions for the application."""

from typing import Any


class AppException(Exception):
    """Base exception for application errors."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ConfigurationError(AppException):
    """Raised when there's a configuration problem."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR", details=details)


class SessionNotFound(AppException):
    """Raised when a channel session is not found."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Session not found: {session_id}",
            code="SESSION_NOT_FOUND",
            details={"session_id": session_id},
        )


class ConversationNotFound(AppException):
    """Raised when a conversation is not found for a tenant."""

    def __init__(self, tenant_id: str, conversation_id: str) -> None:
        super().__init__(
            f"Conversation not found: {conversation_id}",
            code="CONVERSATION_NOT_FOUND",
            details={"tenant_id": tenant_id, "conversation_id": conversation_id},
        )


class DuplicateRecordError(AppException):
    """Raised by storage when a uniqueness constraint would be violated."""

    def __init__(self, entity: str, key: str) -> None:
        super().__init__(
            f"Duplicate {entity}: {key}",
            code="DUPLICATE_RECORD",
            details={"entity": entity, "key": key},
        )
        self.entity = entity
        self.key = key


class InvalidSessionTransition(AppException):
    """Raised when a session event requests a transition the state machine forbids."""

    def __init__(self, session_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Session {session_id} cannot move from {current} to {requested}",
            code="INVALID_SESSION_TRANSITION",
            details={"session_id": session_id, "current": current, "requested": requested},
        )


class ChannelError(AppException):
    """Raised when channel operations fail."""

    def __init__(self, message: str, channel: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            message,
            code="CHANNEL_ERROR",
            details={"channel": channel, **(details or {})},
        )


class UnresolvableRecipient(ChannelError):
    """Raised when an ephemeral contact id has no usable phone number to send to."""

    def __init__(self, conversation_id: str, remote_jid: str) -> None:
        super().__init__(
            "Cannot send: contact has a temporary identifier (LID) and no valid phone number",
            channel="whatsapp",
            details={"conversation_id": conversation_id, "remote_jid": remote_jid},
        )
        self.code = "UNRESOLVABLE_RECIPIENT"
