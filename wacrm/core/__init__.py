"""Core module - configuration and utilities."""

from wacrm.core.config import settings
from wacrm.core.exceptions import (
    AppException,
    ChannelError,
    ConfigurationError,
    ConversationNotFound,
    DuplicateRecordError,
    InvalidSessionTransition,
    SessionNotFound,
    UnresolvableRecipient,
)
from wacrm.core.timeutils import utcnow

__all__ = [
    "settings",
    "utcnow",
    "AppException",
    "ChannelError",
    "ConfigurationError",
    "ConversationNotFound",
    "DuplicateRecordError",
    "InvalidSessionTransition",
    "SessionNotFound",
    "UnresolvableRecipient",
]
