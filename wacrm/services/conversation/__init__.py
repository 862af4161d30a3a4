"""Conversation service - identity resolution for inbound messages."""

from wacrm.services.conversation.resolver import (
    ContactData,
    ConversationResolver,
    extract_contact_data,
)

__all__ = ["ContactData", "ConversationResolver", "extract_contact_data"]
