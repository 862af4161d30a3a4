"""AI agent service - automatic replies to inbound WhatsApp messages."""

from wacrm.services.agent.orchestrator import AutoReplyOutcome, ResponseOrchestrator
from wacrm.services.agent.responder import ChatReply, ChatResponder, ReplySource

__all__ = [
    "AutoReplyOutcome",
    "ChatReply",
    "ChatResponder",
    "ReplySource",
    "ResponseOrchestrator",
]
