"""Conversation model - one thread with a contact or group inside a session."""

import re
from datetime import datetime

from pydantic import BaseModel, Field

from wacrm.core.timeutils import utcnow
from wacrm.models.session import Lifecycle

JID_SUFFIX_RE = re.compile(r"@(s\.whatsapp\.net|c\.us|lid|g\.us)$")

LID_SUFFIX = "@lid"
PHONE_SUFFIX = "@s.whatsapp.net"
GROUP_SUFFIX = "@g.us"


def strip_jid_suffix(jid: str) -> str:
    """Remove the channel suffix from a JID (``5511...@s.whatsapp.net`` -> ``5511...``)."""
    return JID_SUFFIX_RE.sub("", jid)


def is_lid_jid(jid: str | None) -> bool:
    """Check whether a JID is an ephemeral (LID) identifier."""
    return bool(jid) and jid.endswith(LID_SUFFIX)


def normalize_phone(phone: str | None) -> str:
    """Keep only the digits of a phone number."""
    return re.sub(r"\D", "", phone or "")


def is_plausible_phone(digits: str) -> bool:
    """A normalized phone is usable for matching when it has 10-15 digits."""
    return 10 <= len(digits) <= 15


class Conversation(BaseModel):
    """A logical thread with a contact or a group, scoped to a session."""

    id: str = Field(..., description="Unique conversation identifier")
    tenant_id: str = Field(..., description="Tenant this conversation belongs to")
    session_id: str = Field(..., description="Session the conversation lives in")

    # Identity
    remote_jid: str = Field(..., description="Stable channel identifier (primary key within the session)")
    lid_jid: str | None = Field(default=None, description="Ephemeral identifier seen for this contact")
    contact_phone: str | None = None
    contact_name: str | None = None
    profile_picture: str | None = None

    # Groups
    is_group: bool = False
    group_name: str | None = None

    # Inbox state
    assigned_user_id: str | None = None
    is_pinned: bool = False
    is_archived: bool = False
    unread_count: int = 0
    lifecycle: Lifecycle = Lifecycle.ACTIVE

    # Timestamps
    last_message_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_removed(self) -> bool:
        return self.lifecycle == Lifecycle.REMOVED

    @property
    def is_lid(self) -> bool:
        return is_lid_jid(self.remote_jid)

    @property
    def normalized_phone(self) -> str:
        return normalize_phone(self.contact_phone)
