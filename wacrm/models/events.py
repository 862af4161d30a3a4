"""Inbound webhook events from the WhatsApp channel service.

Events are validated at the ingestion boundary into a discriminated union keyed
by the ``event`` field. Payloads use the channel's camelCase names.
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from wacrm.core.timeutils import parse_epoch
from wacrm.models.conversation import GROUP_SUFFIX, is_lid_jid


class WebhookEventBase(BaseModel):
    """Fields shared by every event."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    session_id: str = Field(..., alias="sessionId")


class QrCodeEvent(WebhookEventBase):
    event: Literal["qr_code"]
    qr_code: str | None = Field(default=None, validation_alias=AliasChoices("qrCode", "qr", "qr_code"))


class ConnectedEvent(WebhookEventBase):
    event: Literal["connected"]
    phone_number: str | None = Field(default=None, alias="phoneNumber")


class DisconnectedEvent(WebhookEventBase):
    event: Literal["disconnected"]


class LoggedOutEvent(WebhookEventBase):
    event: Literal["logged_out"]


class MessageEvent(WebhookEventBase):
    """A message seen on the session, inbound or sent from the phone."""

    event: Literal["message"]
    remote_jid: str = Field(..., alias="from")
    from_me: bool = Field(default=False, alias="fromMe")
    type: str = "unknown"
    text: str | None = None
    body: str | None = None
    message_id: str | None = Field(default=None, validation_alias=AliasChoices("messageId", "id"))
    timestamp: datetime | None = None

    is_group: bool | None = Field(default=None, alias="isGroup")
    participant: str | None = None
    group_name: str | None = Field(default=None, alias="groupName")
    sender_name: str | None = Field(default=None, alias="senderName")
    sender_phone: str | None = Field(default=None, alias="senderPhone")
    push_name: str | None = Field(default=None, alias="pushName")
    profile_picture: str | None = Field(default=None, alias="profilePicture")

    is_lid: bool | None = Field(default=None, alias="isLid")
    original_lid_jid: str | None = Field(default=None, alias="originalLidJid")
    is_history: bool = Field(default=False, alias="isHistory")

    media_url: str | None = Field(default=None, alias="mediaUrl")
    media_filename: str | None = Field(default=None, alias="mediaFilename")

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, value):
        return parse_epoch(value)

    @property
    def content(self) -> str | None:
        return self.text if self.text is not None else self.body

    @property
    def group(self) -> bool:
        if self.is_group is not None:
            return self.is_group
        return self.remote_jid.endswith(GROUP_SUFFIX)

    @property
    def ephemeral(self) -> bool:
        if self.is_lid is not None:
            return self.is_lid
        return is_lid_jid(self.remote_jid)


class MessageStatusEvent(WebhookEventBase):
    event: Literal["message_status"]
    message_id: str = Field(..., alias="messageId")
    status: str


WebhookEvent = Annotated[
    QrCodeEvent | ConnectedEvent | DisconnectedEvent | LoggedOutEvent | MessageEvent | MessageStatusEvent,
    Field(discriminator="event"),
]

webhook_event_adapter: TypeAdapter[WebhookEvent] = TypeAdapter(WebhookEvent)

KNOWN_EVENTS = frozenset(
    {"qr_code", "connected", "disconnected", "logged_out", "message", "message_status"}
)
