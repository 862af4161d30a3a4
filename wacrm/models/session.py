"""Channel session model and its connection state machine."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from wacrm.core.exceptions import InvalidSessionTransition
from wacrm.core.timeutils import utcnow


class Lifecycle(str, Enum):
    """Lifecycle of sessions and conversations (replaces soft-delete)."""

    ACTIVE = "active"
    REMOVED = "removed"


class SessionStatus(str, Enum):
    """Connection status of a channel session."""

    CONNECTING = "connecting"  # Provisioning requested
    QR_CODE = "qr_code"  # Waiting for the QR scan
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    LOGGED_OUT = "logged_out"
    FAILED = "failed"  # Provisioning error


_S = SessionStatus

SESSION_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    _S.CONNECTING: frozenset({_S.QR_CODE, _S.CONNECTED, _S.DISCONNECTED, _S.LOGGED_OUT, _S.FAILED}),
    _S.QR_CODE: frozenset({_S.QR_CODE, _S.CONNECTED, _S.DISCONNECTED, _S.LOGGED_OUT, _S.FAILED}),
    _S.CONNECTED: frozenset({_S.CONNECTED, _S.DISCONNECTED, _S.LOGGED_OUT, _S.FAILED}),
    _S.DISCONNECTED: frozenset(
        {_S.CONNECTING, _S.QR_CODE, _S.CONNECTED, _S.DISCONNECTED, _S.LOGGED_OUT, _S.FAILED}
    ),
    _S.LOGGED_OUT: frozenset({_S.CONNECTING, _S.QR_CODE, _S.LOGGED_OUT, _S.FAILED}),
    _S.FAILED: frozenset({_S.CONNECTING, _S.QR_CODE, _S.FAILED}),
}


class Session(BaseModel):
    """One connection to the messaging channel."""

    id: str = Field(..., description="Session identifier shared with the channel service")
    tenant_id: str = Field(..., description="Owning tenant")
    user_id: str | None = Field(default=None, description="Owning user (None = shared/global)")
    name: str | None = None
    phone_number: str | None = None

    status: SessionStatus = SessionStatus.CONNECTING
    qr_code: str | None = None
    lifecycle: Lifecycle = Lifecycle.ACTIVE

    # Timestamps
    connected_at: datetime | None = None
    last_activity_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_removed(self) -> bool:
        return self.lifecycle == Lifecycle.REMOVED

    @property
    def is_global(self) -> bool:
        return self.user_id is None

    def can_transition(self, target: SessionStatus) -> bool:
        """Check whether the state machine allows moving to ``target``."""
        return target in SESSION_TRANSITIONS[self.status]

    def transition(self, target: SessionStatus) -> None:
        """Move to ``target`` or raise InvalidSessionTransition."""
        if not self.can_transition(target):
            raise InvalidSessionTransition(self.id, self.status.value, target.value)
        self.status = target
