"""Session service - channel session provisioning."""

from wacrm.services.sessions.manager import SessionManager

__all__ = ["SessionManager"]
