"""Channel clients - outbound calls to the messaging channel service."""

from wacrm.services.channels.base import ChannelClient
from wacrm.services.channels.whatsapp import (
    WhatsAppChannelClient,
    get_whatsapp_client,
    resolve_send_jid,
)

__all__ = ["ChannelClient", "WhatsAppChannelClient", "get_whatsapp_client", "resolve_send_jid"]
