"""Webhook service - ingestion of channel events."""

from wacrm.services.webhooks.ingestor import SYSTEM_MESSAGE_TYPES, WebhookIngestor, is_ai_eligible

__all__ = ["SYSTEM_MESSAGE_TYPES", "WebhookIngestor", "is_ai_eligible"]
