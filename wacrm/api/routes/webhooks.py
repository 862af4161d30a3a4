"""Webhook endpoints for the WhatsApp channel service."""

from typing import Any

import structlog
from fastapi import APIRouter, Request

from wacrm.api.dependencies import IngestorDep, WebhookAuthDep

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/whatsapp")
async def whatsapp_webhook(
    request: Request,
    ingestor: IngestorDep,
    _auth: WebhookAuthDep,
) -> dict[str, Any]:
    """Handle one event posted by the WhatsApp service.

    Always answers 200 so the service does not retry our own failures.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Webhook body is not valid JSON")
        return {"success": False, "message": "Invalid JSON"}

    if not isinstance(payload, dict):
        return {"success": False, "message": "Invalid payload"}

    try:
        return await ingestor.handle(payload)
    except Exception as e:
        logger.error(
            "Error processing WhatsApp webhook",
            event=payload.get("event"),
            session_id=payload.get("sessionId"),
            error=str(e),
            exc_info=True,
        )
        return {"success": False, "message": "Internal error"}
