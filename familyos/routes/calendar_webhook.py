# familyos/routes/calendar_webhook.py
"""
Google Calendar push notification endpoint.

Google retries with backoff on anything but 2xx, so this always answers
200 {ok: true}. Processing runs under a deadline; analysis is handed to the
background runner by the sync engine and never runs on this request.
"""

import asyncio

from fastapi import APIRouter, Depends, Header

from familyos.config import settings
from familyos.container import ServiceContainer, get_container
from familyos.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/calendar", tags=["calendar-webhook"])


@router.post("/webhook")
async def receive_notification(
    container: ServiceContainer = Depends(get_container),
    channel_id: str | None = Header(None, alias="X-Goog-Channel-ID"),
    resource_id: str | None = Header(None, alias="X-Goog-Resource-ID"),
    resource_state: str | None = Header(None, alias="X-Goog-Resource-State"),
    message_number: str | None = Header(None, alias="X-Goog-Message-Number"),
):
    if not channel_id or not resource_id or not resource_state:
        logger.warning(
            "Calendar webhook missing required headers",
            has_channel_id=bool(channel_id),
            has_resource_id=bool(resource_id),
            has_resource_state=bool(resource_state),
        )
        return {"ok": True}

    try:
        result = await asyncio.wait_for(
            container.sync_engine.process_notification(
                channel_id, resource_state, message_number=message_number
            ),
            timeout=settings.WEBHOOK_DEADLINE_SECONDS,
        )
        if not result.success:
            logger.warning(
                "Calendar notification not processed",
                channel_id=channel_id,
                resource_id=resource_id,
                error=result.error,
            )
    except TimeoutError:
        logger.error(
            "Calendar notification processing timed out",
            channel_id=channel_id,
            deadline_seconds=settings.WEBHOOK_DEADLINE_SECONDS,
        )
    except Exception as e:
        logger.error(
            "Calendar webhook failed",
            channel_id=channel_id,
            error=str(e),
            error_type=type(e).__name__,
        )

    return {"ok": True}


@router.get("/webhook")
async def webhook_ready():
    return {"status": "ready", "endpoint": "calendar-webhook"}
