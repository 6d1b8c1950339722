"""
Webhook Routes
Receives Google push notifications and hands them to the sync engine in the background

- POST /webhooks/google/calendar  Calendar channel headers (or a Pub/Sub relay body)
- POST /webhooks/google/mailbox   Gmail Pub/Sub push body

The provider gets its acknowledgement immediately; the sync runs afterwards as a
background task. Only a failed secret check is answered with a non-2xx status.
"""
import logging
from typing import Any, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Request

from mirrorsync.core.dependencies import SyncServices, get_sync_services
from mirrorsync.core.errors import MalformedInputError
from mirrorsync.core.security import verify_webhook_secret
from mirrorsync.models.domain import ResourceType
from mirrorsync.models.schemas import WebhookAck
from mirrorsync.services.sync.ingress import Notification, parse_calendar_headers, parse_pubsub_envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/google", tags=["webhook"])


async def _read_json(request: Request) -> Optional[Any]:
    body = await request.body()
    if not body:
        return None
    try:
        return await request.json()
    except ValueError:
        return None


def _accept(notification: Notification, background_tasks: BackgroundTasks, services: SyncServices) -> WebhookAck:
    background_tasks.add_task(services.ingress.process, notification)
    return WebhookAck(status="accepted")


@router.post("/calendar", response_model=WebhookAck)
async def calendar_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    _: bool = Depends(verify_webhook_secret),
    services: SyncServices = Depends(get_sync_services),
):
    """Calendar push: header envelope first, Pub/Sub relay body as fallback."""
    notification = parse_calendar_headers(request.headers)
    if notification is None:
        try:
            notification = parse_pubsub_envelope(await _read_json(request), ResourceType.CALENDAR)
        except MalformedInputError as e:
            logger.warning(f"⚠️  Ignoring unreadable calendar notification: {e}")
            return WebhookAck(status="ignored", reason=str(e))

    logger.info(
        f"Calendar notification: channel={notification.channel_id}, "
        f"state={notification.resource_state}, message={notification.message_id}"
    )
    return _accept(notification, background_tasks, services)


@router.post("/mailbox", response_model=WebhookAck)
async def mailbox_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    _: bool = Depends(verify_webhook_secret),
    services: SyncServices = Depends(get_sync_services),
):
    """Gmail push via Pub/Sub."""
    try:
        notification = parse_pubsub_envelope(await _read_json(request), ResourceType.MAILBOX)
    except MalformedInputError as e:
        logger.warning(f"⚠️  Ignoring unreadable mailbox notification: {e}")
        return WebhookAck(status="ignored", reason=str(e))

    logger.info(f"Mailbox notification: historyId={notification.cursor}, message={notification.message_id}")
    return _accept(notification, background_tasks, services)
