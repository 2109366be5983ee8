"""Change-notification intake for webhook transcript ingestion.

The platform calls this endpoint in two ways:
- Subscription validation: a GET or POST carrying ``validationToken``; the
  token must be echoed verbatim as text/plain with 200 within seconds.
- Notifications: a POST whose JSON body holds a ``value`` list of items.
  Items with a wrong client state are dropped; valid ones are processed in
  the background and the request is acknowledged with 202 immediately.

No bearer auth: the platform authenticates with the shared client state.
"""

from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, BackgroundTasks, Query, Request, Response, status
from fastapi.responses import PlainTextResponse

from src.meetbot.api.deps import get_webhook_strategy
from src.meetbot.meetings.transcription.webhook import NOTIFICATION_PATH

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["notifications"])


@router.api_route(NOTIFICATION_PATH, methods=["GET", "POST"])
async def receive_notifications(
    request: Request,
    background_tasks: BackgroundTasks,
    validation_token: str | None = Query(None, alias="validationToken"),
) -> Response:
    """Validation handshake or transcript change notifications."""
    if validation_token is not None:
        logger.info("notifications.validation_handshake")
        return PlainTextResponse(validation_token, status_code=status.HTTP_200_OK)

    if request.method != "POST":
        return Response(status_code=status.HTTP_400_BAD_REQUEST)

    strategy = get_webhook_strategy(request)

    try:
        payload = json.loads(await request.body() or b"{}")
    except ValueError:
        logger.warning("notifications.invalid_json")
        return Response(status_code=status.HTTP_400_BAD_REQUEST)

    items = payload.get("value", []) if isinstance(payload, dict) else []
    accepted = 0
    for item in items:
        if not isinstance(item, dict) or not strategy.validate_client_state(item.get("clientState")):
            logger.warning(
                "notifications.rejected_item",
                subscription_id=item.get("subscriptionId") if isinstance(item, dict) else None,
            )
            continue
        background_tasks.add_task(strategy.process_notification, item)
        accepted += 1

    logger.info("notifications.received", items=len(items), accepted=accepted)
    return Response(status_code=status.HTTP_202_ACCEPTED)
