"""Booking status notifications from the scheduling platform.

The platform POSTs ``{"booking_id": <external id>, "status": "<status>"}``
and signs the raw body (see services/webhook_signing.py).  We verify the
signature, drop the payload on the ``booking_status`` queue and answer
202 straight away; the worker applies it.  Malformed or unknown
statuses are still accepted here, the worker logs and discards them, so
the platform never retries a notification we will never understand.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Request, status
from fastapi.responses import Response

from calsync.core.config import SETTINGS
from calsync.services import task_queue as task_queue_module
from calsync.services.task_queue import BOOKING_STATUS_QUEUE
from calsync.services.webhook_signing import verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])


@router.post("/booking-status", status_code=status.HTTP_202_ACCEPTED)
async def booking_status(
    request: Request,
    signature: Annotated[str, Header(alias="X-Webhook-Signature")],
    timestamp: Annotated[int, Header(alias="X-Webhook-Timestamp")],
) -> Response:
    secret = SETTINGS.webhook_secret
    if secret is None:
        logger.error("Booking status notification rejected: WEBHOOK_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook receiver not configured",
        )

    body = await request.body()
    if not verify_signature(body, secret, signature, timestamp):
        logger.warning("Booking status notification with bad signature rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Body must be JSON") from None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")

    task = await task_queue_module.task_queue.enqueue(BOOKING_STATUS_QUEUE, payload)
    logger.info("Queued booking status notification task=%s", task.id)
    return Response(status_code=status.HTTP_202_ACCEPTED)
