"""Background worker process.

RUN:  python -m calsync.worker

Applies booking status notifications that the webhook endpoint queued.
Same image as the API, different command:

  api:    uvicorn calsync.main:app --host 0.0.0.0 --port 8000
  worker: python -m calsync.worker

THE WORKER LOOP
----------------
  1. Poll every registered queue (round-robin)
  2. Dequeue one task at a time
  3. Dispatch to the registered handler
  4. Log success or failure; a failing task never stops the loop

Notifications that cannot be understood (missing booking id, unknown
status) are logged and dropped rather than retried: redelivering them
would fail the same way forever.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from calsync.core.config import SETTINGS
from calsync.core.logging import setup_logging
from calsync.core.metrics import BOOKING_STATUS_UPDATES, QUEUE_DEPTH
from calsync.models.booking import BookingStatus
from calsync.services import task_queue as task_queue_module
from calsync.services.task_queue import BOOKING_STATUS_QUEUE
from calsync.services.wiring import services_scope

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("calsync.worker")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


# ---------------------------------------------------------------------------
# Task handlers
# ---------------------------------------------------------------------------


@register_handler(BOOKING_STATUS_QUEUE)
async def handle_booking_status(payload: dict) -> None:
    """Apply one platform status notification to the local booking."""
    raw_id = payload.get("booking_id")
    raw_status = payload.get("status")
    try:
        external_booking_id = int(raw_id)  # type: ignore[arg-type]
        new_status = BookingStatus.parse(str(raw_status))
    except (TypeError, ValueError):
        BOOKING_STATUS_UPDATES.labels(result="invalid").inc()
        logger.warning(
            "Dropping booking status notification booking_id=%r status=%r",
            raw_id,
            raw_status,
        )
        return

    async with services_scope() as services:
        await services.bookings.apply_external_status(external_booking_id, new_status)


# ---------------------------------------------------------------------------
# Main worker loop
# ---------------------------------------------------------------------------


async def run_once(timeout: int = 1) -> int:
    """Process at most one task per queue. Returns how many tasks ran."""
    queue = task_queue_module.task_queue
    processed = 0
    for queue_name, handler in HANDLERS.items():
        QUEUE_DEPTH.labels(queue_name=queue_name).set(await queue.queue_length(queue_name))

        task = await queue.dequeue(queue_name, timeout=timeout)
        if task is None:
            continue

        processed += 1
        try:
            await handler(task.payload)
            logger.info("Task %s on [%s] completed", task.id, queue_name)
        except Exception:
            # At-most-once delivery: log and move on
            logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return processed


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    logger.info("Worker started — listening on queues: %s", list(HANDLERS))
    while True:
        await run_once()


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
