"""Notification worker.

RUN:  python -m tenancy.worker

Same image as the API, different command.  The worker drains the task
queues the API writes to; today that is only ``email`` (invitations,
reminders and welcome messages).

Delivery is at-least-once: a task is acked only after its handler returns,
retried on failure, and parked on the dead-letter list after
``max_attempts`` failed deliveries.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from tenancy.container import build_container
from tenancy.core.config import load_settings
from tenancy.core.logging import setup_logging
from tenancy.core.metrics import NOTIFICATIONS, QUEUE_DEPTH
from tenancy.services.mailer import Mailer, build_mailer
from tenancy.services.notifier import EMAIL_QUEUE
from tenancy.services.task_queue import DEFAULT_MAX_ATTEMPTS, TaskQueue

TaskHandler = Callable[[dict, Mailer], Coroutine[Any, Any, None]]

logger = logging.getLogger("tenancy.worker")

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func: TaskHandler) -> TaskHandler:
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(EMAIL_QUEUE)
async def handle_email(payload: dict, mailer: Mailer) -> None:
    kind = payload.get("kind", "email")
    try:
        await mailer.send(
            to=payload["to"], subject=payload["subject"], body=payload["body"]
        )
    except Exception:
        NOTIFICATIONS.labels(kind=kind, result="send_failed").inc()
        raise
    NOTIFICATIONS.labels(kind=kind, result="sent").inc()


async def process_one(
    task_queue: TaskQueue,
    queue_name: str,
    mailer: Mailer,
    *,
    timeout: int = 1,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> bool:
    """Handle at most one task from ``queue_name``.  False if the queue was empty."""
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False

    handler = HANDLERS[queue_name]
    try:
        await handler(task.payload, mailer)
    except Exception:
        retrying = await task_queue.nack(task, max_attempts=max_attempts)
        logger.exception(
            "Task %s on [%s] failed attempt=%d %s",
            task.id,
            queue_name,
            task.attempts + 1,
            "will retry" if retrying else "moved to dead letters",
        )
    else:
        await task_queue.ack(task)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    finally:
        QUEUE_DEPTH.labels(queue_name=queue_name).set(
            await task_queue.queue_length(queue_name)
        )
    return True


async def run_worker(
    task_queue: TaskQueue,
    mailer: Mailer,
    *,
    stop: asyncio.Event | None = None,
    idle_sleep: float = 0.5,
) -> None:
    """Poll every registered queue until ``stop`` is set."""
    stop = stop or asyncio.Event()
    queues = list(HANDLERS)
    for queue_name in queues:
        await task_queue.recover(queue_name)
    logger.info("Worker started, listening on queues: %s", queues)

    while not stop.is_set():
        handled = False
        for queue_name in queues:
            handled |= await process_one(task_queue, queue_name, mailer)
        if not handled:
            await asyncio.sleep(idle_sleep)


async def main() -> None:
    settings = load_settings()
    setup_logging(settings.log_level, json_format=settings.log_json)
    if not settings.redis_url:
        # the in-memory queue lives inside the API process
        logger.warning("REDIS_URL not set; the worker has nothing to consume")
    container = build_container(settings)
    try:
        await run_worker(container.task_queue, build_mailer(settings.smtp))
    finally:
        await container.close()


if __name__ == "__main__":
    asyncio.run(main())
