"""Background task queue using Redis lists.

WHY A QUEUE?
------------
Invitation and welcome emails go out through SMTP, which is slow and
sometimes down.  Creating an invite must not wait on it or fail because
of it: the invite row is committed first, then a task is enqueued and the
API returns.  A separate worker process (``tenancy.worker``) sends the
mail at its own pace.  If the enqueue itself fails the invite still
stands and the response says ``email_queued: false``.

PRODUCER / CONSUMER
-------------------
  Producer (API):    LPUSH the task onto ``tasks:<queue>`` and return at once.
  Consumer (worker): BLMOVE it from the tail of ``tasks:<queue>`` onto
                     ``tasks:<queue>:processing``, run the handler, then
                     LREM it from the processing list (ack).

LPUSH adds at the head and BLMOVE takes from the tail, so tasks run in
the order they were enqueued.  BLMOVE blocks until a task arrives or the
timeout passes, so an idle worker does not spin.

AT-LEAST-ONCE DELIVERY
----------------------
A plain BRPOP removes the task the moment it is handed out; a worker
that dies mid-task loses it.  Moving it onto a processing list instead
keeps a copy until the handler acks.  ``recover`` runs when a worker
starts and pushes anything left on the processing list back onto the
tail of the main list, so stranded tasks are the next to run.  Handlers
must tolerate running twice; a duplicated invitation email is
acceptable, a lost one is not.

RETRIES AND DEAD LETTERS
------------------------
``nack`` bumps ``attempts`` and re-queues the task.  After
``max_attempts`` failed deliveries it goes to ``tasks:<queue>:dead``
instead, where it stays for inspection.  The remove-from-processing and
the push happen in one MULTI/EXEC pipeline so a task is never on both
lists.

``InMemoryTaskQueue`` keeps the same contract in plain lists for tests
and for running the API without Redis.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5


@dataclass(frozen=True, slots=True)
class Task:
    """A unit of background work.

    id:       unique identifier for tracking and logging
    queue:    which queue the task belongs to ("email")
    payload:  JSON-serializable handler input
    attempts: deliveries that already failed
    """

    id: str
    queue: str
    payload: dict
    attempts: int = 0
    raw: str | None = field(default=None, compare=False, repr=False)

    def to_json(self) -> str:
        return json.dumps(
            {
                "id": self.id,
                "queue": self.queue,
                "payload": self.payload,
                "attempts": self.attempts,
            }
        )

    @staticmethod
    def from_json(raw: str) -> Task:
        data = json.loads(raw)
        return Task(
            id=data["id"],
            queue=data["queue"],
            payload=data["payload"],
            attempts=data.get("attempts", 0),
            raw=raw,
        )


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, payload: dict) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def ack(self, task: Task) -> None: ...
    async def nack(self, task: Task, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> bool: ...
    async def recover(self, queue: str) -> int: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """In-memory task queue for dev and tests.  Same contract as Redis."""

    def __init__(self) -> None:
        self._queues: dict[str, list[Task]] = {}
        self._processing: dict[str, list[Task]] = {}
        self._dead: dict[str, list[Task]] = {}

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        self._queues.setdefault(queue, []).append(task)
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        tasks = self._queues.get(queue, [])
        if not tasks:
            return None
        task = tasks.pop(0)
        self._processing.setdefault(queue, []).append(task)
        return task

    async def ack(self, task: Task) -> None:
        processing = self._processing.get(task.queue, [])
        if task in processing:
            processing.remove(task)

    async def nack(self, task: Task, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> bool:
        await self.ack(task)
        retried = replace(task, attempts=task.attempts + 1, raw=None)
        if retried.attempts >= max_attempts:
            self._dead.setdefault(task.queue, []).append(retried)
            return False
        self._queues.setdefault(task.queue, []).append(retried)
        return True

    async def recover(self, queue: str) -> int:
        stranded = self._processing.pop(queue, [])
        self._queues.setdefault(queue, [])[:0] = stranded
        return len(stranded)

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, []))

    def dead_letters(self, queue: str) -> list[Task]:
        return list(self._dead.get(queue, []))


class RedisTaskQueue:
    """Redis-backed task queue using LPUSH / BLMOVE / LREM."""

    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    def _key(self, queue: str, suffix: str = "") -> str:
        return f"{self._PREFIX}{queue}{suffix}"

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        await self._redis.lpush(self._key(queue), task.to_json())
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        raw = await self._redis.blmove(
            self._key(queue),
            self._key(queue, ":processing"),
            timeout,
            src="RIGHT",
            dest="LEFT",
        )
        if raw is None:
            return None
        return Task.from_json(raw)

    async def ack(self, task: Task) -> None:
        await self._redis.lrem(
            self._key(task.queue, ":processing"), 1, task.raw or task.to_json()
        )

    async def nack(self, task: Task, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> bool:
        retried = replace(task, attempts=task.attempts + 1, raw=None)
        target = (
            self._key(task.queue, ":dead")
            if retried.attempts >= max_attempts
            else self._key(task.queue)
        )
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._key(task.queue, ":processing"), 1, task.raw or task.to_json())
            pipe.lpush(target, retried.to_json())
            await pipe.execute()
        return retried.attempts < max_attempts

    async def recover(self, queue: str) -> int:
        moved = 0
        while await self._redis.lmove(
            self._key(queue, ":processing"), self._key(queue), src="LEFT", dest="RIGHT"
        ):
            moved += 1
        if moved:
            logger.warning("Recovered %d stranded task(s) on [%s]", moved, queue)
        return moved

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(self._key(queue))
