"""
Queue that hands mail job ids from the API to the mail worker.

The job itself lives in the database; the queue only carries its id, so a
lost queue entry delays a mail but never loses it (the worker falls back to
claiming pending jobs). ``size()`` feeds the health endpoint and returns
``None`` when the queue backend cannot be reached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)


class JobQueue(Protocol):
    def enqueue(self, job_id: str) -> None:
        ...

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        ...

    def size(self) -> Optional[int]:
        ...


@dataclass
class InMemoryJobQueue:
    """FIFO of job ids for tests and single-process development."""

    items: list[str] = field(default_factory=list)

    def enqueue(self, job_id: str) -> None:
        self.items.append(job_id)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        return self.items.pop(0) if self.items else None

    def size(self) -> Optional[int]:
        return len(self.items)

    def reset(self) -> None:
        self.items.clear()


@dataclass
class RedisJobQueue:
    """Redis list: producers ``RPUSH``, workers ``BLPOP``."""

    url: str
    queue_key: str = "climblog:mail"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def _reconnect(self) -> None:
        logger.warning("Lost connection to Redis queue %s, reconnecting", self.queue_key)
        self.client = redis.Redis.from_url(self.url)

    def enqueue(self, job_id: str) -> None:
        # A failed push leaves the job PENDING in the database for the fallback claim.
        try:
            self.client.rpush(self.queue_key, job_id)
        except redis_exceptions.ConnectionError:
            logger.exception("Could not enqueue mail job %s", job_id)
            self._reconnect()

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        try:
            if block:
                popped = self.client.blpop(self.queue_key, timeout=timeout or 0)
                job_id = popped[1] if popped else None
            else:
                job_id = self.client.lpop(self.queue_key)
        except redis_exceptions.ConnectionError:
            self._reconnect()
            return None
        if job_id is None:
            return None
        return job_id.decode("utf-8") if isinstance(job_id, bytes) else job_id

    def size(self) -> Optional[int]:
        try:
            return int(self.client.llen(self.queue_key))
        except redis_exceptions.ConnectionError:
            logger.warning("Redis queue %s is unreachable", self.queue_key)
            return None
