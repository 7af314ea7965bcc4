"""
Queue abstraction for change events.

Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation for production. Messages that exhaust their retries go to a
dead-letter list so they can be inspected and replayed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions


class EventQueue(Protocol):
    """Minimal queue interface for dispatching serialized events to workers."""

    def enqueue(self, message: str) -> None:
        ...

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        ...

    def dead_letter(self, message: str) -> None:
        ...


@dataclass
class InMemoryEventQueue:
    """Simple FIFO queue for testing/dev."""

    items: list[str] = field(default_factory=list)
    dead: list[str] = field(default_factory=list)

    def enqueue(self, message: str) -> None:
        self.items.append(message)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        if not self.items:
            return None
        return self.items.pop(0)

    def dead_letter(self, message: str) -> None:
        self.dead.append(message)

    def reset(self) -> None:
        self.items.clear()
        self.dead.clear()


@dataclass
class RedisEventQueue:
    """Redis-backed queue using list push/pop operations."""

    url: str
    queue_key: str = "postboard:events"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    @property
    def dead_letter_key(self) -> str:
        return f"{self.queue_key}:dead"

    def enqueue(self, message: str) -> None:
        self.client.rpush(self.queue_key, message)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        try:
            if block:
                result = self.client.blpop(self.queue_key, timeout=timeout or 0)
                if result is None:
                    return None
                _, message = result
            else:
                message = self.client.lpop(self.queue_key)
                if message is None:
                    return None
            return message.decode("utf-8")
        except redis_exceptions.ConnectionError:
            # Connection resets can happen on managed Redis. Treat as empty queue
            # and allow the worker loop to retry.
            self.client = redis.Redis.from_url(self.url)
            return None

    def dead_letter(self, message: str) -> None:
        self.client.rpush(self.dead_letter_key, message)
