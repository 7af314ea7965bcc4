"""
Application-level change events.

Handlers publish one event after each committed state change; the worker
consumes them to maintain notifications and the search index.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field

from postboard.db import new_id
from postboard.queue import EventQueue

logger = logging.getLogger(__name__)

POST_CREATED = "post.created"
POST_DELETED = "post.deleted"
COMMENT_CREATED = "comment.created"
COMMENT_DELETED = "comment.deleted"
FAV_CREATED = "fav.created"
FAV_DELETED = "fav.deleted"
USER_IMAGE_CHANGED = "user.image_changed"


@dataclass
class Event:
    type: str
    payload: dict
    event_id: str = field(default_factory=new_id)
    attempts: int = 0
    created_at: float = field(default_factory=lambda: time.time())

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "Event":
        data = json.loads(raw)
        return cls(
            type=data["type"],
            payload=data.get("payload") or {},
            event_id=data.get("event_id") or new_id(),
            attempts=int(data.get("attempts") or 0),
            created_at=float(data.get("created_at") or time.time()),
        )


def publish(queue: EventQueue, event_type: str, **payload) -> Event:
    event = Event(type=event_type, payload=payload)
    queue.enqueue(event.to_json())
    logger.info("Published %s (%s)", event.type, event.event_id)
    return event
