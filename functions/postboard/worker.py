"""
Worker that applies the side effects of change events.

Notifications are created/retracted for favs and comments, the search index
follows post creation/deletion, and avatar changes are copied onto the user's
posts and comments. Failed events are re-enqueued until they run out of
attempts, then moved to the dead-letter list.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from postboard import events
from postboard.config import get_settings
from postboard.db import (
    NOTIFICATION_COMMENT,
    NOTIFICATION_FAV,
    DbClient,
    NotificationRecord,
)
from postboard.dependencies import get_db_client, get_queue_client, get_search_index
from postboard.events import Event
from postboard.queue import EventQueue
from postboard.search import SearchIndex, to_search_object

logger = logging.getLogger(__name__)

Handler = Callable[[Event, DbClient, SearchIndex], None]


def _create_notification(
    event: Event,
    db: DbClient,
    notification_type: str,
    id_key: str,
    lookup: Callable[[str], object],
) -> None:
    payload = event.payload
    post = db.get_post(payload["postId"])
    if not post:
        logger.info("[%s] Post %s is gone, no notification", event.event_id, payload["postId"])
        return
    if post.author == payload["userName"]:
        return
    # A retried event can run after the matching delete event.
    if lookup(payload[id_key]) is None:
        logger.info(
            "[%s] %s %s was removed, no notification",
            event.event_id,
            notification_type,
            payload[id_key],
        )
        return
    db.create_notification(
        NotificationRecord(
            notification_id=payload[id_key],
            recipient=post.author,
            sender=payload["userName"],
            type=notification_type,
            post_id=post.post_id,
        )
    )
    logger.info(
        "[%s] Notified %s of %s %s",
        event.event_id,
        post.author,
        notification_type,
        payload[id_key],
    )


def on_fav_created(event: Event, db: DbClient, search: SearchIndex) -> None:
    _create_notification(event, db, NOTIFICATION_FAV, "favId", db.get_fav)


def on_comment_created(event: Event, db: DbClient, search: SearchIndex) -> None:
    _create_notification(
        event, db, NOTIFICATION_COMMENT, "commentId", db.get_comment
    )


def on_fav_deleted(event: Event, db: DbClient, search: SearchIndex) -> None:
    db.delete_notification(event.payload["favId"])


def on_comment_deleted(event: Event, db: DbClient, search: SearchIndex) -> None:
    db.delete_notification(event.payload["commentId"])


def on_post_created(event: Event, db: DbClient, search: SearchIndex) -> None:
    post = db.get_post(event.payload["postId"])
    if not post:
        return
    search.save_object(to_search_object(post.as_dict()))


def on_post_deleted(event: Event, db: DbClient, search: SearchIndex) -> None:
    search.delete_object(event.payload["postId"])


def on_user_image_changed(event: Event, db: DbClient, search: SearchIndex) -> None:
    updated = db.update_author_image(
        event.payload["userName"], event.payload["imageUrl"]
    )
    logger.info("[%s] Updated image on %d records", event.event_id, updated)


HANDLERS: dict[str, Handler] = {
    events.FAV_CREATED: on_fav_created,
    events.FAV_DELETED: on_fav_deleted,
    events.COMMENT_CREATED: on_comment_created,
    events.COMMENT_DELETED: on_comment_deleted,
    events.POST_CREATED: on_post_created,
    events.POST_DELETED: on_post_deleted,
    events.USER_IMAGE_CHANGED: on_user_image_changed,
}


def process_event(event: Event, db: DbClient, search: SearchIndex) -> None:
    handler = HANDLERS.get(event.type)
    if handler is None:
        raise ValueError(f"Unknown event type: {event.type}")
    handler(event, db, search)


def process_next(
    *,
    db: Optional[DbClient] = None,
    queue: Optional[EventQueue] = None,
    search: Optional[SearchIndex] = None,
    block: bool = True,
    timeout: Optional[int] = None,
    max_attempts: Optional[int] = None,
) -> bool:
    """
    Fetch and apply one event from the queue. Returns True if an event was taken.
    """
    db = db or get_db_client()
    queue = queue or get_queue_client()
    search = search or get_search_index()
    if max_attempts is None:
        max_attempts = get_settings().event_max_attempts

    message = queue.dequeue(block=block, timeout=timeout)
    if message is None:
        return False

    try:
        event = Event.from_json(message)
    except (ValueError, KeyError, TypeError):
        logger.error("Dropping malformed event to dead letters: %r", message)
        queue.dead_letter(message)
        return True

    try:
        process_event(event, db, search)
    except Exception:
        event.attempts += 1
        if event.type not in HANDLERS or event.attempts >= max_attempts:
            logger.exception(
                "[%s] %s failed after %d attempts, dead-lettering",
                event.event_id,
                event.type,
                event.attempts,
            )
            queue.dead_letter(event.to_json())
        else:
            logger.warning(
                "[%s] %s failed (attempt %d/%d), requeueing",
                event.event_id,
                event.type,
                event.attempts,
                max_attempts,
                exc_info=True,
            )
            queue.enqueue(event.to_json())
    return True


def drain(
    *,
    db: Optional[DbClient] = None,
    queue: Optional[EventQueue] = None,
    search: Optional[SearchIndex] = None,
    max_attempts: Optional[int] = None,
) -> int:
    """Process events until the queue is empty. Returns the number taken."""
    processed = 0
    while process_next(
        db=db, queue=queue, search=search, block=False, max_attempts=max_attempts
    ):
        processed += 1
    return processed


def run_loop(poll_interval_seconds: float = 2.0) -> None:
    """
    Simple polling loop that blocks on the queue. Intended to be run under systemd/supervisor.
    """
    db = get_db_client()
    queue = get_queue_client()
    search = get_search_index()
    while True:
        processed = process_next(
            db=db,
            queue=queue,
            search=search,
            block=True,
            timeout=int(poll_interval_seconds),
        )
        if not processed:
            time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_loop()
