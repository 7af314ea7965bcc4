"""
Document store abstraction for Postgres and an in-memory test implementation.

Both clients apply every counter change in the same atomic step as the child
record write it accounts for, so commentCount, favCount and voteScore always
match the comment, fav and vote records of a post.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from postboard.errors import Conflict, Forbidden, NotFound, ValidationFailed


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return uuid.uuid4().hex


class VoteDirection(str, Enum):
    UP = "up"
    DOWN = "down"

    @property
    def sign(self) -> int:
        return 1 if self is VoteDirection.UP else -1

    @property
    def opposite(self) -> "VoteDirection":
        return VoteDirection.DOWN if self is VoteDirection.UP else VoteDirection.UP


NOTIFICATION_FAV = "fav"
NOTIFICATION_COMMENT = "comment"


@dataclass
class PostRecord:
    post_id: str
    title: str
    body: str
    category: str
    author: str
    author_image: Optional[str]
    created_at: str = field(default_factory=utc_now_iso)
    comment_count: int = 0
    fav_count: int = 0
    vote_score: int = 0

    def as_dict(self) -> dict:
        return {
            "id": self.post_id,
            "title": self.title,
            "body": self.body,
            "category": self.category,
            "author": self.author,
            "authorImage": self.author_image,
            "createdAt": self.created_at,
            "commentCount": self.comment_count,
            "favCount": self.fav_count,
            "voteScore": self.vote_score,
        }


@dataclass
class CommentRecord:
    comment_id: str
    post_id: str
    body: str
    user_name: str
    user_image: Optional[str]
    created_at: str = field(default_factory=utc_now_iso)

    def as_dict(self) -> dict:
        return {
            "id": self.comment_id,
            "postId": self.post_id,
            "body": self.body,
            "userName": self.user_name,
            "userImage": self.user_image,
            "createdAt": self.created_at,
        }


@dataclass
class FavRecord:
    fav_id: str
    post_id: str
    user_name: str

    def as_dict(self) -> dict:
        return {"id": self.fav_id, "postId": self.post_id, "userName": self.user_name}


@dataclass
class VoteRecord:
    vote_id: str
    post_id: str
    user_name: str

    def as_dict(self) -> dict:
        return {"id": self.vote_id, "postId": self.post_id, "userName": self.user_name}


@dataclass
class UserRecord:
    user_name: str
    user_id: str
    email: str
    image_url: str
    bio: str = ""
    location: str = ""
    created_at: str = field(default_factory=utc_now_iso)

    def as_dict(self) -> dict:
        return {
            "userName": self.user_name,
            "userId": self.user_id,
            "email": self.email,
            "imageUrl": self.image_url,
            "bio": self.bio,
            "location": self.location,
            "createdAt": self.created_at,
        }


@dataclass
class NotificationRecord:
    notification_id: str
    recipient: str
    sender: str
    type: str
    post_id: str
    read: bool = False
    created_at: str = field(default_factory=utc_now_iso)

    def as_dict(self) -> dict:
        return {
            "notificationId": self.notification_id,
            "recipient": self.recipient,
            "sender": self.sender,
            "type": self.type,
            "postId": self.post_id,
            "read": self.read,
            "createdAt": self.created_at,
        }


@dataclass
class AccountRecord:
    user_id: str
    email: str
    password_hash: str
    created_at: str = field(default_factory=utc_now_iso)


USER_DETAIL_FIELDS = ("bio", "location")


class DbClient(Protocol):
    """Interface for document store access."""

    def create_post(
        self,
        *,
        title: str,
        body: str,
        category: str,
        author: str,
        author_image: Optional[str],
    ) -> PostRecord:
        ...

    def get_post(self, post_id: str) -> Optional[PostRecord]:
        ...

    def list_posts(self) -> list[PostRecord]:
        ...

    def list_posts_by_author(self, user_name: str) -> list[PostRecord]:
        ...

    def delete_post(self, post_id: str, actor: str) -> PostRecord:
        ...

    def add_comment(
        self, post_id: str, *, body: str, user_name: str, user_image: Optional[str]
    ) -> CommentRecord:
        ...

    def get_comment(self, comment_id: str) -> Optional[CommentRecord]:
        ...

    def list_comments(self, post_id: str) -> list[CommentRecord]:
        ...

    def delete_comment(self, post_id: str, comment_id: str, actor: str) -> CommentRecord:
        ...

    def add_fav(self, post_id: str, user_name: str) -> tuple[PostRecord, FavRecord]:
        ...

    def remove_fav(self, post_id: str, user_name: str) -> tuple[PostRecord, FavRecord]:
        ...

    def get_fav(self, fav_id: str) -> Optional[FavRecord]:
        ...

    def list_favs(self, post_id: str) -> list[FavRecord]:
        ...

    def list_favs_by_user(self, user_name: str) -> list[FavRecord]:
        ...

    def toggle_vote(
        self, post_id: str, user_name: str, direction: VoteDirection
    ) -> PostRecord:
        ...

    def list_votes(self, post_id: str, direction: VoteDirection) -> list[VoteRecord]:
        ...

    def create_user(self, user: UserRecord) -> UserRecord:
        ...

    def get_user(self, user_name: str) -> Optional[UserRecord]:
        ...

    def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        ...

    def list_users(self) -> list[UserRecord]:
        ...

    def update_user_details(self, user_name: str, details: dict) -> UserRecord:
        ...

    def update_user_image(self, user_name: str, image_url: str) -> UserRecord:
        ...

    def update_author_image(self, user_name: str, image_url: str) -> int:
        ...

    def create_notification(self, notification: NotificationRecord) -> None:
        ...

    def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        ...

    def delete_notification(self, notification_id: str) -> bool:
        ...

    def list_notifications(
        self, recipient: str, limit: int = 10
    ) -> list[NotificationRecord]:
        ...

    def mark_notifications_read(self, notification_ids: Iterable[str], recipient: str) -> int:
        ...

    def create_account(self, account: AccountRecord) -> AccountRecord:
        ...

    def get_account(self, user_id: str) -> Optional[AccountRecord]:
        ...

    def get_account_by_email(self, email: str) -> Optional[AccountRecord]:
        ...

    def delete_account(self, user_id: str) -> bool:
        ...

    def reconcile_counters(self, *, dry_run: bool = False) -> int:
        ...


def _newest_first(records: Iterable, key) -> list:
    # Reverse insertion order first so ties keep newest-first.
    return sorted(reversed(list(records)), key=key, reverse=True)


class InMemoryDbClient:
    """Simple in-memory document store for development and tests."""

    def __init__(self):
        self._lock = threading.RLock()
        self.posts: Dict[str, PostRecord] = {}
        self.comments: Dict[str, CommentRecord] = {}
        self.favs: Dict[str, FavRecord] = {}
        self.votes: Dict[VoteDirection, Dict[str, VoteRecord]] = {
            VoteDirection.UP: {},
            VoteDirection.DOWN: {},
        }
        self.users: Dict[str, UserRecord] = {}
        self.notifications: Dict[str, NotificationRecord] = {}
        self.accounts: Dict[str, AccountRecord] = {}

    @property
    def upvotes(self) -> Dict[str, VoteRecord]:
        return self.votes[VoteDirection.UP]

    @property
    def downvotes(self) -> Dict[str, VoteRecord]:
        return self.votes[VoteDirection.DOWN]

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.posts.clear()
            self.comments.clear()
            self.favs.clear()
            self.upvotes.clear()
            self.downvotes.clear()
            self.users.clear()
            self.notifications.clear()
            self.accounts.clear()

    def _require_post(self, post_id: str) -> PostRecord:
        post = self.posts.get(post_id)
        if not post:
            raise NotFound("Post not found")
        return post

    def _find_fav(self, post_id: str, user_name: str) -> Optional[FavRecord]:
        for fav in self.favs.values():
            if fav.post_id == post_id and fav.user_name == user_name:
                return fav
        return None

    def _find_vote(
        self, post_id: str, user_name: str, direction: VoteDirection
    ) -> Optional[VoteRecord]:
        for vote in self.votes[direction].values():
            if vote.post_id == post_id and vote.user_name == user_name:
                return vote
        return None

    # Posts

    def create_post(
        self,
        *,
        title: str,
        body: str,
        category: str,
        author: str,
        author_image: Optional[str],
    ) -> PostRecord:
        record = PostRecord(
            post_id=new_id(),
            title=title,
            body=body,
            category=category,
            author=author,
            author_image=author_image,
        )
        with self._lock:
            self.posts[record.post_id] = record
        return replace(record)

    def get_post(self, post_id: str) -> Optional[PostRecord]:
        post = self.posts.get(post_id)
        return replace(post) if post else None

    def list_posts(self) -> list[PostRecord]:
        with self._lock:
            posts = _newest_first(self.posts.values(), key=lambda p: p.created_at)
        return [replace(post) for post in posts]

    def list_posts_by_author(self, user_name: str) -> list[PostRecord]:
        return [post for post in self.list_posts() if post.author == user_name]

    def delete_post(self, post_id: str, actor: str) -> PostRecord:
        with self._lock:
            post = self._require_post(post_id)
            if post.author != actor:
                raise Forbidden("Unauthorized")
            collections = (
                self.comments,
                self.favs,
                self.upvotes,
                self.downvotes,
                self.notifications,
            )
            for collection in collections:
                for key in [k for k, v in collection.items() if v.post_id == post_id]:
                    del collection[key]
            del self.posts[post_id]
            return replace(post)

    # Comments

    def add_comment(
        self, post_id: str, *, body: str, user_name: str, user_image: Optional[str]
    ) -> CommentRecord:
        with self._lock:
            post = self._require_post(post_id)
            record = CommentRecord(
                comment_id=new_id(),
                post_id=post_id,
                body=body,
                user_name=user_name,
                user_image=user_image,
            )
            self.comments[record.comment_id] = record
            post.comment_count += 1
            return replace(record)

    def get_comment(self, comment_id: str) -> Optional[CommentRecord]:
        comment = self.comments.get(comment_id)
        return replace(comment) if comment else None

    def list_comments(self, post_id: str) -> list[CommentRecord]:
        with self._lock:
            comments = [c for c in self.comments.values() if c.post_id == post_id]
        comments.sort(key=lambda c: c.created_at)
        return [replace(comment) for comment in comments]

    def delete_comment(self, post_id: str, comment_id: str, actor: str) -> CommentRecord:
        with self._lock:
            comment = self.comments.get(comment_id)
            if not comment or comment.post_id != post_id:
                raise NotFound("Comment not found")
            if comment.user_name != actor:
                raise Forbidden("Unauthorized")
            post = self._require_post(post_id)
            del self.comments[comment_id]
            post.comment_count -= 1
            return replace(comment)

    # Favs

    def add_fav(self, post_id: str, user_name: str) -> tuple[PostRecord, FavRecord]:
        with self._lock:
            post = self._require_post(post_id)
            if self._find_fav(post_id, user_name):
                raise Conflict("Post has already been faved")
            fav = FavRecord(fav_id=new_id(), post_id=post_id, user_name=user_name)
            self.favs[fav.fav_id] = fav
            post.fav_count += 1
            return replace(post), replace(fav)

    def remove_fav(self, post_id: str, user_name: str) -> tuple[PostRecord, FavRecord]:
        with self._lock:
            post = self._require_post(post_id)
            fav = self._find_fav(post_id, user_name)
            if not fav:
                raise ValidationFailed("Post hasn't been faved")
            del self.favs[fav.fav_id]
            post.fav_count -= 1
            return replace(post), replace(fav)

    def get_fav(self, fav_id: str) -> Optional[FavRecord]:
        fav = self.favs.get(fav_id)
        return replace(fav) if fav else None

    def list_favs(self, post_id: str) -> list[FavRecord]:
        with self._lock:
            return [replace(f) for f in self.favs.values() if f.post_id == post_id]

    def list_favs_by_user(self, user_name: str) -> list[FavRecord]:
        with self._lock:
            return [replace(f) for f in self.favs.values() if f.user_name == user_name]

    # Votes

    def toggle_vote(
        self, post_id: str, user_name: str, direction: VoteDirection
    ) -> PostRecord:
        with self._lock:
            post = self._require_post(post_id)
            existing = self._find_vote(post_id, user_name, direction)
            if existing:
                del self.votes[direction][existing.vote_id]
                post.vote_score -= direction.sign
                return replace(post)

            vote = VoteRecord(vote_id=new_id(), post_id=post_id, user_name=user_name)
            self.votes[direction][vote.vote_id] = vote
            delta = direction.sign
            opposite = self._find_vote(post_id, user_name, direction.opposite)
            if opposite:
                del self.votes[direction.opposite][opposite.vote_id]
                delta += direction.sign
            post.vote_score += delta
            return replace(post)

    def list_votes(self, post_id: str, direction: VoteDirection) -> list[VoteRecord]:
        with self._lock:
            return [
                replace(v) for v in self.votes[direction].values() if v.post_id == post_id
            ]

    # Users

    def create_user(self, user: UserRecord) -> UserRecord:
        with self._lock:
            if user.user_name in self.users:
                raise Conflict("This username is already taken", field="userName")
            self.users[user.user_name] = replace(user)
        return replace(user)

    def get_user(self, user_name: str) -> Optional[UserRecord]:
        user = self.users.get(user_name)
        return replace(user) if user else None

    def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            for user in self.users.values():
                if user.user_id == user_id:
                    return replace(user)
        return None

    def list_users(self) -> list[UserRecord]:
        with self._lock:
            users = _newest_first(self.users.values(), key=lambda u: u.created_at)
        return [replace(user) for user in users]

    def update_user_details(self, user_name: str, details: dict) -> UserRecord:
        with self._lock:
            user = self.users.get(user_name)
            if not user:
                raise NotFound("User not found")
            for key in USER_DETAIL_FIELDS:
                if key in details:
                    setattr(user, key, details[key])
            return replace(user)

    def update_user_image(self, user_name: str, image_url: str) -> UserRecord:
        with self._lock:
            user = self.users.get(user_name)
            if not user:
                raise NotFound("User not found")
            user.image_url = image_url
            return replace(user)

    def update_author_image(self, user_name: str, image_url: str) -> int:
        updated = 0
        with self._lock:
            for post in self.posts.values():
                if post.author == user_name:
                    post.author_image = image_url
                    updated += 1
            for comment in self.comments.values():
                if comment.user_name == user_name:
                    comment.user_image = image_url
                    updated += 1
        return updated

    # Notifications

    def create_notification(self, notification: NotificationRecord) -> None:
        with self._lock:
            self.notifications[notification.notification_id] = replace(notification)

    def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        notification = self.notifications.get(notification_id)
        return replace(notification) if notification else None

    def delete_notification(self, notification_id: str) -> bool:
        with self._lock:
            return self.notifications.pop(notification_id, None) is not None

    def list_notifications(
        self, recipient: str, limit: int = 10
    ) -> list[NotificationRecord]:
        with self._lock:
            mine = [n for n in self.notifications.values() if n.recipient == recipient]
            mine = _newest_first(mine, key=lambda n: n.created_at)
        return [replace(n) for n in mine[:limit]]

    def mark_notifications_read(self, notification_ids: Iterable[str], recipient: str) -> int:
        updated = 0
        with self._lock:
            for notification_id in set(notification_ids):
                notification = self.notifications.get(notification_id)
                if notification and notification.recipient == recipient:
                    notification.read = True
                    updated += 1
        return updated

    # Accounts

    def create_account(self, account: AccountRecord) -> AccountRecord:
        with self._lock:
            if self.get_account_by_email(account.email):
                raise Conflict("Email is already in use", field="email")
            self.accounts[account.user_id] = replace(account)
        return replace(account)

    def get_account(self, user_id: str) -> Optional[AccountRecord]:
        account = self.accounts.get(user_id)
        return replace(account) if account else None

    def get_account_by_email(self, email: str) -> Optional[AccountRecord]:
        wanted = email.strip().lower()
        for account in self.accounts.values():
            if account.email == wanted:
                return replace(account)
        return None

    def delete_account(self, user_id: str) -> bool:
        with self._lock:
            return self.accounts.pop(user_id, None) is not None

    def reconcile_counters(self, *, dry_run: bool = False) -> int:
        corrected = 0
        with self._lock:
            for post in self.posts.values():
                comments = sum(1 for c in self.comments.values() if c.post_id == post.post_id)
                favs = sum(1 for f in self.favs.values() if f.post_id == post.post_id)
                score = sum(
                    1 for v in self.upvotes.values() if v.post_id == post.post_id
                ) - sum(1 for v in self.downvotes.values() if v.post_id == post.post_id)
                if (post.comment_count, post.fav_count, post.vote_score) == (
                    comments,
                    favs,
                    score,
                ):
                    continue
                corrected += 1
                if not dry_run:
                    post.comment_count = comments
                    post.fav_count = favs
                    post.vote_score = score
        return corrected


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    # Row conversion

    @staticmethod
    def _to_post(row: "PostRow") -> PostRecord:
        return PostRecord(
            post_id=row.post_id,
            title=row.title,
            body=row.body,
            category=row.category,
            author=row.author,
            author_image=row.author_image,
            created_at=row.created_at,
            comment_count=row.comment_count,
            fav_count=row.fav_count,
            vote_score=row.vote_score,
        )

    @staticmethod
    def _to_comment(row: "CommentRow") -> CommentRecord:
        return CommentRecord(
            comment_id=row.comment_id,
            post_id=row.post_id,
            body=row.body,
            user_name=row.user_name,
            user_image=row.user_image,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_user(row: "UserRow") -> UserRecord:
        return UserRecord(
            user_name=row.user_name,
            user_id=row.user_id,
            email=row.email,
            image_url=row.image_url,
            bio=row.bio,
            location=row.location,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_notification(row: "NotificationRow") -> NotificationRecord:
        return NotificationRecord(
            notification_id=row.notification_id,
            recipient=row.recipient,
            sender=row.sender,
            type=row.type,
            post_id=row.post_id,
            read=row.read,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_account(row: "AccountRow") -> AccountRecord:
        return AccountRecord(
            user_id=row.user_id,
            email=row.email,
            password_hash=row.password_hash,
            created_at=row.created_at,
        )

    def _lock_post(self, session: Session, post_id: str) -> "PostRow":
        stmt = select(PostRow).where(PostRow.post_id == post_id).with_for_update()
        post = session.execute(stmt).scalar_one_or_none()
        if not post:
            raise NotFound("Post not found")
        return post

    def _bump(self, session: Session, post: "PostRow", **deltas: int) -> None:
        values = {
            getattr(PostRow, column): getattr(PostRow, column) + delta
            for column, delta in deltas.items()
        }
        session.execute(
            update(PostRow).where(PostRow.post_id == post.post_id).values(values)
        )
        session.refresh(post)

    @staticmethod
    def _delete_one(session: Session, row_type, *criteria) -> bool:
        """Delete a child row; True only if this transaction removed it."""
        result = session.execute(delete(row_type).where(*criteria))
        return result.rowcount == 1

    # Posts

    def create_post(
        self,
        *,
        title: str,
        body: str,
        category: str,
        author: str,
        author_image: Optional[str],
    ) -> PostRecord:
        with self.Session() as session:
            row = PostRow(
                post_id=new_id(),
                title=title,
                body=body,
                category=category,
                author=author,
                author_image=author_image,
                created_at=utc_now_iso(),
                comment_count=0,
                fav_count=0,
                vote_score=0,
            )
            session.add(row)
            session.commit()
            return self._to_post(row)

    def get_post(self, post_id: str) -> Optional[PostRecord]:
        with self.Session() as session:
            row = session.get(PostRow, post_id)
            return self._to_post(row) if row else None

    def list_posts(self) -> list[PostRecord]:
        with self.Session() as session:
            stmt = select(PostRow).order_by(
                PostRow.created_at.desc(), PostRow.post_id.desc()
            )
            return [self._to_post(row) for row in session.execute(stmt).scalars()]

    def list_posts_by_author(self, user_name: str) -> list[PostRecord]:
        with self.Session() as session:
            stmt = (
                select(PostRow)
                .where(PostRow.author == user_name)
                .order_by(PostRow.created_at.desc(), PostRow.post_id.desc())
            )
            return [self._to_post(row) for row in session.execute(stmt).scalars()]

    def delete_post(self, post_id: str, actor: str) -> PostRecord:
        with self.Session() as session:
            post = self._lock_post(session, post_id)
            if post.author != actor:
                raise Forbidden("Unauthorized")
            record = self._to_post(post)
            for row_type in (CommentRow, FavRow, UpvoteRow, DownvoteRow, NotificationRow):
                session.execute(delete(row_type).where(row_type.post_id == post_id))
            session.delete(post)
            session.commit()
            return record

    # Comments

    def add_comment(
        self, post_id: str, *, body: str, user_name: str, user_image: Optional[str]
    ) -> CommentRecord:
        with self.Session() as session:
            post = self._lock_post(session, post_id)
            row = CommentRow(
                comment_id=new_id(),
                post_id=post_id,
                body=body,
                user_name=user_name,
                user_image=user_image,
                created_at=utc_now_iso(),
            )
            session.add(row)
            session.flush()
            self._bump(session, post, comment_count=1)
            session.commit()
            return self._to_comment(row)

    def get_comment(self, comment_id: str) -> Optional[CommentRecord]:
        with self.Session() as session:
            row = session.get(CommentRow, comment_id)
            return self._to_comment(row) if row else None

    def list_comments(self, post_id: str) -> list[CommentRecord]:
        with self.Session() as session:
            stmt = (
                select(CommentRow)
                .where(CommentRow.post_id == post_id)
                .order_by(CommentRow.created_at.asc(), CommentRow.comment_id.asc())
            )
            return [self._to_comment(row) for row in session.execute(stmt).scalars()]

    def delete_comment(self, post_id: str, comment_id: str, actor: str) -> CommentRecord:
        with self.Session() as session:
            post = self._lock_post(session, post_id)
            comment = session.execute(
                select(CommentRow)
                .where(CommentRow.comment_id == comment_id, CommentRow.post_id == post_id)
                .with_for_update()
            ).scalar_one_or_none()
            if not comment:
                raise NotFound("Comment not found")
            if comment.user_name != actor:
                raise Forbidden("Unauthorized")
            record = self._to_comment(comment)
            if not self._delete_one(
                session, CommentRow, CommentRow.comment_id == comment_id
            ):
                session.rollback()
                raise NotFound("Comment not found")
            self._bump(session, post, comment_count=-1)
            session.commit()
            return record

    # Favs

    def add_fav(self, post_id: str, user_name: str) -> tuple[PostRecord, FavRecord]:
        with self.Session() as session:
            post = self._lock_post(session, post_id)
            existing = session.execute(
                select(FavRow).where(
                    FavRow.post_id == post_id, FavRow.user_name == user_name
                )
            ).scalar_one_or_none()
            if existing:
                raise Conflict("Post has already been faved")
            row = FavRow(fav_id=new_id(), post_id=post_id, user_name=user_name)
            session.add(row)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise Conflict("Post has already been faved") from exc
            self._bump(session, post, fav_count=1)
            session.commit()
            return self._to_post(post), FavRecord(row.fav_id, row.post_id, row.user_name)

    def remove_fav(self, post_id: str, user_name: str) -> tuple[PostRecord, FavRecord]:
        with self.Session() as session:
            post = self._lock_post(session, post_id)
            row = session.execute(
                select(FavRow).where(
                    FavRow.post_id == post_id, FavRow.user_name == user_name
                )
            ).scalar_one_or_none()
            if not row:
                raise ValidationFailed("Post hasn't been faved")
            fav = FavRecord(row.fav_id, row.post_id, row.user_name)
            if not self._delete_one(session, FavRow, FavRow.fav_id == fav.fav_id):
                session.rollback()
                raise ValidationFailed("Post hasn't been faved")
            self._bump(session, post, fav_count=-1)
            session.commit()
            return self._to_post(post), fav

    def get_fav(self, fav_id: str) -> Optional[FavRecord]:
        with self.Session() as session:
            row = session.get(FavRow, fav_id)
            return FavRecord(row.fav_id, row.post_id, row.user_name) if row else None

    def list_favs(self, post_id: str) -> list[FavRecord]:
        with self.Session() as session:
            stmt = select(FavRow).where(FavRow.post_id == post_id)
            return [
                FavRecord(row.fav_id, row.post_id, row.user_name)
                for row in session.execute(stmt).scalars()
            ]

    def list_favs_by_user(self, user_name: str) -> list[FavRecord]:
        with self.Session() as session:
            stmt = select(FavRow).where(FavRow.user_name == user_name)
            return [
                FavRecord(row.fav_id, row.post_id, row.user_name)
                for row in session.execute(stmt).scalars()
            ]

    # Votes

    def toggle_vote(
        self, post_id: str, user_name: str, direction: VoteDirection
    ) -> PostRecord:
        row_type = VOTE_ROWS[direction]
        opposite_type = VOTE_ROWS[direction.opposite]
        with self.Session() as session:
            post = self._lock_post(session, post_id)
            existing = session.execute(
                select(row_type).where(
                    row_type.post_id == post_id, row_type.user_name == user_name
                )
            ).scalar_one_or_none()
            if existing:
                if not self._delete_one(
                    session, row_type, row_type.vote_id == existing.vote_id
                ):
                    session.rollback()
                    raise Conflict("Vote was changed by another request")
                delta = -direction.sign
            else:
                delta = direction.sign
                opposite = session.execute(
                    select(opposite_type).where(
                        opposite_type.post_id == post_id,
                        opposite_type.user_name == user_name,
                    )
                ).scalar_one_or_none()
                if opposite and self._delete_one(
                    session, opposite_type, opposite_type.vote_id == opposite.vote_id
                ):
                    delta += direction.sign
                session.add(
                    row_type(vote_id=new_id(), post_id=post_id, user_name=user_name)
                )
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise Conflict("Vote already recorded") from exc
            self._bump(session, post, vote_score=delta)
            session.commit()
            return self._to_post(post)

    def list_votes(self, post_id: str, direction: VoteDirection) -> list[VoteRecord]:
        row_type = VOTE_ROWS[direction]
        with self.Session() as session:
            stmt = select(row_type).where(row_type.post_id == post_id)
            return [
                VoteRecord(row.vote_id, row.post_id, row.user_name)
                for row in session.execute(stmt).scalars()
            ]

    # Users

    def create_user(self, user: UserRecord) -> UserRecord:
        with self.Session() as session:
            if session.get(UserRow, user.user_name):
                raise Conflict("This username is already taken", field="userName")
            session.add(
                UserRow(
                    user_name=user.user_name,
                    user_id=user.user_id,
                    email=user.email,
                    image_url=user.image_url,
                    bio=user.bio,
                    location=user.location,
                    created_at=user.created_at,
                )
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise Conflict("This username is already taken", field="userName") from exc
            return replace(user)

    def get_user(self, user_name: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_name)
            return self._to_user(row) if row else None

    def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.user_id == user_id)
            ).scalar_one_or_none()
            return self._to_user(row) if row else None

    def list_users(self) -> list[UserRecord]:
        with self.Session() as session:
            stmt = select(UserRow).order_by(UserRow.created_at.desc())
            return [self._to_user(row) for row in session.execute(stmt).scalars()]

    def update_user_details(self, user_name: str, details: dict) -> UserRecord:
        with self.Session() as session:
            row = session.get(UserRow, user_name)
            if not row:
                raise NotFound("User not found")
            for key in USER_DETAIL_FIELDS:
                if key in details:
                    setattr(row, key, details[key])
            session.commit()
            return self._to_user(row)

    def update_user_image(self, user_name: str, image_url: str) -> UserRecord:
        with self.Session() as session:
            row = session.get(UserRow, user_name)
            if not row:
                raise NotFound("User not found")
            row.image_url = image_url
            session.commit()
            return self._to_user(row)

    def update_author_image(self, user_name: str, image_url: str) -> int:
        with self.Session() as session:
            posts = session.execute(
                update(PostRow)
                .where(PostRow.author == user_name)
                .values(author_image=image_url)
            )
            comments = session.execute(
                update(CommentRow)
                .where(CommentRow.user_name == user_name)
                .values(user_image=image_url)
            )
            session.commit()
            return (posts.rowcount or 0) + (comments.rowcount or 0)

    # Notifications

    def create_notification(self, notification: NotificationRecord) -> None:
        with self.Session() as session:
            session.merge(
                NotificationRow(
                    notification_id=notification.notification_id,
                    recipient=notification.recipient,
                    sender=notification.sender,
                    type=notification.type,
                    post_id=notification.post_id,
                    read=notification.read,
                    created_at=notification.created_at,
                )
            )
            session.commit()

    def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        with self.Session() as session:
            row = session.get(NotificationRow, notification_id)
            return self._to_notification(row) if row else None

    def delete_notification(self, notification_id: str) -> bool:
        with self.Session() as session:
            result = session.execute(
                delete(NotificationRow).where(
                    NotificationRow.notification_id == notification_id
                )
            )
            session.commit()
            return bool(result.rowcount)

    def list_notifications(
        self, recipient: str, limit: int = 10
    ) -> list[NotificationRecord]:
        with self.Session() as session:
            stmt = (
                select(NotificationRow)
                .where(NotificationRow.recipient == recipient)
                .order_by(NotificationRow.created_at.desc())
                .limit(limit)
            )
            return [
                self._to_notification(row) for row in session.execute(stmt).scalars()
            ]

    def mark_notifications_read(self, notification_ids: Iterable[str], recipient: str) -> int:
        ids = list(set(notification_ids))
        if not ids:
            return 0
        with self.Session() as session:
            result = session.execute(
                update(NotificationRow)
                .where(
                    NotificationRow.notification_id.in_(ids),
                    NotificationRow.recipient == recipient,
                )
                .values(read=True)
            )
            session.commit()
            return result.rowcount or 0

    # Accounts

    def create_account(self, account: AccountRecord) -> AccountRecord:
        with self.Session() as session:
            session.add(
                AccountRow(
                    user_id=account.user_id,
                    email=account.email,
                    password_hash=account.password_hash,
                    created_at=account.created_at,
                )
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise Conflict("Email is already in use", field="email") from exc
            return replace(account)

    def get_account(self, user_id: str) -> Optional[AccountRecord]:
        with self.Session() as session:
            row = session.get(AccountRow, user_id)
            return self._to_account(row) if row else None

    def get_account_by_email(self, email: str) -> Optional[AccountRecord]:
        with self.Session() as session:
            row = session.execute(
                select(AccountRow).where(AccountRow.email == email.strip().lower())
            ).scalar_one_or_none()
            return self._to_account(row) if row else None

    def delete_account(self, user_id: str) -> bool:
        with self.Session() as session:
            removed = self._delete_one(session, AccountRow, AccountRow.user_id == user_id)
            session.commit()
            return removed

    def reconcile_counters(self, *, dry_run: bool = False) -> int:
        def counts(row_type) -> dict[str, int]:
            stmt = select(row_type.post_id, func.count()).group_by(row_type.post_id)
            return dict(session.execute(stmt).all())

        corrected = 0
        with self.Session() as session:
            comments = counts(CommentRow)
            favs = counts(FavRow)
            ups = counts(UpvoteRow)
            downs = counts(DownvoteRow)
            for post in session.execute(select(PostRow).with_for_update()).scalars():
                expected = (
                    comments.get(post.post_id, 0),
                    favs.get(post.post_id, 0),
                    ups.get(post.post_id, 0) - downs.get(post.post_id, 0),
                )
                if (post.comment_count, post.fav_count, post.vote_score) == expected:
                    continue
                corrected += 1
                if not dry_run:
                    post.comment_count, post.fav_count, post.vote_score = expected
            if dry_run:
                session.rollback()
            else:
                session.commit()
        return corrected


Base = declarative_base()


class PostRow(Base):
    __tablename__ = "posts"

    post_id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    body = Column(String, nullable=False)
    category = Column(String, nullable=False, default="")
    author = Column(String, nullable=False, index=True)
    author_image = Column(String, nullable=True)
    created_at = Column(String, nullable=False, index=True)
    comment_count = Column(Integer, nullable=False, default=0)
    fav_count = Column(Integer, nullable=False, default=0)
    vote_score = Column(Integer, nullable=False, default=0)


class CommentRow(Base):
    __tablename__ = "comments"

    comment_id = Column(String, primary_key=True)
    post_id = Column(String, nullable=False, index=True)
    body = Column(String, nullable=False)
    user_name = Column(String, nullable=False, index=True)
    user_image = Column(String, nullable=True)
    created_at = Column(String, nullable=False)


class FavRow(Base):
    __tablename__ = "favs"
    __table_args__ = (UniqueConstraint("post_id", "user_name", name="uq_fav_post_user"),)

    fav_id = Column(String, primary_key=True)
    post_id = Column(String, nullable=False, index=True)
    user_name = Column(String, nullable=False, index=True)


class UpvoteRow(Base):
    __tablename__ = "upvotes"
    __table_args__ = (
        UniqueConstraint("post_id", "user_name", name="uq_upvote_post_user"),
    )

    vote_id = Column(String, primary_key=True)
    post_id = Column(String, nullable=False, index=True)
    user_name = Column(String, nullable=False)


class DownvoteRow(Base):
    __tablename__ = "downvotes"
    __table_args__ = (
        UniqueConstraint("post_id", "user_name", name="uq_downvote_post_user"),
    )

    vote_id = Column(String, primary_key=True)
    post_id = Column(String, nullable=False, index=True)
    user_name = Column(String, nullable=False)


VOTE_ROWS = {VoteDirection.UP: UpvoteRow, VoteDirection.DOWN: DownvoteRow}


class UserRow(Base):
    __tablename__ = "users"

    user_name = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, unique=True)
    email = Column(String, nullable=False)
    image_url = Column(String, nullable=False)
    bio = Column(String, nullable=False, default="")
    location = Column(String, nullable=False, default="")
    created_at = Column(String, nullable=False)


class NotificationRow(Base):
    __tablename__ = "notifications"

    notification_id = Column(String, primary_key=True)
    recipient = Column(String, nullable=False, index=True)
    sender = Column(String, nullable=False)
    type = Column(String, nullable=False)
    post_id = Column(String, nullable=False, index=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(String, nullable=False)


class AccountRow(Base):
    __tablename__ = "accounts"

    user_id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(String, nullable=False)
