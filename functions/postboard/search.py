"""
Full-text search index for posts.

Objects are plain post dicts tagged with an ``objectID``; the sqlite store keeps
them as JSON and scores matches in Python.
"""

from __future__ import annotations

import json
import os
import sqlite3
import threading
import time
from typing import Iterable, Protocol

DEFAULT_SEARCH_LIMIT = 20


class SearchIndex(Protocol):
    def save_object(self, obj: dict) -> None:
        ...

    def save_objects(self, objects: Iterable[dict]) -> int:
        ...

    def delete_object(self, object_id: str) -> None:
        ...

    def clear(self) -> None:
        ...

    def search(self, query: str, *, limit: int = DEFAULT_SEARCH_LIMIT) -> list[dict]:
        ...


def to_search_object(post: dict) -> dict:
    obj = dict(post)
    obj["objectID"] = post["id"]
    return obj


def score_object(obj: dict, terms: list[str]) -> float:
    title = (obj.get("title") or "").lower()
    body = (obj.get("body") or "").lower()
    author = (obj.get("author") or "").lower()
    category = (obj.get("category") or "").lower()
    match = lambda s: sum(min(3, s.count(q)) for q in terms)
    matchu = lambda s: sum(int(s.count(q) > 0) for q in terms)
    score = 0.0
    score += 20.0 * matchu(title)
    score += 10.0 * matchu(author)
    score += 5.0 * matchu(category)
    score += 1.0 * match(body)
    return score


def rank(objects: Iterable[dict], query: str, limit: int) -> list[dict]:
    terms = query.lower().strip().split()
    if not terms:
        return []
    scored: list[tuple[float, dict]] = []
    for obj in objects:
        score = score_object(obj, terms)
        if score > 0:
            scored.append((score, obj))
    scored.sort(key=lambda item: item[0], reverse=True)
    return [obj for _, obj in scored[:limit]]


class InMemorySearchIndex:
    """Dict-backed index for development and tests."""

    def __init__(self):
        self.objects: dict[str, dict] = {}

    def save_object(self, obj: dict) -> None:
        self.objects[obj["objectID"]] = dict(obj)

    def save_objects(self, objects: Iterable[dict]) -> int:
        count = 0
        for obj in objects:
            self.save_object(obj)
            count += 1
        return count

    def delete_object(self, object_id: str) -> None:
        self.objects.pop(object_id, None)

    def clear(self) -> None:
        self.objects.clear()

    def reset(self) -> None:
        self.clear()

    def search(self, query: str, *, limit: int = DEFAULT_SEARCH_LIMIT) -> list[dict]:
        return rank(list(self.objects.values()), query, limit)


class SqliteSearchIndex:
    def __init__(self, db_path: str):
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self.db_path = db_path
        self._write_lock = threading.Lock()
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS search_objects (
                    object_id TEXT PRIMARY KEY,
                    payload_json TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

    def save_object(self, obj: dict) -> None:
        self.save_objects([obj])

    def save_objects(self, objects: Iterable[dict]) -> int:
        saved = 0
        with self._write_lock, self._connect() as conn:
            for obj in objects:
                conn.execute(
                    """
                    INSERT INTO search_objects (object_id, payload_json, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(object_id) DO UPDATE SET
                        payload_json = excluded.payload_json,
                        updated_at = excluded.updated_at
                    """,
                    (obj["objectID"], json.dumps(obj), time.time()),
                )
                saved += 1
        return saved

    def delete_object(self, object_id: str) -> None:
        with self._write_lock, self._connect() as conn:
            conn.execute("DELETE FROM search_objects WHERE object_id = ?", (object_id,))

    def clear(self) -> None:
        with self._write_lock, self._connect() as conn:
            conn.execute("DELETE FROM search_objects")

    def search(self, query: str, *, limit: int = DEFAULT_SEARCH_LIMIT) -> list[dict]:
        if not query.strip():
            return []
        with self._connect() as conn:
            rows = conn.execute("SELECT payload_json FROM search_objects").fetchall()
        return rank((json.loads(row["payload_json"]) for row in rows), query, limit)
