"""
Helpers reshaping record lists into maps keyed by id / userName.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable


def format_posts(posts: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    return {post["id"]: dict(post) for post in posts}


def format_users(users: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    return {user["userName"]: dict(user) for user in users}
