"""
Domain errors raised by the store, identity provider and handlers.

Each error carries the HTTP status the API renders it with.
"""

from __future__ import annotations

from typing import Optional


class PostboardError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def as_body(self) -> dict:
        if self.field:
            return {self.field: self.message}
        return {"error": self.message}


class ValidationFailed(PostboardError):
    """Missing or malformed input."""

    status_code = 400


class Conflict(PostboardError):
    """The record already exists (duplicate fav, vote or username)."""

    status_code = 400


class Forbidden(PostboardError):
    """The actor may not act on the record."""

    status_code = 403


class NotFound(PostboardError):
    status_code = 404


class UpstreamError(PostboardError):
    """A collaborator (store, identity provider, storage) failed."""

    status_code = 500

    def __init__(self, code: str, message: Optional[str] = None):
        super().__init__(message or code)
        self.code = code

    def as_body(self) -> dict:
        return {"error": self.code}


class InvalidFields(ValidationFailed):
    """Several fields failed validation; rendered as a field -> message object."""

    def __init__(self, errors: dict):
        super().__init__("Invalid input")
        self.errors = errors

    def as_body(self) -> dict:
        return dict(self.errors)
