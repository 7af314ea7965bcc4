"""
Request authentication and credential validation.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from postboard.db import DbClient, UserRecord
from postboard.dependencies import get_db_client, get_identity_provider
from postboard.errors import Forbidden, InvalidFields
from postboard.identity import IdentityError, IdentityProvider

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(
    r"^(([^<>()\[\]\\.,;:\s@\"]+(\.[^<>()\[\]\\.,;:\s@\"]+)*)|(\".+\"))@"
    r"((\[[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\])|(([a-zA-Z\-0-9]+\.)+[a-zA-Z]{2,}))$"
)

bearer_scheme = HTTPBearer(auto_error=False)


def is_empty(value: Optional[str]) -> bool:
    return value is None or value.strip() == ""


def is_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value.strip()))


def validate_signup_data(
    *,
    email: Optional[str],
    password: Optional[str],
    confirm_password: Optional[str],
    user_name: Optional[str],
) -> None:
    errors: dict[str, str] = {}
    if is_empty(email):
        errors["email"] = "Must not be empty"
    elif not is_email(email):
        errors["email"] = "Must be a valid email address"
    if is_empty(password):
        errors["password"] = "Must not be empty"
    if password != confirm_password:
        errors["confirmPassword"] = "Passwords must match"
    if is_empty(user_name):
        errors["userName"] = "Must not be empty"
    if errors:
        raise InvalidFields(errors)


def validate_login_data(*, email: Optional[str], password: Optional[str]) -> None:
    errors: dict[str, str] = {}
    if is_empty(email):
        errors["email"] = "Must not be empty"
    if is_empty(password):
        errors["password"] = "Must not be empty"
    if errors:
        raise InvalidFields(errors)


def reduce_user_details(*, bio: Optional[str], location: Optional[str]) -> dict:
    """Keep only the non-empty profile fields, trimmed."""
    details = {}
    if not is_empty(bio):
        details["bio"] = bio.strip()
    if not is_empty(location):
        details["location"] = location.strip()
    return details


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    identity: IdentityProvider = Depends(get_identity_provider),
    db: DbClient = Depends(get_db_client),
) -> UserRecord:
    """Resolve the bearer token of the request to the user it belongs to."""
    if credentials is None:
        logger.info("Rejected request without bearer token")
        raise Forbidden("Unauthorized")
    try:
        user_id = identity.verify_token(credentials.credentials)
    except IdentityError:
        logger.info("Rejected request with invalid bearer token")
        raise Forbidden("Unauthorized")
    user = db.get_user_by_id(user_id)
    if not user:
        raise Forbidden("Unauthorized")
    return user
