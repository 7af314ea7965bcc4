"""
Identity provider: email/password accounts and bearer tokens.

Accounts live in the document store; tokens are signed JWTs whose subject is
the account's user id.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

import bcrypt
from jose import JWTError, jwt

from postboard.db import AccountRecord, DbClient, new_id
from postboard.errors import PostboardError

logger = logging.getLogger(__name__)


class IdentityError(PostboardError):
    """Raised by the identity provider; ``code`` mirrors provider error codes."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        field: Optional[str] = None,
        status_code: int = 400,
    ):
        super().__init__(message, field=field)
        self.code = code
        self.status_code = status_code


EMAIL_IN_USE = "auth/email-already-in-use"
WRONG_CREDENTIALS = "auth/wrong-credentials"
INVALID_TOKEN = "auth/invalid-token"


class IdentityProvider(Protocol):
    def create_account(self, email: str, password: str) -> str:
        ...

    def sign_in(self, email: str, password: str) -> str:
        ...

    def delete_account(self, user_id: str) -> None:
        ...

    def issue_token(self, user_id: str) -> str:
        ...

    def verify_token(self, token: str) -> str:
        ...


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


class LocalIdentityProvider:
    """Identity provider backed by the account collection of the document store."""

    def __init__(
        self,
        db: DbClient,
        *,
        secret_key: str,
        algorithm: str = "HS256",
        expire_minutes: int = 60,
    ):
        self.db = db
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def create_account(self, email: str, password: str) -> str:
        """Create an account and return its user id."""
        email = email.strip().lower()
        if self.db.get_account_by_email(email):
            raise IdentityError(EMAIL_IN_USE, "Email is already in use", field="email")
        account = AccountRecord(
            user_id=new_id(), email=email, password_hash=hash_password(password)
        )
        self.db.create_account(account)
        logger.info("Created account %s", account.user_id)
        return account.user_id

    def sign_in(self, email: str, password: str) -> str:
        """Check credentials and return the user id."""
        account = self.db.get_account_by_email(email.strip().lower())
        if not account or not verify_password(password, account.password_hash):
            raise IdentityError(
                WRONG_CREDENTIALS,
                "Wrong credentials, please try again",
                field="general",
                status_code=403,
            )
        return account.user_id

    def delete_account(self, user_id: str) -> None:
        if self.db.delete_account(user_id):
            logger.info("Deleted account %s", user_id)

    def issue_token(
        self, user_id: str, expires_delta: Optional[timedelta] = None
    ) -> str:
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(minutes=self.expire_minutes))
        return jwt.encode(
            {"sub": user_id, "iat": now, "exp": expire},
            self.secret_key,
            algorithm=self.algorithm,
        )

    def verify_token(self, token: str) -> str:
        """Decode a bearer token and return its user id."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as exc:
            raise IdentityError(INVALID_TOKEN, "Unauthorized", status_code=403) from exc
        user_id = payload.get("sub")
        if not user_id:
            raise IdentityError(INVALID_TOKEN, "Unauthorized", status_code=403)
        return user_id
