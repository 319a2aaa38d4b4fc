"""Local accounts and sessions.

Accounts live in the same SQLite file as saved valuations. Passwords are
hashed with bcrypt. Failures are reported as AuthError with a kind the
caller can branch on.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

import bcrypt

from fairvalue.config import MIN_PASSWORD_LENGTH
from fairvalue.store.db import connect

logger = logging.getLogger(__name__)


class AuthErrorKind(Enum):
    """Recognisable authentication failure categories."""

    DUPLICATE_ACCOUNT = "duplicate-account"
    WEAK_CREDENTIAL = "weak-credential"
    INVALID_CREDENTIAL = "invalid-credential"
    ACCOUNT_NOT_FOUND = "account-not-found"
    GENERIC_FAILURE = "generic-failure"


class AuthError(Exception):
    """Authentication or account operation failed.

    Attributes:
        kind: Failure category.
    """

    def __init__(self, kind: AuthErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass(frozen=True)
class Session:
    """Who is calling, as seen by the store."""

    user_id: str = ""
    is_authenticated: bool = False

    @classmethod
    def anonymous(cls) -> Session:
        return cls()

    @classmethod
    def for_user(cls, user_id: str) -> Session:
        return cls(user_id=user_id, is_authenticated=True)


@dataclass(frozen=True)
class UserProfile:
    """Public account details."""

    uid: str
    email: str
    first_name: str
    last_name: str
    username: str
    created_at: float


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountStore:
    """SQLite-backed account directory.

    Args:
        db_path: Database file (created on first use).
        bcrypt_rounds: bcrypt work factor.
    """

    def __init__(self, db_path: Path, bcrypt_rounds: int = 12) -> None:
        self._db_path = db_path
        self._rounds = bcrypt_rounds

    def sign_up(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        username: str,
        now: datetime,
    ) -> UserProfile:
        """Create an account.

        Raises:
            AuthError: WEAK_CREDENTIAL for short passwords,
                DUPLICATE_ACCOUNT if the email is registered,
                GENERIC_FAILURE on database errors.
        """
        self._check_strength(password)
        profile = UserProfile(
            uid=uuid.uuid4().hex,
            email=_normalize_email(email),
            first_name=first_name,
            last_name=last_name,
            username=username,
            created_at=now.timestamp(),
        )
        try:
            conn = connect(self._db_path)
            try:
                with conn:
                    conn.execute(
                        "INSERT INTO users (uid, email, password_hash, first_name, "
                        "last_name, username, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (
                            profile.uid,
                            profile.email,
                            self._hash(password),
                            profile.first_name,
                            profile.last_name,
                            profile.username,
                            profile.created_at,
                        ),
                    )
            finally:
                conn.close()
        except sqlite3.IntegrityError as e:
            raise AuthError(
                AuthErrorKind.DUPLICATE_ACCOUNT, "This email is already registered",
            ) from e
        except sqlite3.Error as e:
            logger.error("Account creation failed: %s", e)
            raise AuthError(
                AuthErrorKind.GENERIC_FAILURE, "Account creation failed",
            ) from e

        logger.info("Created account %s", profile.uid)
        return profile

    def sign_in(self, email: str, password: str) -> Session:
        """Authenticate and return an authenticated session.

        Unknown emails and wrong passwords are indistinguishable.

        Raises:
            AuthError: INVALID_CREDENTIAL or GENERIC_FAILURE.
        """
        row = self._fetch_user(
            "SELECT uid, password_hash FROM users WHERE email = ?",
            _normalize_email(email),
        )
        if row is None or not bcrypt.checkpw(
            password.encode("utf-8"), row["password_hash"].encode("utf-8"),
        ):
            raise AuthError(
                AuthErrorKind.INVALID_CREDENTIAL, "Invalid email or password",
            )
        return Session.for_user(row["uid"])

    def get_profile(self, uid: str) -> UserProfile | None:
        row = self._fetch_user(
            "SELECT uid, email, first_name, last_name, username, created_at "
            "FROM users WHERE uid = ?",
            uid,
        )
        if row is None:
            return None
        return UserProfile(
            uid=row["uid"],
            email=row["email"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            username=row["username"],
            created_at=float(row["created_at"]),
        )

    def reset_password(self, email: str, new_password: str) -> None:
        """Replace the password of an existing account.

        Raises:
            AuthError: ACCOUNT_NOT_FOUND, WEAK_CREDENTIAL or GENERIC_FAILURE.
        """
        self._check_strength(new_password)
        try:
            conn = connect(self._db_path)
            try:
                with conn:
                    cursor = conn.execute(
                        "UPDATE users SET password_hash = ? WHERE email = ?",
                        (self._hash(new_password), _normalize_email(email)),
                    )
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise AuthError(
                AuthErrorKind.GENERIC_FAILURE, "Password reset failed",
            ) from e
        if cursor.rowcount == 0:
            raise AuthError(
                AuthErrorKind.ACCOUNT_NOT_FOUND, "No account found with this email",
            )

    def _fetch_user(self, query: str, value: str) -> sqlite3.Row | None:
        try:
            conn = connect(self._db_path)
            try:
                return conn.execute(query, (value,)).fetchone()  # type: ignore[no-any-return]
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise AuthError(
                AuthErrorKind.GENERIC_FAILURE, "Account lookup failed",
            ) from e

    def _hash(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def _check_strength(password: str) -> None:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(
                AuthErrorKind.WEAK_CREDENTIAL,
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            )
