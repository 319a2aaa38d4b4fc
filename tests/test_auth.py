"""Tests for fairvalue.store.auth."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from fairvalue.store.auth import AccountStore, AuthError, AuthErrorKind, Session

NOW = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def accounts(tmp_path: Path) -> AccountStore:
    """Account store on a temp database with a cheap bcrypt work factor."""
    return AccountStore(tmp_path / "store" / "fairvalue.db", bcrypt_rounds=4)


def _sign_up(accounts: AccountStore, email: str = "ada@example.com") -> str:
    profile = accounts.sign_up(email, "secret1", "Ada", "Lovelace", "ada", NOW)
    return profile.uid


class TestSession:

    def test_anonymous(self) -> None:
        session = Session.anonymous()
        assert not session.is_authenticated
        assert session.user_id == ""

    def test_for_user(self) -> None:
        session = Session.for_user("u1")
        assert session.is_authenticated
        assert session.user_id == "u1"


class TestSignUp:

    def test_creates_profile(self, accounts: AccountStore) -> None:
        uid = _sign_up(accounts)
        profile = accounts.get_profile(uid)

        assert profile is not None
        assert profile.email == "ada@example.com"
        assert profile.first_name == "Ada"
        assert profile.created_at == NOW.timestamp()

    def test_creates_database_directory(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "dir" / "fv.db"
        AccountStore(db_path, bcrypt_rounds=4).sign_up(
            "a@b.com", "secret1", "", "", "", NOW,
        )
        assert db_path.exists()

    def test_weak_password(self, accounts: AccountStore) -> None:
        with pytest.raises(AuthError) as exc_info:
            accounts.sign_up("ada@example.com", "12345", "", "", "", NOW)
        assert exc_info.value.kind is AuthErrorKind.WEAK_CREDENTIAL

    def test_duplicate_email_case_insensitive(self, accounts: AccountStore) -> None:
        _sign_up(accounts, "ada@example.com")
        with pytest.raises(AuthError) as exc_info:
            _sign_up(accounts, "  ADA@Example.com ")
        assert exc_info.value.kind is AuthErrorKind.DUPLICATE_ACCOUNT

    def test_password_not_stored_in_clear(self, accounts: AccountStore, tmp_path: Path) -> None:
        _sign_up(accounts)
        raw = (tmp_path / "store" / "fairvalue.db").read_bytes()
        assert b"secret1" not in raw


class TestSignIn:

    def test_valid_credentials(self, accounts: AccountStore) -> None:
        uid = _sign_up(accounts)
        session = accounts.sign_in("ADA@example.com", "secret1")

        assert session == Session.for_user(uid)

    def test_wrong_password(self, accounts: AccountStore) -> None:
        _sign_up(accounts)
        with pytest.raises(AuthError) as exc_info:
            accounts.sign_in("ada@example.com", "wrong-password")
        assert exc_info.value.kind is AuthErrorKind.INVALID_CREDENTIAL

    def test_unknown_email_looks_like_wrong_password(self, accounts: AccountStore) -> None:
        with pytest.raises(AuthError) as exc_info:
            accounts.sign_in("nobody@example.com", "secret1")
        assert exc_info.value.kind is AuthErrorKind.INVALID_CREDENTIAL
        assert str(exc_info.value) == "Invalid email or password"


class TestResetPassword:

    def test_new_password_works(self, accounts: AccountStore) -> None:
        _sign_up(accounts)
        accounts.reset_password("ada@example.com", "another1")

        assert accounts.sign_in("ada@example.com", "another1").is_authenticated
        with pytest.raises(AuthError):
            accounts.sign_in("ada@example.com", "secret1")

    def test_unknown_account(self, accounts: AccountStore) -> None:
        with pytest.raises(AuthError) as exc_info:
            accounts.reset_password("nobody@example.com", "another1")
        assert exc_info.value.kind is AuthErrorKind.ACCOUNT_NOT_FOUND

    def test_weak_new_password(self, accounts: AccountStore) -> None:
        _sign_up(accounts)
        with pytest.raises(AuthError) as exc_info:
            accounts.reset_password("ada@example.com", "abc")
        assert exc_info.value.kind is AuthErrorKind.WEAK_CREDENTIAL


class TestGetProfile:

    def test_unknown_uid(self, accounts: AccountStore) -> None:
        assert accounts.get_profile("missing") is None
