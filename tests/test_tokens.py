"""Tests for auth/tokens.py and auth/store.py.

Covers:
- Password hashing round trip and malformed hashes
- Access vs refresh token kinds are not interchangeable
- Refresh rotation: the old token is single-use
- Expired refresh-token records are purged when a new token is issued
- authenticate_user() with wrong email / wrong password
- UserStore email uniqueness and team removal
"""

from datetime import datetime, timedelta, timezone

import pytest

from auth.models import User
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import (
    authenticate_user,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    hash_password,
    issue_refresh_token,
    rotate_refresh_token,
    verify_password,
)
from core.errors import Conflict


@pytest.fixture
def user_store(documents) -> UserStore:
    return UserStore(documents)


@pytest.fixture
def stored_user(user_store) -> User:
    user = User(
        email="Alice@Example.com",
        name="Alice",
        role="Dev",
        team_ids=["T1"],
        password_hash=hash_password("correct horse"),
    )
    user_store.create_user(user)
    return user


class TestPasswords:
    def test_hash_verifies(self) -> None:
        hashed = hash_password("s3cret-pass")
        assert hashed != "s3cret-pass"
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("wrong", hashed)

    def test_malformed_hash_is_false_not_error(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False


class TestTokenKinds:
    def test_access_token_claims(self, stored_user: User) -> None:
        payload = decode_access_token(create_access_token(stored_user))
        assert payload is not None
        assert payload["sub"] == stored_user.id
        assert payload["role"] == "Dev"
        assert payload["teamIds"] == ["T1"]
        assert payload["email"] == "alice@example.com"

    def test_refresh_token_rejected_as_access(self, stored_user: User) -> None:
        assert decode_access_token(create_refresh_token(stored_user.id)) is None

    def test_access_token_rejected_as_refresh(self, stored_user: User) -> None:
        assert decode_refresh_token(create_access_token(stored_user)) is None

    def test_garbage_token_rejected(self) -> None:
        assert decode_access_token("not.a.jwt") is None

    def test_refresh_tokens_are_unique(self, stored_user: User) -> None:
        assert create_refresh_token(stored_user.id) != create_refresh_token(stored_user.id)


class TestRefreshRotation:
    def test_rotation_returns_new_token_and_revokes_old(self, documents, stored_user: User) -> None:
        store = RefreshTokenStore(documents)
        first = issue_refresh_token(store, stored_user.id)
        rotated = rotate_refresh_token(store, first)
        assert rotated is not None
        user_id, second = rotated
        assert user_id == stored_user.id
        assert second != first
        assert not store.exists(first)
        assert store.exists(second)

    def test_reusing_rotated_token_fails(self, documents, stored_user: User) -> None:
        store = RefreshTokenStore(documents)
        first = issue_refresh_token(store, stored_user.id)
        assert rotate_refresh_token(store, first) is not None
        assert rotate_refresh_token(store, first) is None

    def test_untracked_token_fails(self, documents, stored_user: User) -> None:
        store = RefreshTokenStore(documents)
        assert rotate_refresh_token(store, create_refresh_token(stored_user.id)) is None

    def test_revoke_all_for_user(self, documents, stored_user: User) -> None:
        store = RefreshTokenStore(documents)
        issue_refresh_token(store, stored_user.id)
        issue_refresh_token(store, stored_user.id)
        assert store.revoke_all_for_user(stored_user.id) == 2

    def test_issue_purges_expired_records(self, documents, stored_user: User) -> None:
        store = RefreshTokenStore(documents)
        store.add(stored_user.id, "stale-token", datetime.now(timezone.utc) - timedelta(minutes=1))
        live = issue_refresh_token(store, stored_user.id)
        assert not store.exists("stale-token")
        assert store.exists(live)
        assert documents.collection("refresh_tokens").count() == 1

    def test_purge_keeps_unexpired_records(self, documents, stored_user: User) -> None:
        store = RefreshTokenStore(documents)
        now = datetime.now(timezone.utc)
        store.add(stored_user.id, "old", now - timedelta(days=1))
        store.add(stored_user.id, "fresh", now + timedelta(days=1))
        assert store.purge_expired(now) == 1
        assert store.exists("fresh")
        assert not store.exists("old")


class TestAuthenticateUser:
    def test_valid_credentials_case_insensitive_email(self, user_store, stored_user) -> None:
        user = authenticate_user(user_store, "ALICE@example.com", "correct horse")
        assert user is not None
        assert user.id == stored_user.id

    def test_wrong_password(self, user_store, stored_user) -> None:
        assert authenticate_user(user_store, "alice@example.com", "battery staple") is None

    def test_unknown_email(self, user_store) -> None:
        assert authenticate_user(user_store, "nobody@example.com", "correct horse") is None


class TestUserStore:
    def test_duplicate_email_conflicts(self, user_store, stored_user) -> None:
        with pytest.raises(Conflict):
            user_store.create_user(User(email="alice@example.com", name="Other", role="Dev"))

    def test_update_to_taken_email_conflicts(self, user_store, stored_user) -> None:
        other_id = user_store.create_user(User(email="bob@example.com", name="Bob", role="Dev"))
        with pytest.raises(Conflict):
            user_store.update_user(other_id, {"email": "alice@example.com"})

    def test_list_users_by_team(self, user_store, stored_user) -> None:
        user_store.create_user(User(email="carol@example.com", name="Carol", role="Dev", team_ids=["T2"]))
        assert [u.email for u in user_store.list_users(team_id="T1")] == ["alice@example.com"]

    def test_remove_team_detaches_members(self, user_store, stored_user) -> None:
        assert user_store.remove_team("T1") == 1
        assert user_store.get_by_id(stored_user.id).team_ids == []
