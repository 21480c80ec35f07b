"""
auth/store.py -- Document-store persistence for auth entities.

Pattern: Repository + Data Mapper. UserStore and RefreshTokenStore are the
repositories; _doc_to_user / _user_to_doc are the mappers. Route and
dependency code never touches the collection directly.

Collections:
  users           one document per User, email unique (enforced here)
  refresh_tokens  one document per live refresh token, keyed by token value;
                  deleting the document revokes the token; expired ones are
                  purged whenever a new token is issued

Layer rule: no imports from api/ or tracker/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from auth.models import User
from core.documents import Document, DocumentStore
from core.errors import Conflict

logger = logging.getLogger("vmp.auth")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Mappers
# ---------------------------------------------------------------------------


def _doc_to_user(doc: Document) -> User:
    return User(
        id=doc["id"],
        email=doc["email"],
        name=doc.get("name", ""),
        role=doc["role"],
        team_ids=list(doc.get("team_ids") or []),
        password_hash=doc.get("password_hash"),
        created_at=_parse_dt(doc.get("created_at")),
        updated_at=_parse_dt(doc.get("updated_at")),
    )


def _user_to_doc(user: User) -> Document:
    doc: Document = {
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "team_ids": list(user.team_ids),
        "password_hash": user.password_hash,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "updated_at": user.updated_at.isoformat() if user.updated_at else None,
    }
    if user.id:
        doc["id"] = user.id
    return doc


def _normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Principal Store: users keyed by id, unique by email."""

    def __init__(self, documents: DocumentStore) -> None:
        self._users = documents.collection("users", {"email", "role"})

    def get_by_id(self, user_id: str) -> User | None:
        doc = self._users.find_one({"id": user_id})
        return _doc_to_user(doc) if doc else None

    def get_by_email(self, email: str) -> User | None:
        doc = self._users.find_one({"email": _normalize_email(email)})
        return _doc_to_user(doc) if doc else None

    def list_users(self, role: str | None = None, team_id: str | None = None) -> list[User]:
        filter: dict[str, Any] = {}
        if role:
            filter["role"] = role
        if team_id:
            filter["team_ids"] = team_id
        return [_doc_to_user(d) for d in self._users.find(filter, sort=[("name", 1)])]

    def has_users(self) -> bool:
        return self._users.count() > 0

    def create_user(self, user: User) -> str:
        """Insert a user and return its id. Raises Conflict on duplicate email."""
        user.email = _normalize_email(user.email)
        if self._users.find_one({"email": user.email}) is not None:
            raise Conflict(f"A user with email {user.email} already exists")
        now = _now()
        user.created_at = user.created_at or now
        user.updated_at = now
        user.id = self._users.insert_one(_user_to_doc(user))
        return user.id

    def update_user(self, user_id: str, changes: dict[str, Any]) -> User | None:
        """Apply field changes (User attribute names) and return the updated user.

        Returns None when the user does not exist. Changing email to one held
        by another user raises Conflict.
        """
        doc_changes = dict(changes)
        if "email" in doc_changes:
            doc_changes["email"] = _normalize_email(doc_changes["email"])
            other = self._users.find_one({"email": doc_changes["email"]})
            if other is not None and other["id"] != user_id:
                raise Conflict(f"A user with email {doc_changes['email']} already exists")
        if "team_ids" in doc_changes:
            doc_changes["team_ids"] = list(doc_changes["team_ids"])
        doc_changes["updated_at"] = _now().isoformat()
        doc = self._users.find_one_and_update({"id": user_id}, doc_changes)
        return _doc_to_user(doc) if doc else None

    def delete_user(self, user_id: str) -> bool:
        return self._users.delete_one({"id": user_id})

    def remove_team(self, team_id: str) -> int:
        """Drop a deleted team from every member's team_ids. Returns members touched."""
        members = self._users.find({"team_ids": team_id})
        for doc in members:
            remaining = [t for t in doc.get("team_ids", []) if t != team_id]
            self._users.find_one_and_update({"id": doc["id"]}, {"team_ids": remaining})
        return len(members)


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Revocation store for refresh tokens. A token is valid only while tracked.

    Each record carries the token's expiry so records for tokens that were
    never rotated or logged out can be purged once the JWT itself is dead.
    """

    def __init__(self, documents: DocumentStore) -> None:
        self._tokens = documents.collection("refresh_tokens", {"token", "user_id"})

    def add(self, user_id: str, token: str, expires_at: datetime) -> None:
        self._tokens.insert_one(
            {
                "user_id": user_id,
                "token": token,
                "created_at": _now().isoformat(),
                "expires_at": expires_at.isoformat(),
            }
        )

    def exists(self, token: str) -> bool:
        return self._tokens.find_one({"token": token}) is not None

    def revoke(self, token: str) -> bool:
        return self._tokens.delete_one({"token": token})

    def revoke_all_for_user(self, user_id: str) -> int:
        return self._tokens.delete_many({"user_id": user_id})

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete records whose token has expired. Returns the number removed."""
        now = now or _now()

        def expired(doc: dict[str, Any]) -> bool:
            expires_at = _parse_dt(doc.get("expires_at"))
            return expires_at is not None and expires_at <= now

        removed = self._tokens.delete_many(predicate=expired)
        if removed:
            logger.info("Purged %d expired refresh tokens", removed)
        return removed
