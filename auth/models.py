"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
policy module do the work.

Layer rule: no imports from api/ or tracker/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """A person who can sign in.

    password_hash is a bcrypt hash and never leaves the auth layer; API
    response models omit it. team_ids are opaque team identifiers.
    """

    email: str
    name: str
    role: str  # "Admin", "Security", "Dev", "ProductOwner"
    team_ids: list[str] = field(default_factory=list)
    password_hash: str | None = None
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class Principal:
    """The authenticated identity used for every access decision in a request.

    Built fresh from the stored User on each request, so role and team
    changes take effect without waiting for the access token to expire.
    """

    id: str
    role: str
    team_ids: frozenset[str] = frozenset()
    email: str = ""

    @classmethod
    def from_user(cls, user: User) -> Principal:
        return cls(id=user.id or "", role=user.role, team_ids=frozenset(user.team_ids), email=user.email)
