"""
auth/models.py -- Domain types for authentication and authorization.

Pattern: Data class (pure data containers, near-zero logic). Stores, the
resolver and the service do the work; these types only own the shape.

Role is a closed enumeration. The "ROLE_<NAME>" authority strings used for
access checks exist only at the identity-resolver boundary: Role.authority
produces one, Role.from_authority parses one back.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

AUTHORITY_PREFIX = "ROLE_"


class Role(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"

    @property
    def authority(self) -> str:
        return f"{AUTHORITY_PREFIX}{self.value}"

    @classmethod
    def parse(cls, name: str) -> Role:
        """Return the Role for a case-insensitive name. Raises ValueError if unknown."""
        return cls(name.strip().upper())

    @classmethod
    def from_authority(cls, authority: str) -> Role:
        if not authority.startswith(AUTHORITY_PREFIX):
            raise ValueError(f"Not a role authority: {authority!r}")
        return cls(authority[len(AUTHORITY_PREFIX) :])


@dataclass
class Account:
    """A stored login identity.

    hashed_password is a bcrypt digest; the plaintext is never kept.
    id is None before the record is written to the database.
    """

    username: str
    email: str
    hashed_password: str
    roles: set[Role] = field(default_factory=set)
    enabled: bool = True
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Identity:
    """Result of resolving a username or email against the credential store."""

    username: str
    hashed_password: str
    enabled: bool
    authorities: frozenset[str] = frozenset()


@dataclass(frozen=True)
class IdentityContext:
    """Request-scoped proof of authentication. Lives on request.state only."""

    username: str
    authorities: frozenset[str] = frozenset()

    def has_any(self, authorities: frozenset[str]) -> bool:
        return not self.authorities.isdisjoint(authorities)


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    roles: tuple[str, ...]
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class TokenGrant:
    """What a successful login hands back to the caller."""

    token: str
    expires_in_seconds: int
    token_type: str = "Bearer"


@dataclass(frozen=True)
class ResetTicket:
    token: str
    email: str
    expires_at: float  # epoch seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class ForgotPasswordResult:
    message: str
    reset_token: str
