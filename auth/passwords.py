"""
auth/passwords.py -- Password hashing and strength policy.

Passwords: bcrypt used directly (no passlib wrapper). Bcrypt's cost factor
makes brute force expensive, which is what low-entropy secrets need. Inputs
are capped at 72 bytes before hashing -- bcrypt ignores (or, in newer
releases, rejects) anything longer, and the API already limits length to 128
characters.

Strength policy: 8..128 characters with at least one uppercase letter, one
lowercase letter, one digit and one character from SPECIAL_CHARACTERS.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import bcrypt

from auth.errors import ValidationError

BCRYPT_MAX_BYTES = 72
DEFAULT_ROUNDS = 12

PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 128
SPECIAL_CHARACTERS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

PASSWORD_REQUIREMENTS = (
    f"Password must be between {PASSWORD_MIN_LEN} and {PASSWORD_MAX_LEN} characters and contain at least "
    f"one uppercase letter, one lowercase letter, one digit, and one special character ({SPECIAL_CHARACTERS})"
)


def is_strong_password(password: str | None) -> bool:
    if password is None or not (PASSWORD_MIN_LEN <= len(password) <= PASSWORD_MAX_LEN):
        return False
    return (
        any(ch.isupper() for ch in password)
        and any(ch.islower() for ch in password)
        and any(ch.isdigit() for ch in password)
        and any(ch in SPECIAL_CHARACTERS for ch in password)
    )


def validate_password_strength(password: str | None) -> None:
    """Raise ValidationError with the policy text if password is too weak."""
    if not is_strong_password(password):
        raise ValidationError(PASSWORD_REQUIREMENTS)


class PasswordHasher:
    """Slow, salted one-way hashing for account passwords.

    dummy_hash is computed once per hasher so callers can run a full bcrypt
    comparison even when the account does not exist; response time then does
    not reveal whether a username is registered.
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        self.dummy_hash = self.hash("rolegate-timing-dummy")

    def hash(self, plain: str) -> str:
        pw_bytes = plain.encode("utf-8")[:BCRYPT_MAX_BYTES]
        return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def matches(self, plain: str, hashed: str) -> bool:
        pw_bytes = plain.encode("utf-8")[:BCRYPT_MAX_BYTES]
        try:
            return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False
