"""
auth/tokens.py -- Bearer token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry the username (sub), the role names
       (roles), issued-at and expiry. They are never stored server-side --
       validity is purely signature + expiry at verification time.

  Key size: TokenCodec refuses to be constructed with fewer than 32 bytes of
       key material (256 bits, the HS256 block requirement). That is a
       configuration error and surfaces at startup, never per request.

  Failure reasons: decode() raises InvalidToken carrying a TokenFailure so the
       log line names what went wrong (malformed, wrong alg, bad signature,
       missing subject, expired). verify() collapses all of them to None --
       the gate only needs "valid or not".

  Expiry: strict `now >= exp`. No leeway, so a token whose exp equals the
       current second is already expired.

  Revocation: none. Logout is a client-side discard; a leaked token stays
       valid until it expires. Anything promising server-side logout must add
       a deny list in front of verify().

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import logging
import math
import time
from collections.abc import Callable, Sequence
from enum import Enum

from jose import jws, jwt
from jose.exceptions import JWSError
from jose.utils import base64url_decode, base64url_encode

from auth.errors import ConfigurationError
from auth.models import TokenClaims

logger = logging.getLogger("rolegate.auth")

MIN_KEY_BYTES = 32
DEFAULT_ALGORITHM = "HS256"


class TokenFailure(str, Enum):
    MALFORMED = "malformed"
    UNSUPPORTED_ALGORITHM = "unsupported_algorithm"
    BAD_SIGNATURE = "bad_signature"
    MISSING_SUBJECT = "missing_subject"
    EXPIRED = "expired"


class InvalidToken(Exception):
    def __init__(self, reason: TokenFailure, detail: str = "") -> None:
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)
        self.reason = reason


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an `Authorization: Bearer <token>` header value."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[7:].strip()
    return token or None


class TokenCodec:
    """Signs and verifies stateless bearer tokens.

    Usage:
        codec = TokenCodec(secret, lifetime_seconds=3600)
        token = codec.issue("alice", ["USER"])
        claims = codec.verify(token)   # TokenClaims or None
    """

    def __init__(
        self,
        secret: str,
        lifetime_seconds: int,
        algorithm: str = DEFAULT_ALGORITHM,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret or len(secret.encode("utf-8")) < MIN_KEY_BYTES:
            raise ConfigurationError(f"Token signing key must be at least {MIN_KEY_BYTES} bytes (256 bits).")
        if lifetime_seconds < 1:
            raise ConfigurationError("Token lifetime must be a positive number of seconds.")
        self._secret = secret
        self._lifetime = lifetime_seconds
        self._algorithm = algorithm
        self._clock = clock
        logger.info("Token codec initialized (alg=%s, lifetime=%ds)", algorithm, lifetime_seconds)

    @property
    def lifetime_seconds(self) -> int:
        return self._lifetime

    def issue(self, subject: str, roles: Sequence[str]) -> str:
        """Return a signed token for subject carrying the given role names."""
        issued_at = int(self._clock())
        claims = {
            "sub": subject,
            "roles": list(roles),
            "iat": issued_at,
            "exp": issued_at + self._lifetime,
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def decode(self, token: str) -> TokenClaims:
        """Verify token and return its claims. Raises InvalidToken with the failure reason."""
        try:
            header = jws.get_unverified_header(token)
        except (JWSError, ValueError, TypeError) as exc:
            raise InvalidToken(TokenFailure.MALFORMED, str(exc)) from exc

        alg = header.get("alg")
        if alg != self._algorithm:
            raise InvalidToken(TokenFailure.UNSUPPORTED_ALGORITHM, str(alg))

        # base64url decoding ignores the unused low bits of the last character,
        # so only the canonical encoding of a signature is accepted.
        if not _is_canonical_segment(token.rsplit(".", 1)[-1]):
            raise InvalidToken(TokenFailure.MALFORMED, "signature is not canonical base64url")

        # The token already parsed above, so a JWSError here can only come
        # from the signature comparison.
        try:
            payload = jws.verify(token, self._secret, algorithms=[self._algorithm])
        except JWSError as exc:
            raise InvalidToken(TokenFailure.BAD_SIGNATURE, str(exc)) from exc

        try:
            claims = json.loads(payload)
        except ValueError as exc:
            raise InvalidToken(TokenFailure.MALFORMED, "payload is not JSON") from exc
        if not isinstance(claims, dict):
            raise InvalidToken(TokenFailure.MALFORMED, "payload is not an object")

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise InvalidToken(TokenFailure.MISSING_SUBJECT)

        expires_at = claims.get("exp")
        if not _is_timestamp(expires_at):
            raise InvalidToken(TokenFailure.MALFORMED, "exp missing or not numeric")
        if self._clock() >= expires_at:
            raise InvalidToken(TokenFailure.EXPIRED)

        roles = claims.get("roles", [])
        if not isinstance(roles, list) or not all(isinstance(r, str) for r in roles):
            raise InvalidToken(TokenFailure.MALFORMED, "roles must be a list of strings")

        issued_at = claims.get("iat", 0)
        return TokenClaims(
            subject=subject,
            roles=tuple(roles),
            issued_at=int(issued_at) if _is_timestamp(issued_at) else 0,
            expires_at=int(expires_at),
        )

    def verify(self, token: str) -> TokenClaims | None:
        """Return the claims of a valid token, None on any failure. Never raises."""
        try:
            return self.decode(token)
        except InvalidToken as exc:
            logger.warning("Rejected bearer token (%s)", exc.reason.value)
            return None


def _is_timestamp(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _is_canonical_segment(segment: str) -> bool:
    try:
        raw = segment.encode("ascii")
        return base64url_encode(base64url_decode(raw)) == raw
    except ValueError:
        return False
