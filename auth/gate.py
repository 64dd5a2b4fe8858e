"""
auth/gate.py -- Per-request authentication, independent of the web framework.

AuthenticationGate.authenticate() takes the three things it needs from a
request (path, method, Authorization header value) and returns a GateResult.
It never raises: every verification or lookup failure degrades to "no
identity", and the access policy later decides whether that means 401.

The one hard stop is a disabled account presenting a still-valid token: the
result comes back with rejected=True and the HTTP layer answers 403 at once.
Roles are re-read from the store on every request, so disabling an account
or changing its roles takes effect before its tokens expire.

auth/dependencies.py wraps this in the FastAPI middleware and writes the
result to request.state.identity exactly once per request.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.errors import AccountDisabled, AuthenticationError
from auth.models import IdentityContext
from auth.policy import AccessPolicy
from auth.resolver import IdentityResolver
from auth.tokens import TokenCodec, bearer_token

logger = logging.getLogger("rolegate.auth")


@dataclass(frozen=True)
class GateResult:
    identity: IdentityContext | None = None
    rejected: bool = False


ANONYMOUS = GateResult()


class AuthenticationGate:
    def __init__(self, codec: TokenCodec, resolver: IdentityResolver, policy: AccessPolicy) -> None:
        self._codec = codec
        self._resolver = resolver
        self._policy = policy

    def authenticate(self, path: str, method: str, authorization: str | None) -> GateResult:
        """Authenticate a request to path. Public paths are never inspected."""
        if self._policy.is_public(path, method):
            return ANONYMOUS
        return self.identify(authorization)

    def identify(self, authorization: str | None) -> GateResult:
        """Resolve the identity behind an Authorization header value, if any."""
        token = bearer_token(authorization)
        if token is None:
            return ANONYMOUS

        claims = self._codec.verify(token)
        if claims is None:
            return ANONYMOUS

        try:
            identity = self._resolver.resolve(claims.subject)
        except AccountDisabled:
            logger.warning("Token presented for disabled account %r", claims.subject)
            return GateResult(rejected=True)
        except AuthenticationError:
            logger.warning("Token subject %r no longer resolves to an account", claims.subject)
            return ANONYMOUS
        except Exception:
            # store I/O failure: degrade to anonymous, never raise
            logger.exception("Identity resolution failed for token subject %r", claims.subject)
            return ANONYMOUS

        logger.debug("Authenticated %r", identity.username)
        return GateResult(identity=IdentityContext(identity.username, identity.authorities))
