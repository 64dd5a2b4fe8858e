"""
auth/errors.py -- Typed failures raised by the auth engine.

Every request-time failure carries the HTTP status the boundary layer should
answer with. api/main.py registers one exception handler for AuthServiceError
and turns instances into {"error": message} bodies; nothing in auth/ builds
HTTP responses for these errors itself.

AccountNotFound and AccountDisabled share AuthenticationError's generic public
message so callers cannot tell an unknown account from a disabled one. The
distinction only shows up in the server-side audit log.

ConfigurationError is the odd one out: it is raised while the service is being
wired together (short signing key, missing role row) and must stop startup.
It has no status code because it must never be reachable at request time.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

GENERIC_AUTH_MESSAGE = "Invalid credentials"


class AuthServiceError(Exception):
    """Base class for failures the HTTP boundary translates to a status code."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AuthServiceError):
    """Malformed or policy-violating input (weak password, unknown role, bad ticket)."""

    status_code = 400
    code = "validation_error"


class ConflictError(AuthServiceError):
    """Username or email already registered."""

    status_code = 400
    code = "conflict"


class AuthenticationError(AuthServiceError):
    """Bad credentials, unknown identity or disabled account."""

    status_code = 401
    code = "unauthorized"

    def __init__(self, message: str = GENERIC_AUTH_MESSAGE) -> None:
        super().__init__(message)


class AccountNotFound(AuthenticationError):
    def __init__(self, identifier: str) -> None:
        super().__init__()
        self.identifier = identifier


class AccountDisabled(AuthenticationError):
    def __init__(self, username: str) -> None:
        super().__init__()
        self.username = username


class AuthorizationError(AuthServiceError):
    """Valid identity, insufficient role."""

    status_code = 403
    code = "forbidden"


class NotFoundError(AuthServiceError):
    """A referenced entity does not exist."""

    status_code = 404
    code = "not_found"


class ConfigurationError(Exception):
    """Fatal wiring problem detected at startup."""
