"""
auth/dependencies.py -- FastAPI glue: the access middleware and Depends() helpers.

enforce_access() is registered as an HTTP middleware in api/main.py. For
every request it:
  1. runs AuthenticationGate.authenticate() (skipped for public paths),
  2. stores the outcome on request.state.identity -- an IdentityContext or None,
     set exactly once and never carried over between requests,
  3. answers 403 straight away for a disabled account,
  4. asks AccessPolicy.evaluate() and answers 401 / 403 when it says no.

Handlers then read the identity with current_identity() / require_identity().
optional_requester() is for public endpoints (signup) that behave differently
when a valid token happens to be present.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi/starlette because this module is
  part of the FastAPI request pipeline.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from auth.errors import AuthenticationError
from auth.gate import AuthenticationGate
from auth.models import IdentityContext
from auth.policy import AccessPolicy, Decision

UNAUTHORIZED_MESSAGE = "Unauthorized: Invalid or missing authentication token"
FORBIDDEN_MESSAGE = "Forbidden: Insufficient permissions"
DISABLED_MESSAGE = "Forbidden: Account is disabled"


def _error(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


async def enforce_access(request: Request, call_next):
    """Authenticate the request, then apply the access policy before any handler runs."""
    gate: AuthenticationGate = request.app.state.gate
    policy: AccessPolicy = request.app.state.policy
    path = request.url.path
    method = request.method

    # The gate may hit the credential store; keep it off the event loop.
    result = await run_in_threadpool(gate.authenticate, path, method, request.headers.get("Authorization"))
    request.state.identity = result.identity

    if result.rejected:
        return _error(403, DISABLED_MESSAGE)

    decision = policy.evaluate(result.identity, path, method)
    if decision is Decision.UNAUTHENTICATED:
        return _error(401, UNAUTHORIZED_MESSAGE, headers={"WWW-Authenticate": "Bearer"})
    if decision is Decision.FORBIDDEN:
        return _error(403, FORBIDDEN_MESSAGE)
    return await call_next(request)


def current_identity(request: Request) -> IdentityContext | None:
    return getattr(request.state, "identity", None)


def require_identity(request: Request) -> IdentityContext:
    """Require an authenticated caller. Raises AuthenticationError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: IdentityContext = Depends(require_identity)): ...
    """
    identity = current_identity(request)
    if identity is None:
        raise AuthenticationError(UNAUTHORIZED_MESSAGE)
    return identity


def optional_requester(request: Request) -> IdentityContext | None:
    """Identify the caller of a public endpoint from its bearer token, if it sent a valid one.

    Disabled, unknown or invalid tokens simply yield None.
    """
    gate: AuthenticationGate = request.app.state.gate
    return gate.identify(request.headers.get("Authorization")).identity
