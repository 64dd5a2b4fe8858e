"""
api/main.py -- FastAPI application entry point for RoleGate.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- one access-log line per request
  4. SlowAPIMiddleware     -- app-wide slowapi hook (route limits are checked by
                              the @limiter.limit wrapper on each handler)
  5. enforce_access        -- authentication gate + access policy

Starlette wraps the last-registered middleware around everything registered
before it, so the add_middleware() calls below run innermost-first.

Lifespan handles startup (credential store, role seeding, auth wiring,
bootstrap admin, reset-ticket purge task) and shutdown (cancel purge task,
close DB connection) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.accounts import router as accounts_router
from api.routes.v1.auth import router as auth_router
from auth.bootstrap import seed_admin, seed_roles, verify_roles
from auth.dependencies import enforce_access
from auth.errors import AuthServiceError
from auth.gate import AuthenticationGate
from auth.passwords import PasswordHasher
from auth.policy import AccessPolicy, load_rules_file
from auth.resolver import IdentityResolver
from auth.service import CredentialService
from auth.store import AccountStore, RoleStore
from auth.tickets import ResetTicketStore
from auth.tokens import TokenCodec
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("rolegate.api")

# ---------------------------------------------------------------------------
# Auth wiring
# ---------------------------------------------------------------------------


def install_auth(app: FastAPI, accounts: AccountStore, roles: RoleStore, settings: Settings) -> CredentialService:
    """Build the auth components from settings and attach them to app.state.

    Raises ConfigurationError (short SECRET_KEY, bad policy file) so a
    misconfigured service never starts serving requests.
    """
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    codec = TokenCodec(settings.secret_key, settings.token_expire_seconds)
    resolver = IdentityResolver(accounts)
    if settings.access_policy_file:
        policy = AccessPolicy(load_rules_file(settings.access_policy_file))
        logger.info("Access rules loaded from %s", settings.access_policy_file)
    else:
        policy = AccessPolicy.default_policy()
    tickets = ResetTicketStore(ttl_seconds=settings.reset_ticket_ttl_seconds)
    service = CredentialService(accounts, roles, hasher, codec, resolver, tickets)

    app.state.account_store = accounts
    app.state.codec = codec
    app.state.policy = policy
    app.state.gate = AuthenticationGate(codec, resolver, policy)
    app.state.reset_tickets = tickets
    app.state.credential_service = service
    return service


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval_seconds: int) -> None:
    """Drop expired password-reset tickets every interval_seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        purged = app.state.reset_tickets.purge_expired()
        if purged:
            logger.info("Purged %d expired reset tickets", purged)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Credential store -- creates the schema.
      2. Roles -- seeded, then verified; a missing role row stops startup.
      3. Auth wiring -- needs both stores.
      4. Bootstrap admin -- goes through the credential service.
      5. Purge task last -- references app.state.reset_tickets.
    """
    settings = get_settings()
    logger.info("RoleGate API starting up")
    accounts = AccountStore(settings.database_url)
    roles = RoleStore(accounts.engine)
    seed_roles(roles)
    verify_roles(roles)
    service = install_auth(app, accounts, roles, settings)
    seed_admin(
        service,
        accounts,
        settings.bootstrap_admin_username,
        settings.bootstrap_admin_email,
        settings.bootstrap_admin_password,
    )
    logger.info("Auth initialized (token lifetime %ds)", settings.token_expire_seconds)
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.reset_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    accounts.close()
    logger.info("RoleGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="RoleGate API",
    description="Credential management and role-based access control over bearer tokens.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack (registered innermost first)
# ---------------------------------------------------------------------------

app.middleware("http")(enforce_access)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


_settings = get_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(accounts_router, prefix="/api/v1", tags=["Admin"])

# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same {"error": "..."} envelope.
# ---------------------------------------------------------------------------


def _error_body(message: str, details: dict[str, str] | None = None) -> dict:
    return ErrorResponse(error=message, details=details).model_dump(exclude_none=True)


@app.exception_handler(AuthServiceError)
async def auth_error_handler(request: Request, exc: AuthServiceError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message), headers=headers)


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a rate limit is exceeded. Retry-After is in seconds.

    Plain def: SlowAPIMiddleware calls this handler directly as well as through
    Starlette's exception middleware.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning("Rate limit exceeded on %s from %s", request.url.path, request.client.host if request.client else "unknown")
    response = JSONResponse(status_code=429, content=_error_body("Too many requests. Try again later."))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a field -> message map when the body or params fail validation."""
    details: dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details[".".join(loc) or "request"] = err.get("msg", "invalid")
    return JSONResponse(status_code=400, content=_error_body("Validation failed.", details))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=_error_body("An unexpected error occurred."))


# ---------------------------------------------------------------------------
# Health endpoint
#
# Public in the default access rules. No rate limit: health checks from load
# balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
