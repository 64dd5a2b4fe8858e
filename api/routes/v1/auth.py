"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup            -- register an account (201)
  POST /api/v1/auth/login             -- username/email + password -> bearer token
  POST /api/v1/auth/forgot-password   -- issue a password-reset ticket
  POST /api/v1/auth/reset-password    -- consume a ticket, set a new password
  POST /api/v1/auth/logout            -- stateless; logs the caller
  GET  /api/v1/auth/me                -- identity of the current caller

Access (see auth/policy.DEFAULT_RULES):
  /auth/me is AUTHENTICATED; every other /auth/** route is PUBLIC, so the
  gate never inspects tokens for them. Signup looks at an optional bearer
  token itself (optional_requester) to decide whether the caller may create
  an ADMIN account.

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  Login failures return one generic 401 message for unknown user, wrong
  password and disabled account alike.
  Cache-Control: no-store on token responses.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, login_rate_limit
from api.models import (
    AccountResponse,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    ResetPasswordRequest,
    SignupRequest,
    TokenResponse,
)
from auth.dependencies import optional_requester, require_identity
from auth.models import IdentityContext
from auth.service import CredentialService
from auth.tokens import bearer_token

logger = logging.getLogger("rolegate.api")

router = APIRouter()


def _service(request: Request) -> CredentialService:
    return request.app.state.credential_service


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=AccountResponse, status_code=201)
def signup(
    request: Request,
    body: SignupRequest,
    requester: IdentityContext | None = Depends(optional_requester),
) -> AccountResponse:
    """Register a new account. ADMIN accounts can only be created by an ADMIN caller."""
    account = _service(request).signup(
        username=body.username,
        email=body.email,
        password=body.password,
        role=body.role,
        requester=requester,
    )
    logger.info("Signup performed for username=%s", account.username)
    return AccountResponse.from_account(account)


@router.post("/auth/login", response_model=TokenResponse)
@limiter.limit(login_rate_limit)
def login(request: Request, body: LoginRequest, response: Response) -> TokenResponse:
    """Authenticate with username (or email) and password; return a bearer token.

    Include the token in later requests as: Authorization: Bearer <token>
    """
    grant = _service(request).authenticate(body.username_or_email, body.password)
    response.headers["Cache-Control"] = "no-store"
    return TokenResponse(
        token=grant.token,
        token_type=grant.token_type,
        expires_in_seconds=grant.expires_in_seconds,
    )


@router.post("/auth/forgot-password", response_model=ForgotPasswordResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest, response: Response) -> ForgotPasswordResponse:
    result = _service(request).forgot_password(body.email)
    response.headers["Cache-Control"] = "no-store"
    return ForgotPasswordResponse(message=result.message, reset_token=result.reset_token)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    _service(request).reset_password(body.token, body.new_password)
    return MessageResponse(message="Password has been reset successfully.")


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> MessageResponse:
    """Stateless logout. The client must discard its token; it stays valid until expiry."""
    _service(request).logout(bearer_token(request.headers.get("Authorization")))
    return MessageResponse(message="Logged out.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(identity: IdentityContext = Depends(require_identity)) -> MeResponse:
    """Return the identity attached to this request by the gate."""
    return MeResponse(username=identity.username, authorities=sorted(identity.authorities))
