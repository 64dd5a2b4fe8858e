"""
API request and response models for RoleGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire format: JSON field names are camelCase (usernameOrEmail, tokenType,
expiresInSeconds, ...). Python attribute names stay snake_case; the alias
generator does the translation in both directions.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import Account

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

_WIRE = ConfigDict(alias_generator=to_camel, populate_by_name=True)
_WIRE_FROZEN = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup.

    Password strength is checked by the credential service, not here, so a
    weak password gets the full policy text back rather than a length error.
    """

    model_config = _WIRE

    username: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=128)
    role: Optional[str] = Field(default=None, max_length=30, description="ADMIN or USER; defaults to USER.")


class LoginRequest(BaseModel):
    model_config = _WIRE

    username_or_email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class ForgotPasswordRequest(BaseModel):
    model_config = _WIRE

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)


class ResetPasswordRequest(BaseModel):
    model_config = _WIRE

    token: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=1, max_length=128)


class AccountPatch(BaseModel):
    """Request body for PATCH /api/v1/admin/accounts/{account_id}."""

    model_config = _WIRE

    enabled: bool


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """Successful login: {token, tokenType, expiresInSeconds}."""

    model_config = _WIRE_FROZEN

    token: str
    token_type: str = "Bearer"
    expires_in_seconds: int


class ForgotPasswordResponse(BaseModel):
    """The reset token is returned directly because no mail transport is wired in."""

    model_config = _WIRE_FROZEN

    message: str
    reset_token: str


class MessageResponse(BaseModel):
    model_config = _WIRE_FROZEN

    message: str


class MeResponse(BaseModel):
    model_config = _WIRE_FROZEN

    username: str
    authorities: list[str]


class AccountResponse(BaseModel):
    """Account as shown to clients. Never includes the password hash."""

    model_config = _WIRE_FROZEN

    id: int
    username: str
    email: str
    roles: list[str]
    enabled: bool
    created_at: str = ""

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            roles=sorted(role.value for role in account.roles),
            enabled=account.enabled,
            created_at=account.created_at or "",
        )


class ErrorResponse(BaseModel):
    """Error envelope returned on 4xx/5xx responses: {"error": "..."}."""

    model_config = ConfigDict(frozen=True)

    error: str
    details: Optional[dict[str, str]] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
