"""
auth/service.py -- Signup, login, password reset, logout and account status.

CredentialService is what the public auth endpoints call. It does not run
behind the gate for its own work; it talks to the stores, the resolver and the
token codec directly and raises typed AuthServiceError subclasses that the
HTTP layer maps to status codes.

Decisions worth knowing about:

  ADMIN creation: only a requester already holding ROLE_ADMIN may create an
      ADMIN account through signup. Anyone else gets AuthorizationError (403).
      create_account() skips that check and is reserved for trusted callers
      (bootstrap seeding, the operator CLI).

  Login timing: authenticate() always runs one bcrypt comparison -- against
      the dummy hash when the account is unknown or disabled -- so response
      time does not reveal which usernames exist.

  Forgot password: an unknown email is a NotFoundError. This does reveal
      whether an email is registered; the alternative (always answering 200)
      would have to stop returning the ticket in the response body.

  Logout: tokens are stateless and there is no deny list, so logout only
      records who asked. A leaked token stays valid until it expires.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from auth.models import Account, ForgotPasswordResult, IdentityContext, Role, TokenGrant
from auth.passwords import PasswordHasher, validate_password_strength
from auth.resolver import IdentityResolver
from auth.store import AccountStore, RoleStore
from auth.tickets import ResetTicketStore
from auth.tokens import TokenCodec

logger = logging.getLogger("rolegate.auth")

DEFAULT_ROLE = Role.USER


class CredentialService:
    def __init__(
        self,
        accounts: AccountStore,
        roles: RoleStore,
        hasher: PasswordHasher,
        codec: TokenCodec,
        resolver: IdentityResolver,
        tickets: ResetTicketStore,
    ) -> None:
        self._accounts = accounts
        self._roles = roles
        self._hasher = hasher
        self._codec = codec
        self._resolver = resolver
        self._tickets = tickets

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def signup(
        self,
        username: str,
        email: str,
        password: str,
        role: str | None = None,
        requester: IdentityContext | None = None,
    ) -> Account:
        """Register a new account with exactly one role (USER unless asked otherwise).

        Raises ValidationError, ConflictError, or AuthorizationError when a
        non-admin asks for ADMIN.
        """
        desired = self._parse_role(role)
        if desired is Role.ADMIN and (requester is None or Role.ADMIN.authority not in requester.authorities):
            logger.warning(
                "Refused ADMIN signup for %r requested by %r",
                username,
                requester.username if requester else None,
            )
            raise AuthorizationError("Only an ADMIN may create another ADMIN account")
        return self.create_account(username, email, password, desired)

    def create_account(self, username: str, email: str, password: str, role: Role = DEFAULT_ROLE) -> Account:
        """Create an enabled account without checking who is asking."""
        validate_password_strength(password)
        if self._accounts.exists_by_username(username):
            raise ConflictError("Username already taken")
        if self._accounts.exists_by_email(email):
            raise ConflictError("Email already in use")
        if self._roles.find_by_name(role.value) is None:
            raise ConfigurationError(f"Role not configured: {role.value}")

        account = Account(
            username=username,
            email=email,
            hashed_password=self._hasher.hash(password),
            roles={role},
            enabled=True,
        )
        try:
            self._accounts.save(account)
        except IntegrityError as exc:
            # lost a race with a concurrent signup for the same username/email
            raise ConflictError("Username or email already registered") from exc
        logger.info("New account created: %s with role %s", username, role.value)
        return account

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def authenticate(self, username_or_email: str, password: str) -> TokenGrant:
        """Check credentials and mint a bearer token. Raises AuthenticationError."""
        try:
            identity = self._resolver.resolve(username_or_email)
        except AuthenticationError:
            self._hasher.matches(password, self._hasher.dummy_hash)
            raise AuthenticationError() from None

        if not self._hasher.matches(password, identity.hashed_password):
            logger.info("Login failed for %r: bad password", identity.username)
            raise AuthenticationError()

        role_names = sorted(Role.from_authority(a).value for a in identity.authorities)
        token = self._codec.issue(identity.username, role_names)
        logger.info("User %s authenticated successfully", identity.username)
        return TokenGrant(token=token, expires_in_seconds=self._codec.lifetime_seconds)

    def logout(self, token: str | None) -> None:
        claims = self._codec.verify(token) if token else None
        if claims is not None:
            logger.info("Logout requested by %s", claims.subject)
        else:
            logger.info("Logout requested without a valid token")

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> ForgotPasswordResult:
        account = self._accounts.find_by_email(email)
        if account is None:
            raise NotFoundError("No account is registered with that email")
        ticket = self._tickets.issue(account.email)
        logger.info("Password reset ticket issued for account %s", account.username)
        return ForgotPasswordResult(
            message="Password reset token generated. It expires in %d minutes." % (self._tickets.ttl_seconds // 60),
            reset_token=ticket.token,
        )

    def reset_password(self, ticket_token: str, new_password: str) -> None:
        """Consume a reset ticket and store the new password hash.

        A weak password is rejected without touching the ticket. Otherwise the
        ticket is taken out of the store before the account is updated, so it
        cannot be used twice even by concurrent requests.
        """
        validate_password_strength(new_password)
        ticket = self._tickets.take(ticket_token)
        if ticket is None:
            raise ValidationError("Invalid or expired reset token")
        if ticket.is_expired(self._tickets.now()):
            logger.info("Rejected expired reset ticket for %s", ticket.email)
            raise ValidationError("Invalid or expired reset token")

        account = self._accounts.find_by_email(ticket.email)
        if account is None:
            raise NotFoundError("Account no longer exists")
        account.hashed_password = self._hasher.hash(new_password)
        self._accounts.save(account)
        logger.info("Password reset completed for %s", account.username)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def list_accounts(self) -> list[Account]:
        return self._accounts.list_accounts()

    def get_account(self, account_id: int) -> Account:
        account = self._accounts.find_by_id(account_id)
        if account is None:
            raise NotFoundError("Account not found")
        return account

    def set_enabled(self, account_id: int, enabled: bool, actor: IdentityContext) -> Account:
        """Enable or disable an account.

        Refuses to let an admin disable their own account or the last enabled
        ADMIN, either of which would leave nobody able to administer the system.
        """
        account = self.get_account(account_id)
        if not enabled:
            if account.username == actor.username:
                raise ValidationError("You cannot disable your own account")
            if Role.ADMIN in account.roles and account.enabled and self._accounts.count_enabled_admins() <= 1:
                raise ValidationError("Cannot disable the last enabled ADMIN account")
        account.enabled = enabled
        self._accounts.save(account)
        logger.info("Account %s %s by %s", account.username, "enabled" if enabled else "disabled", actor.username)
        return account

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_role(role: str | None) -> Role:
        if role is None or not role.strip():
            return DEFAULT_ROLE
        try:
            return Role.parse(role)
        except ValueError:
            raise ValidationError(f"Unknown role: {role}") from None
