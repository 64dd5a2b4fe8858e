"""
tests/test_service.py -- CredentialService: signup, login, reset, administration.

Covers:
  - signup defaults to USER; ADMIN only for ADMIN requesters
  - duplicate username / email conflicts, unknown role, weak password
  - login by username or email, generic failure message
  - forgot/reset round trip, single use, expiry, weak new password
  - enable/disable guards
"""

from __future__ import annotations

import pytest

from auth.errors import (
    GENERIC_AUTH_MESSAGE,
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from auth.models import IdentityContext, Role
from auth.tickets import ResetTicketStore
from auth.tokens import TokenCodec

ADMIN_CTX = IdentityContext("root", frozenset({"ROLE_ADMIN"}))
USER_CTX = IdentityContext("alice", frozenset({"ROLE_USER"}))


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


def test_signup_defaults_to_user(service):
    account = service.signup("alice", "alice@example.com", "Valid123!")
    assert account.id is not None
    assert account.roles == {Role.USER}
    assert account.enabled
    assert account.hashed_password != "Valid123!"
    assert account.hashed_password.startswith("$2")


def test_signup_role_is_case_insensitive(service):
    assert service.signup("alice", "alice@example.com", "Valid123!", role="user").roles == {Role.USER}


def test_admin_signup_refused_without_requester(service):
    with pytest.raises(AuthorizationError) as exc:
        service.signup("mallory", "m@example.com", "Valid123!", role="ADMIN")
    assert exc.value.status_code == 403


def test_admin_signup_refused_for_user_requester(service):
    with pytest.raises(AuthorizationError):
        service.signup("mallory", "m@example.com", "Valid123!", role="ADMIN", requester=USER_CTX)


def test_admin_signup_allowed_for_admin_requester(service):
    account = service.signup("ops", "ops@example.com", "Valid123!", role="ADMIN", requester=ADMIN_CTX)
    assert account.roles == {Role.ADMIN}


def test_unknown_role(service):
    with pytest.raises(ValidationError) as exc:
        service.signup("alice", "alice@example.com", "Valid123!", role="SUPERUSER")
    assert "Unknown role" in exc.value.message


def test_weak_password_refused(service, stores):
    accounts, _ = stores
    with pytest.raises(ValidationError):
        service.signup("alice", "alice@example.com", "weak")
    assert not accounts.exists_by_username("alice")


def test_duplicate_username(service):
    service.signup("alice", "alice@example.com", "Valid123!")
    with pytest.raises(ConflictError) as exc:
        service.signup("alice", "other@example.com", "Valid123!")
    assert exc.value.message == "Username already taken"
    assert exc.value.status_code == 400


def test_duplicate_email(service):
    service.signup("alice", "alice@example.com", "Valid123!")
    with pytest.raises(ConflictError) as exc:
        service.signup("alice2", "alice@example.com", "Valid123!")
    assert exc.value.message == "Email already in use"


def test_missing_role_row_is_configuration_error(service, stores):
    accounts, _ = stores
    with accounts.engine.begin() as conn:
        conn.exec_driver_sql("DELETE FROM roles WHERE name = 'USER'")
    with pytest.raises(ConfigurationError):
        service.signup("alice", "alice@example.com", "Valid123!")


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


def test_login_by_username_and_email(service):
    service.signup("alice", "alice@example.com", "Valid123!")
    for identifier in ("alice", "alice@example.com"):
        grant = service.authenticate(identifier, "Valid123!")
        assert grant.token_type == "Bearer"
        assert grant.expires_in_seconds == 3600
        assert grant.token.count(".") == 2


def test_login_token_carries_role_names(service_factory):
    codec = TokenCodec("t" * 40, 3600)
    service = service_factory(codec=codec)
    service.signup("alice", "alice@example.com", "Valid123!")
    claims = codec.decode(service.authenticate("alice", "Valid123!").token)
    assert claims.subject == "alice"
    assert claims.roles == ("USER",)


@pytest.mark.parametrize("identifier, password", [("alice", "Wrong123!"), ("nobody", "Valid123!")])
def test_login_failures_share_one_message(service, identifier, password):
    service.signup("alice", "alice@example.com", "Valid123!")
    with pytest.raises(AuthenticationError) as exc:
        service.authenticate(identifier, password)
    assert exc.value.message == GENERIC_AUTH_MESSAGE
    assert type(exc.value) is AuthenticationError


def test_login_refused_for_disabled_account(service):
    service.signup("root", "root@example.com", "Valid123!", role="ADMIN", requester=ADMIN_CTX)
    alice = service.signup("alice", "alice@example.com", "Valid123!")
    service.set_enabled(alice.id, False, actor=ADMIN_CTX)
    with pytest.raises(AuthenticationError) as exc:
        service.authenticate("alice", "Valid123!")
    assert exc.value.message == GENERIC_AUTH_MESSAGE


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


def test_forgot_password_unknown_email(service):
    with pytest.raises(NotFoundError):
        service.forgot_password("nobody@example.com")


def test_reset_round_trip(service):
    service.signup("alice", "alice@example.com", "Valid123!")
    result = service.forgot_password("alice@example.com")
    assert "15 minutes" in result.message
    service.reset_password(result.reset_token, "NewPass1!")
    service.authenticate("alice", "NewPass1!")
    with pytest.raises(AuthenticationError):
        service.authenticate("alice", "Valid123!")


def test_reset_ticket_is_single_use(service):
    service.signup("alice", "alice@example.com", "Valid123!")
    token = service.forgot_password("alice@example.com").reset_token
    service.reset_password(token, "NewPass1!")
    with pytest.raises(ValidationError) as exc:
        service.reset_password(token, "Other123!")
    assert exc.value.message == "Invalid or expired reset token"


def test_unknown_reset_ticket(service):
    with pytest.raises(ValidationError):
        service.reset_password("no-such-ticket", "NewPass1!")


def test_expired_reset_ticket_is_removed(service_factory, clock):
    tickets = ResetTicketStore(ttl_seconds=900, clock=clock)
    service = service_factory(tickets=tickets)
    service.signup("alice", "alice@example.com", "Valid123!")
    token = service.forgot_password("alice@example.com").reset_token
    clock.advance(900)
    with pytest.raises(ValidationError):
        service.reset_password(token, "NewPass1!")
    assert tickets.get(token) is None
    service.authenticate("alice", "Valid123!")


def test_forgot_password_uses_injected_empty_ticket_store(service_factory):
    tickets = ResetTicketStore()
    assert len(tickets) == 0
    service = service_factory(tickets=tickets)
    service.signup("alice", "alice@example.com", "Valid123!")
    token = service.forgot_password("alice@example.com").reset_token
    assert len(tickets) == 1
    assert tickets.get(token) is not None


def test_weak_new_password_keeps_ticket(service_factory):
    tickets = ResetTicketStore()
    service = service_factory(tickets=tickets)
    service.signup("alice", "alice@example.com", "Valid123!")
    token = service.forgot_password("alice@example.com").reset_token
    with pytest.raises(ValidationError):
        service.reset_password(token, "weak")
    assert tickets.get(token) is not None
    service.reset_password(token, "NewPass1!")


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


def test_admin_cannot_disable_self(service):
    root = service.signup("root", "root@example.com", "Valid123!", role="ADMIN", requester=ADMIN_CTX)
    with pytest.raises(ValidationError):
        service.set_enabled(root.id, False, actor=ADMIN_CTX)


def test_last_enabled_admin_cannot_be_disabled(service):
    root = service.signup("root", "root@example.com", "Valid123!", role="ADMIN", requester=ADMIN_CTX)
    ops = service.signup("ops", "ops@example.com", "Valid123!", role="ADMIN", requester=ADMIN_CTX)
    service.set_enabled(ops.id, False, actor=IdentityContext("root", frozenset({"ROLE_ADMIN"})))
    with pytest.raises(ValidationError):
        service.set_enabled(root.id, False, actor=IdentityContext("ops", frozenset({"ROLE_ADMIN"})))


def test_reenable_account(service):
    alice = service.signup("alice", "alice@example.com", "Valid123!")
    service.set_enabled(alice.id, False, actor=ADMIN_CTX)
    assert not service.get_account(alice.id).enabled
    service.set_enabled(alice.id, True, actor=ADMIN_CTX)
    assert service.get_account(alice.id).enabled


def test_get_unknown_account(service):
    with pytest.raises(NotFoundError):
        service.get_account(999)
