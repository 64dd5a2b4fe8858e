"""
tests/test_gate.py -- AuthenticationGate outcomes for each kind of request.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from auth.gate import ANONYMOUS, AuthenticationGate
from auth.models import Account, Role
from auth.policy import AccessPolicy
from auth.resolver import IdentityResolver
from auth.tokens import TokenCodec

SECRET = "g" * 40


@pytest.fixture()
def codec(clock) -> TokenCodec:
    return TokenCodec(SECRET, 600, clock=clock)


@pytest.fixture()
def gate(stores, codec) -> AuthenticationGate:
    accounts, _ = stores
    accounts.save(Account(username="alice", email="alice@example.com", hashed_password="x", roles={Role.USER}))
    accounts.save(
        Account(username="carol", email="carol@example.com", hashed_password="x", roles={Role.USER}, enabled=False)
    )
    return AuthenticationGate(codec, IdentityResolver(accounts), AccessPolicy.default_policy())


def test_valid_token_yields_identity(gate, codec):
    result = gate.authenticate("/api/v1/auth/me", "GET", f"Bearer {codec.issue('alice', ['USER'])}")
    assert result.identity is not None
    assert result.identity.username == "alice"
    assert result.identity.authorities == frozenset({"ROLE_USER"})
    assert not result.rejected


def test_authorities_come_from_store_not_token(gate, codec):
    token = codec.issue("alice", ["ADMIN"])
    result = gate.authenticate("/api/v1/admin/accounts", "GET", f"Bearer {token}")
    assert result.identity.authorities == frozenset({"ROLE_USER"})


def test_public_path_never_inspects_token(codec):
    resolver = MagicMock(spec=IdentityResolver)
    gate = AuthenticationGate(codec, resolver, AccessPolicy.default_policy())
    result = gate.authenticate("/api/v1/auth/login", "POST", f"Bearer {codec.issue('alice', [])}")
    assert result is ANONYMOUS
    resolver.resolve.assert_not_called()


@pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "Bearer not.a.token"])
def test_missing_or_invalid_token_is_anonymous(gate, header):
    assert gate.authenticate("/api/v1/auth/me", "GET", header) is ANONYMOUS


def test_expired_token_is_anonymous(gate, codec, clock):
    token = codec.issue("alice", ["USER"])
    clock.advance(600)
    assert gate.authenticate("/api/v1/auth/me", "GET", f"Bearer {token}") is ANONYMOUS


def test_token_for_deleted_subject_is_anonymous(gate, codec):
    assert gate.authenticate("/api/v1/auth/me", "GET", f"Bearer {codec.issue('ghost', [])}") is ANONYMOUS


def test_disabled_account_is_rejected(gate, codec):
    result = gate.authenticate("/api/v1/auth/me", "GET", f"Bearer {codec.issue('carol', ['USER'])}")
    assert result.rejected
    assert result.identity is None


def test_store_failure_degrades_to_anonymous(codec):
    resolver = MagicMock(spec=IdentityResolver)
    resolver.resolve.side_effect = RuntimeError("database is locked")
    gate = AuthenticationGate(codec, resolver, AccessPolicy.default_policy())
    assert gate.identify(f"Bearer {codec.issue('alice', ['USER'])}") is ANONYMOUS
