"""
auth/resolver.py -- Turn a username or email into an authenticated identity.

Lookup order is username first, email second. A username match always wins,
so an account whose email happens to equal someone else's username can never
shadow that user.

Unknown and disabled accounts raise different exception types (AccountNotFound,
AccountDisabled) so the audit log can tell them apart, but both carry the same
generic public message. Callers that only care about "did it work" catch
AuthenticationError.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from auth.errors import AccountDisabled, AccountNotFound
from auth.models import Account, Identity, Role
from auth.store import AccountStore

logger = logging.getLogger("rolegate.auth")


def authorities_for(roles: set[Role]) -> frozenset[str]:
    return frozenset(role.authority for role in roles)


class IdentityResolver:
    def __init__(self, accounts: AccountStore) -> None:
        self._accounts = accounts

    def find_account(self, username_or_email: str) -> Account | None:
        account = self._accounts.find_by_username(username_or_email)
        if account is None:
            account = self._accounts.find_by_email(username_or_email)
        return account

    def resolve(self, username_or_email: str) -> Identity:
        """Return the Identity for an enabled account.

        Raises AccountNotFound if neither lookup matches, AccountDisabled if the
        account exists but is switched off.
        """
        account = self.find_account(username_or_email)
        if account is None:
            logger.info("Identity lookup failed: no account for %r", username_or_email)
            raise AccountNotFound(username_or_email)
        if not account.enabled:
            logger.warning("Identity lookup refused: account %r is disabled", account.username)
            raise AccountDisabled(account.username)
        if not account.roles:
            logger.warning("Account %r has no roles assigned", account.username)
        return Identity(
            username=account.username,
            hashed_password=account.hashed_password,
            enabled=account.enabled,
            authorities=authorities_for(account.roles),
        )
