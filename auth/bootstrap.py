"""
auth/bootstrap.py -- Startup seeding and wiring checks.

seed_roles() inserts any missing role rows; verify_roles() then confirms every
Role enum member has a row and raises ConfigurationError otherwise, so a
broken roles table stops the service at startup instead of surfacing as a
failed signup later.

seed_admin() creates the first ADMIN account when the credential store is
empty and a bootstrap password is configured. It is idempotent: once any
account exists it does nothing.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from auth.errors import ConfigurationError
from auth.models import Account, Role
from auth.service import CredentialService
from auth.store import AccountStore, RoleStore

logger = logging.getLogger("rolegate.auth")


def seed_roles(roles: RoleStore) -> None:
    for role in Role:
        if roles.ensure(role):
            logger.info("Created %s role", role.value)


def verify_roles(roles: RoleStore) -> None:
    missing = [role.value for role in Role if roles.find_by_name(role.value) is None]
    if missing:
        raise ConfigurationError(f"Role not configured: {', '.join(missing)}")


def seed_admin(
    service: CredentialService,
    accounts: AccountStore,
    username: str,
    email: str,
    password: str,
) -> Account | None:
    """Create the first ADMIN account if the store is empty and a password is set."""
    if not password:
        return None
    if accounts.has_accounts():
        logger.info("Accounts already exist, skipping admin bootstrap")
        return None
    account = service.create_account(username, email, password, Role.ADMIN)
    logger.info("Bootstrap admin account %r created", username)
    return account
