#!/usr/bin/env python3
"""
RoleGate operator CLI -- account bootstrap and recovery without the HTTP API.

Usage:
  python main.py create-account alice alice@example.com
  python main.py create-account root root@example.com --role ADMIN
  python main.py set-enabled alice --disable
  python main.py set-enabled alice --enable
  python main.py list-accounts
  python main.py list-accounts --json

The password for create-account is read from --password or prompted for.

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the credential store (or pass --db-url).
  SECRET_KEY     Signing key; required unless DEBUG=true.
"""

import argparse
import getpass
import json
import logging
import sys
from typing import Optional

from pydantic import ValidationError as SettingsError

from auth.bootstrap import seed_roles, verify_roles
from auth.errors import AuthServiceError, ConfigurationError
from auth.models import Role
from auth.passwords import PasswordHasher
from auth.resolver import IdentityResolver
from auth.service import CredentialService
from auth.store import AccountStore, RoleStore
from auth.tickets import ResetTicketStore
from auth.tokens import TokenCodec
from core.config import Settings, get_settings

logger = logging.getLogger("rolegate.cli")


def _build_service(settings: Settings, accounts: AccountStore) -> CredentialService:
    roles = RoleStore(accounts.engine)
    seed_roles(roles)
    verify_roles(roles)
    return CredentialService(
        accounts,
        roles,
        PasswordHasher(rounds=settings.bcrypt_rounds),
        TokenCodec(settings.secret_key, settings.token_expire_seconds),
        IdentityResolver(accounts),
        ResetTicketStore(ttl_seconds=settings.reset_ticket_ttl_seconds),
    )


def _create_account(args: argparse.Namespace, settings: Settings, accounts: AccountStore) -> int:
    password = args.password or getpass.getpass("Password: ")
    service = _build_service(settings, accounts)
    account = service.create_account(args.username, args.email, password, Role.parse(args.role))
    print(f"  Created account {account.username} (id={account.id}, role={args.role.upper()}).")
    return 0


def _set_enabled(args: argparse.Namespace, accounts: AccountStore) -> int:
    """Flip the enabled flag directly on the store.

    Unlike the admin API there is no acting account, so only the
    last-enabled-admin rule applies.
    """
    account = accounts.find_by_username(args.username)
    if account is None:
        print(f"  [!] No account named '{args.username}'.")
        return 1
    if not args.enable and Role.ADMIN in account.roles and account.enabled and accounts.count_enabled_admins() <= 1:
        print("  [!] Refusing to disable the last enabled ADMIN account.")
        return 1
    account.enabled = args.enable
    accounts.save(account)
    logger.info("Account %r %s from the CLI", account.username, "enabled" if args.enable else "disabled")
    print(f"  {account.username} is now {'enabled' if account.enabled else 'disabled'}.")
    return 0


def _list_accounts(args: argparse.Namespace, accounts: AccountStore) -> int:
    rows = [
        {
            "id": a.id,
            "username": a.username,
            "email": a.email,
            "roles": sorted(r.value for r in a.roles),
            "enabled": a.enabled,
        }
        for a in accounts.list_accounts()
    ]
    if args.json:
        print(json.dumps(rows, indent=2))
        return 0
    if not rows:
        print("  No accounts.")
        return 0
    for row in rows:
        state = "enabled" if row["enabled"] else "DISABLED"
        print(f"  {row['id']:>4}  {row['username']:<24} {row['email']:<32} {','.join(row['roles']):<12} {state}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rolegate",
        description="Operator tools for the RoleGate credential store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-account root root@example.com --role ADMIN
  python main.py set-enabled alice --disable
  DATABASE_URL=sqlite:///prod.db python main.py list-accounts --json
        """,
    )
    parser.add_argument(
        "--db-url",
        metavar="URL",
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-account", help="Create an account (no ADMIN restriction)")
    create.add_argument("username")
    create.add_argument("email")
    create.add_argument(
        "--role",
        choices=["ADMIN", "USER", "admin", "user"],
        default="USER",
        help="Role to assign (default: USER)",
    )
    create.add_argument("--password", help="Password; prompted for when omitted")

    enable = sub.add_parser("set-enabled", help="Enable or disable an account")
    enable.add_argument("username")
    toggle = enable.add_mutually_exclusive_group(required=True)
    toggle.add_argument("--enable", dest="enable", action="store_true")
    toggle.add_argument("--disable", dest="enable", action="store_false")

    listing = sub.add_parser("list-accounts", help="List all accounts")
    listing.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    try:
        settings = get_settings()
    except SettingsError as e:
        print(f"  [!] Invalid configuration: {e}")
        return 2

    accounts = AccountStore(args.db_url or settings.database_url)
    try:
        if args.command == "create-account":
            return _create_account(args, settings, accounts)
        if args.command == "set-enabled":
            return _set_enabled(args, accounts)
        return _list_accounts(args, accounts)
    except AuthServiceError as e:
        print(f"  [!] {e.message}")
        return 1
    except ConfigurationError as e:
        print(f"  [!] Configuration error: {e}")
        return 2
    finally:
        accounts.close()


if __name__ == "__main__":
    sys.exit(main())
