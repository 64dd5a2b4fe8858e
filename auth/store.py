"""
auth/store.py -- SQLAlchemy Core persistence for accounts and roles.

Pattern: Repository + Data Mapper. AccountStore and RoleStore are the
repositories; _row_to_account is the mapper. Service and resolver code never
touches SQL directly.

Contract: lookups return None (or False) when nothing matches. Exceptions
are reserved for genuine I/O or integrity failures -- e.g. save() lets
sqlalchemy.exc.IntegrityError escape when a concurrent request registered
the same username first, and the service turns that into a conflict.

Schema:
  roles          -- one row per Role enum member, seeded at startup
  accounts       -- username/email unique, bcrypt hash, enabled flag
  account_roles  -- many-to-many link; an account may have zero roles

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine

from auth.errors import ConfigurationError
from auth.models import Account, Role

logger = logging.getLogger("rolegate.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(30), nullable=False, unique=True),
)

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("enabled", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

_account_roles = Table(
    "account_roles",
    _metadata,
    Column("account_id", Integer, ForeignKey("accounts.id"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by writers."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account records.

    Usage:
        store = AccountStore("sqlite:///rolegate.db")
        roles = RoleStore(store.engine)
        account = store.find_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_username(self, username: str) -> Account | None:
        """Exact, case-sensitive username match."""
        return self._find_one(_accounts.c.username == username)

    def find_by_email(self, email: str) -> Account | None:
        return self._find_one(_accounts.c.email == email)

    def find_by_id(self, account_id: int) -> Account | None:
        return self._find_one(_accounts.c.id == account_id)

    def exists_by_username(self, username: str) -> bool:
        return self._exists(_accounts.c.username == username)

    def exists_by_email(self, email: str) -> bool:
        return self._exists(_accounts.c.email == email)

    def has_accounts(self) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(_accounts)).scalar()
        return (count or 0) > 0

    def list_accounts(self) -> list[Account]:
        """All accounts ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(_accounts.select().order_by(_accounts.c.username)).fetchall()
            return [_row_to_account(row, _load_roles(conn, row.id)) for row in rows]

    def count_enabled_admins(self) -> int:
        """Number of enabled accounts holding ADMIN. Guards against locking every admin out."""
        query = (
            select(func.count(func.distinct(_accounts.c.id)))
            .select_from(
                _accounts.join(_account_roles, _account_roles.c.account_id == _accounts.c.id).join(
                    _roles, _roles.c.id == _account_roles.c.role_id
                )
            )
            .where((_roles.c.name == Role.ADMIN.value) & (_accounts.c.enabled == 1))
        )
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, account: Account) -> Account:
        """Insert a new account (id is None) or update an existing one.

        Role links are replaced wholesale inside the same transaction. Raises
        ConfigurationError if a role has no row in the roles table.
        """
        values = {
            "username": account.username,
            "email": account.email,
            "hashed_password": account.hashed_password,
            "enabled": 1 if account.enabled else 0,
        }
        with self.engine.begin() as conn:
            role_ids = _role_ids(conn, account.roles)
            if account.id is None:
                created_at = _now_iso()
                result = conn.execute(_accounts.insert().values(created_at=created_at, **values))
                account_id = result.inserted_primary_key[0]
            else:
                account_id = account.id
                created_at = account.created_at
                conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
            conn.execute(_account_roles.delete().where(_account_roles.c.account_id == account_id))
            for role_id in role_ids:
                conn.execute(_account_roles.insert().values(account_id=account_id, role_id=role_id))
        account.id = account_id
        account.created_at = created_at
        return account

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find_one(self, condition) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(condition)).fetchone()
            if row is None:
                return None
            return _row_to_account(row, _load_roles(conn, row.id))

    def _exists(self, condition) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_accounts.c.id).where(condition).limit(1)).fetchone()
        return row is not None


class RoleStore:
    """Repository for the fixed role vocabulary.

    Roles are looked up by name, never created on behalf of callers. ensure()
    exists for startup seeding only.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def find_by_name(self, name: str) -> Role | None:
        """Return the Role if name is in the vocabulary and has a row; None otherwise."""
        try:
            role = Role.parse(name)
        except ValueError:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(select(_roles.c.id).where(_roles.c.name == role.value)).fetchone()
        return role if row is not None else None

    def ensure(self, role: Role) -> bool:
        """Insert the role row if missing. Returns True when a row was created."""
        with self.engine.connect() as conn:
            exists = conn.execute(select(_roles.c.id).where(_roles.c.name == role.value)).fetchone()
            if exists is not None:
                return False
            conn.execute(_roles.insert().values(name=role.value))
            conn.commit()
        return True


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _role_ids(conn: Connection, roles: set[Role]) -> list[int]:
    if not roles:
        return []
    names = sorted(r.value for r in roles)
    rows = conn.execute(select(_roles.c.id, _roles.c.name).where(_roles.c.name.in_(names))).fetchall()
    found = {row.name: row.id for row in rows}
    missing = [n for n in names if n not in found]
    if missing:
        raise ConfigurationError(f"Role not configured: {', '.join(missing)}")
    return [found[n] for n in names]


def _load_roles(conn: Connection, account_id: int) -> set[Role]:
    rows = conn.execute(
        select(_roles.c.name)
        .select_from(_account_roles.join(_roles, _roles.c.id == _account_roles.c.role_id))
        .where(_account_roles.c.account_id == account_id)
    ).fetchall()
    roles: set[Role] = set()
    for row in rows:
        try:
            roles.add(Role(row.name))
        except ValueError:
            logger.warning("Ignoring unknown role %r linked to account id=%s", row.name, account_id)
    return roles


def _row_to_account(row, roles: set[Role]) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        enabled=bool(row.enabled),
        roles=roles,
        created_at=row.created_at,
    )
