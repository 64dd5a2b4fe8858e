"""
auth/policy.py -- Declarative, ordered access rules.

The rule table is data: a list of plain dicts (DEFAULT_RULES, or a JSON file
named by ACCESS_POLICY_FILE) turned into AccessRule objects by load_rules().
Evaluation walks the rules top-down and the first rule matching both path and
method decides. A path no rule matches requires authentication.

Pattern syntax:
  /api/v1/auth/me      exact path
  /api/v1/admin/*      exactly one more path segment
  /api/v1/admin/**     the prefix itself or anything below it

The policy is the only place that distinguishes "no identity" (401) from
"identity without the right role" (403). The gate just attaches an identity
or doesn't.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from auth.errors import ConfigurationError
from auth.models import IdentityContext, Role


class Access(str, Enum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    ROLES = "roles"


class Decision(str, Enum):
    ALLOW = "allow"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


DEFAULT_RULES: list[dict] = [
    {"pattern": "/api/v1/auth/me", "methods": ["GET"], "access": "authenticated"},
    {"pattern": "/api/v1/auth/**", "access": "public"},
    {"pattern": "/api/v1/health/**", "access": "public"},
    {"pattern": "/error", "access": "public"},
    {"pattern": "/api/v1/admin/**", "roles": ["ADMIN"]},
]


def _compile(pattern: str) -> re.Pattern:
    if not pattern.startswith("/"):
        raise ConfigurationError(f"Access rule pattern must start with '/': {pattern!r}")
    if pattern.endswith("/**"):
        prefix = pattern[:-3]
        return re.compile(_segment_regex(prefix) + r"(?:/.*)?")
    return re.compile(_segment_regex(pattern))


def _segment_regex(pattern: str) -> str:
    parts = []
    for piece in re.split(r"(\*\*|\*)", pattern):
        if piece == "**":
            parts.append(".*")
        elif piece == "*":
            parts.append("[^/]+")
        else:
            parts.append(re.escape(piece))
    return "".join(parts)


@dataclass(frozen=True)
class AccessRule:
    pattern: str
    access: Access
    methods: frozenset[str] | None = None  # None = any method
    roles: frozenset[Role] = frozenset()

    def __post_init__(self) -> None:
        if self.access is Access.ROLES and not self.roles:
            raise ConfigurationError(f"Rule {self.pattern!r} requires roles but lists none")
        object.__setattr__(self, "_regex", _compile(self.pattern))

    @property
    def authorities(self) -> frozenset[str]:
        return frozenset(role.authority for role in self.roles)

    def matches(self, path: str, method: str) -> bool:
        if self.methods is not None and method.upper() not in self.methods:
            return False
        return self._regex.fullmatch(path) is not None

    @classmethod
    def from_dict(cls, entry: Mapping) -> AccessRule:
        """Build a rule from {"pattern", "methods"?, "access"?, "roles"?}.

        "access" may be omitted when "roles" is given.
        """
        try:
            pattern = entry["pattern"]
        except KeyError as exc:
            raise ConfigurationError(f"Access rule without a pattern: {entry!r}") from exc
        methods = entry.get("methods")
        role_names = entry.get("roles") or []
        access_name = entry.get("access", Access.ROLES.value if role_names else None)
        try:
            access = Access(access_name)
            roles = frozenset(Role.parse(name) for name in role_names)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid access rule {entry!r}: {exc}") from exc
        return cls(
            pattern=pattern,
            access=access,
            methods=frozenset(m.upper() for m in methods) if methods else None,
            roles=roles,
        )


def load_rules(entries: Iterable[Mapping]) -> list[AccessRule]:
    return [AccessRule.from_dict(entry) for entry in entries]


def load_rules_file(path: str | Path) -> list[AccessRule]:
    """Read a JSON array of rule dicts. Raises ConfigurationError on any problem."""
    try:
        entries = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Could not load access policy file {path!s}: {exc}") from exc
    if not isinstance(entries, list):
        raise ConfigurationError(f"Access policy file {path!s} must contain a JSON array")
    return load_rules(entries)


class AccessPolicy:
    """First-match-wins evaluation over an ordered rule list."""

    def __init__(self, rules: Iterable[AccessRule], default: Access = Access.AUTHENTICATED) -> None:
        if default is Access.ROLES:
            raise ConfigurationError("The fallback access level cannot be role-based")
        self.rules = tuple(rules)
        self.default = default

    @classmethod
    def default_policy(cls) -> AccessPolicy:
        return cls(load_rules(DEFAULT_RULES))

    def match(self, path: str, method: str) -> AccessRule | None:
        for rule in self.rules:
            if rule.matches(path, method):
                return rule
        return None

    def is_public(self, path: str, method: str) -> bool:
        rule = self.match(path, method)
        access = rule.access if rule is not None else self.default
        return access is Access.PUBLIC

    def evaluate(self, identity: IdentityContext | None, path: str, method: str) -> Decision:
        rule = self.match(path, method)
        access = rule.access if rule is not None else self.default
        if access is Access.PUBLIC:
            return Decision.ALLOW
        if identity is None:
            return Decision.UNAUTHENTICATED
        if access is Access.AUTHENTICATED:
            return Decision.ALLOW
        if identity.has_any(rule.authorities):
            return Decision.ALLOW
        return Decision.FORBIDDEN
