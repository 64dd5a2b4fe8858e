"""
auth/tickets.py -- In-process store for password-reset tickets.

A ticket is a random, unguessable token bound to one email address with a
short TTL. The store is the one piece of shared mutable state in the auth
engine: every method takes the same lock, so concurrent requests can insert,
look up and consume tickets safely.

Single use is enforced by take(): it pops the ticket under the lock, so two
requests racing with the same token cannot both get it back. Expiry is
checked by the caller on use; purge_expired() only bounds memory and is run
periodically from the API lifespan.

The store is an ordinary object handed to the service, never a module-level
global, so each test (and each app instance) gets its own.

Usage:
    tickets = ResetTicketStore(ttl_seconds=900)
    ticket = tickets.issue("alice@example.com")
    same = tickets.take(ticket.token)   # ResetTicket, now removed
    tickets.take(ticket.token)          # None
"""

from __future__ import annotations

import secrets
import threading
import time
from collections.abc import Callable

from auth.models import ResetTicket

DEFAULT_TTL_SECONDS = 15 * 60


class ResetTicketStore:
    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._tickets: dict[str, ResetTicket] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def issue(self, email: str) -> ResetTicket:
        """Create a ticket for email, replacing any earlier outstanding ticket for it."""
        ticket = ResetTicket(
            token=secrets.token_urlsafe(32),
            email=email,
            expires_at=self._clock() + self.ttl_seconds,
        )
        with self._lock:
            stale = [token for token, t in self._tickets.items() if t.email == email]
            for token in stale:
                del self._tickets[token]
            self._tickets[ticket.token] = ticket
        return ticket

    def get(self, token: str) -> ResetTicket | None:
        with self._lock:
            return self._tickets.get(token)

    def take(self, token: str) -> ResetTicket | None:
        """Remove and return the ticket, or None if there is none."""
        with self._lock:
            return self._tickets.pop(token, None)

    def delete(self, token: str) -> bool:
        with self._lock:
            return self._tickets.pop(token, None) is not None

    def purge_expired(self) -> int:
        """Drop every expired ticket. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [token for token, t in self._tickets.items() if t.is_expired(now)]
            for token in expired:
                del self._tickets[token]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tickets)
