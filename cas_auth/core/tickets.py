"""
Ticket -> session index for single logout.

A single-logout push only names the service ticket a session was opened
with. The host keeps track of issued tickets through a TicketRegistry;
sessions whose ticket has been revoked are dropped on their next request.

Tickets are only remembered for max_age seconds, which should match the
max_age of the session cookie: after that the session they opened is gone
anyway. Expired entries are pruned whenever a new ticket is registered.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict

from sqlmodel import Session, delete, or_
from starlette.concurrency import run_in_threadpool

from ..models import CASTicket

logger = logging.getLogger(__name__)

# Starlette's SessionMiddleware default
SESSION_MAX_AGE = 14 * 24 * 60 * 60


class TicketRegistry(ABC):
    def __init__(self, max_age: int = SESSION_MAX_AGE):
        self.max_age = max_age

    def cutoff(self) -> datetime:
        """Tickets issued before this moment have outlived their session."""
        return datetime.now() - timedelta(seconds=self.max_age)

    @abstractmethod
    async def register(self, ticket: str) -> None:
        """Remember a ticket that just opened a session."""

    @abstractmethod
    async def revoke(self, ticket: str) -> bool:
        """Mark a ticket as logged out. Returns False for unknown tickets."""

    @abstractmethod
    async def is_active(self, ticket: str) -> bool:
        ...


class InMemoryTicketRegistry(TicketRegistry):
    """
    Process-local registry. Only usable with a single worker.

    Unknown tickets count as inactive, so a restart of the process drops
    every session that was opened before it, even though the session
    cookies themselves are still valid. Use SQLTicketRegistry when that
    matters.
    """

    def __init__(self, max_age: int = SESSION_MAX_AGE):
        super().__init__(max_age)
        self._issued: Dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    def _prune(self):
        cutoff = self.cutoff()
        expired = [ticket for ticket, issued_at in self._issued.items() if issued_at < cutoff]
        for ticket in expired:
            del self._issued[ticket]
        if expired:
            logger.debug(f"pruned {len(expired)} expired CAS tickets")

    async def register(self, ticket: str) -> None:
        async with self._lock:
            self._prune()
            self._issued[ticket] = datetime.now()

    async def revoke(self, ticket: str) -> bool:
        async with self._lock:
            return self._issued.pop(ticket, None) is not None

    async def is_active(self, ticket: str) -> bool:
        async with self._lock:
            issued_at = self._issued.get(ticket)
            return issued_at is not None and issued_at >= self.cutoff()


class SQLTicketRegistry(TicketRegistry):
    """
    Registry shared by all workers through the database.

    Session calls are blocking, so they run in the threadpool.
    """

    def __init__(self, engine, max_age: int = SESSION_MAX_AGE):
        super().__init__(max_age)
        self.engine = engine

    def _register(self, ticket: str):
        with Session(self.engine) as session:
            # revoked rows are only kept until the next login
            statement = delete(CASTicket).where(
                or_(CASTicket.revoked_at != None, CASTicket.issued_at < self.cutoff())  # noqa: E711
            )
            result = session.exec(statement)
            if result.rowcount:
                logger.debug(f"pruned {result.rowcount} expired CAS tickets")

            row = session.get(CASTicket, ticket)
            if row is None:
                row = CASTicket(ticket=ticket)
            else:
                row.issued_at = datetime.now()
            session.add(row)
            session.commit()

    def _revoke(self, ticket: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(CASTicket, ticket)
            if row is None or row.revoked_at is not None:
                return False
            row.revoked_at = datetime.now()
            session.add(row)
            session.commit()
            logger.info(f"Revoked CAS ticket {ticket}")
            return True

    def _is_active(self, ticket: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(CASTicket, ticket)
            return row is not None and row.revoked_at is None and row.issued_at >= self.cutoff()

    async def register(self, ticket: str) -> None:
        await run_in_threadpool(self._register, ticket)

    async def revoke(self, ticket: str) -> bool:
        return await run_in_threadpool(self._revoke, ticket)

    async def is_active(self, ticket: str) -> bool:
        return await run_in_threadpool(self._is_active, ticket)
