"""
Triage Infrastructure Repositories
====================================

Concrete implementations of the triage repository interfaces.

- SQLAlchemy repositories: each call runs in its own session and commits
  before returning, so every append is one atomic, durable unit of work
- In-memory repositories: for ``storage_backend=memory`` and tests
"""

from contextlib import AbstractAsyncContextManager
from typing import Callable, Dict, List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import AuditAction, Priority, TicketStatus
from src.core import AuditWriteException, CorpusUnavailableException, RepositoryException
from src.infrastructure.database import get_session_context
from src.triage.application.services import (
    IAuditLogRepository,
    ICorpusRepository,
    IDecisionRepository,
    ITicketRepository,
    as_utc,
)
from src.triage.domain import AuditLogEntry, CorpusEntry, DecisionRecord, Ticket
from src.triage.infrastructure.models import (
    AuditLogModel,
    CorpusEntryModel,
    DecisionModel,
    TicketModel,
)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _optional_utc(value):
    return as_utc(value) if value is not None else None


# ========== SQLAlchemy Repositories ==========

class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of the ticket repository.

    Tickets are the only mutable rows; ``save`` upserts by id.
    """

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    @staticmethod
    def _to_domain(model: TicketModel) -> Ticket:
        return Ticket(
            id=model.id,
            title=model.title,
            description=model.description,
            department=model.department,
            priority=Priority(model.priority),
            business_critical=model.business_critical,
            submitted_at=as_utc(model.submitted_at),
            status=TicketStatus(model.status),
            category=model.category,
            submitted_by=model.submitted_by,
            resolution=model.resolution,
            resolved_at=_optional_utc(model.resolved_at),
            updated_at=_optional_utc(model.updated_at),
        )

    async def get(self, ticket_id: str) -> Optional[Ticket]:
        try:
            async with self._session_factory() as session:
                model = await session.get(TicketModel, ticket_id)
                return self._to_domain(model) if model else None
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to load ticket {ticket_id}: {e}")

    async def save(self, ticket: Ticket) -> None:
        model = TicketModel(
            id=ticket.id,
            title=ticket.title,
            description=ticket.description,
            department=ticket.department,
            priority=ticket.priority.value,
            business_critical=ticket.business_critical,
            submitted_by=ticket.submitted_by,
            status=ticket.status.value,
            category=ticket.category,
            resolution=ticket.resolution,
            submitted_at=ticket.submitted_at,
            resolved_at=ticket.resolved_at,
            updated_at=ticket.updated_at,
        )
        try:
            async with self._session_factory() as session:
                await session.merge(model)
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to save ticket {ticket.id}: {e}")

    async def list_all(self) -> List[Ticket]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(TicketModel).order_by(TicketModel.submitted_at))
                return [self._to_domain(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to list tickets: {e}")


class SQLAlchemyDecisionRepository(IDecisionRepository):
    """SQLAlchemy implementation of decision storage."""

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    async def get(self, ticket_id: str) -> Optional[DecisionRecord]:
        try:
            async with self._session_factory() as session:
                model = await session.get(DecisionModel, ticket_id)
                return DecisionRecord.from_dict(model.record) if model else None
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to load decision {ticket_id}: {e}")

    async def save(self, record: DecisionRecord) -> None:
        model = DecisionModel(
            ticket_id=record.ticket_id,
            final_action=record.final_action.value,
            category=record.category,
            confidence=record.confidence,
            record=record.to_dict(),
            produced_at=record.produced_at,
        )
        try:
            async with self._session_factory() as session:
                await session.merge(model)
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to save decision {record.ticket_id}: {e}")

    async def list_all(self) -> List[DecisionRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(DecisionModel).order_by(DecisionModel.produced_at)
                )
                return [DecisionRecord.from_dict(m.record) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to list decisions: {e}")


class SQLAlchemyAuditLogRepository(IAuditLogRepository):
    """
    SQLAlchemy implementation of the audit log.

    Insert-only: there is no update or delete path.
    """

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    @staticmethod
    def _to_domain(model: AuditLogModel) -> AuditLogEntry:
        return AuditLogEntry(
            id=model.id,
            ticket_id=model.ticket_id,
            action=AuditAction(model.action),
            actor=model.actor,
            timestamp=as_utc(model.timestamp),
            details=model.details,
            sequence=model.sequence,
            payload=model.payload or {},
        )

    async def append(self, entry: AuditLogEntry) -> None:
        model = AuditLogModel(
            id=entry.id,
            ticket_id=entry.ticket_id,
            action=entry.action.value,
            actor=entry.actor,
            timestamp=entry.timestamp,
            sequence=entry.sequence,
            details=entry.details,
            payload=entry.payload,
        )
        try:
            async with self._session_factory() as session:
                session.add(model)
        except SQLAlchemyError as e:
            raise AuditWriteException(
                f"Failed to append audit entry for ticket {entry.ticket_id}: {e}",
                details={"ticket_id": entry.ticket_id}
            )

    async def query_by_ticket(self, ticket_id: str) -> List[AuditLogEntry]:
        stmt = (
            select(AuditLogModel)
            .where(AuditLogModel.ticket_id == ticket_id)
            .order_by(AuditLogModel.timestamp, AuditLogModel.sequence)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [self._to_domain(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to query audit log for {ticket_id}: {e}")

    async def last_for_ticket(self, ticket_id: str) -> Optional[AuditLogEntry]:
        stmt = (
            select(AuditLogModel)
            .where(AuditLogModel.ticket_id == ticket_id)
            .order_by(desc(AuditLogModel.timestamp), desc(AuditLogModel.sequence))
            .limit(1)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                model = result.scalar_one_or_none()
                return self._to_domain(model) if model else None
        except SQLAlchemyError as e:
            raise AuditWriteException(
                f"Failed to read audit log head for ticket {ticket_id}: {e}",
                details={"ticket_id": ticket_id}
            )


class SQLAlchemyCorpusRepository(ICorpusRepository):
    """
    SQLAlchemy implementation of the corpus.

    Read failures surface as CorpusUnavailableException so the engine can
    degrade instead of failing the submission.
    """

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    @staticmethod
    def _to_domain(model: CorpusEntryModel) -> CorpusEntry:
        return CorpusEntry(
            id=model.id,
            title=model.title,
            description=model.description,
            category=model.category,
            resolution=model.resolution,
            resolved_at=as_utc(model.resolved_at),
            department=model.department,
            priority=Priority(model.priority),
            source_ticket_id=model.source_ticket_id,
        )

    async def append(self, entry: CorpusEntry) -> CorpusEntry:
        model = CorpusEntryModel(
            id=entry.id,
            title=entry.title,
            description=entry.description,
            category=entry.category,
            resolution=entry.resolution,
            department=entry.department,
            priority=entry.priority.value,
            source_ticket_id=entry.source_ticket_id,
            resolved_at=entry.resolved_at,
        )
        try:
            async with self._session_factory() as session:
                session.add(model)
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to append corpus entry {entry.id}: {e}")
        return entry

    async def list_entries(self) -> List[CorpusEntry]:
        stmt = select(CorpusEntryModel).order_by(CorpusEntryModel.created_at, CorpusEntryModel.id)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [self._to_domain(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise CorpusUnavailableException(f"Corpus could not be read: {e}")

    async def get(self, entry_id: str) -> Optional[CorpusEntry]:
        try:
            async with self._session_factory() as session:
                model = await session.get(CorpusEntryModel, entry_id)
                return self._to_domain(model) if model else None
        except SQLAlchemyError as e:
            raise CorpusUnavailableException(f"Corpus could not be read: {e}")

    async def count(self) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(func.count()).select_from(CorpusEntryModel))
                return result.scalar_one()
        except SQLAlchemyError as e:
            raise CorpusUnavailableException(f"Corpus could not be read: {e}")


# ========== In-Memory Repositories ==========

class InMemoryTicketRepository(ITicketRepository):
    """Dict-backed ticket store. Stores copies so callers cannot mutate state."""

    def __init__(self):
        self._tickets: Dict[str, Ticket] = {}

    async def get(self, ticket_id: str) -> Optional[Ticket]:
        ticket = self._tickets.get(ticket_id)
        return _copy_ticket(ticket) if ticket else None

    async def save(self, ticket: Ticket) -> None:
        self._tickets[ticket.id] = _copy_ticket(ticket)

    async def list_all(self) -> List[Ticket]:
        return [_copy_ticket(t) for t in self._tickets.values()]


def _copy_ticket(ticket: Ticket) -> Ticket:
    return Ticket(**vars(ticket))


class InMemoryDecisionRepository(IDecisionRepository):
    def __init__(self):
        self._records: Dict[str, DecisionRecord] = {}

    async def get(self, ticket_id: str) -> Optional[DecisionRecord]:
        return self._records.get(ticket_id)

    async def save(self, record: DecisionRecord) -> None:
        self._records[record.ticket_id] = record

    async def list_all(self) -> List[DecisionRecord]:
        return list(self._records.values())


class InMemoryAuditLogRepository(IAuditLogRepository):
    """List-backed audit log. Entries are frozen dataclasses and only appended."""

    def __init__(self):
        self._entries: List[AuditLogEntry] = []

    async def append(self, entry: AuditLogEntry) -> None:
        self._entries.append(entry)

    async def query_by_ticket(self, ticket_id: str) -> List[AuditLogEntry]:
        entries = [e for e in self._entries if e.ticket_id == ticket_id]
        return sorted(entries, key=lambda e: (e.timestamp, e.sequence))

    async def last_for_ticket(self, ticket_id: str) -> Optional[AuditLogEntry]:
        entries = await self.query_by_ticket(ticket_id)
        return entries[-1] if entries else None

    def __len__(self) -> int:
        return len(self._entries)


class InMemoryCorpusRepository(ICorpusRepository):
    """List-backed corpus. ``list_entries`` returns a snapshot copy."""

    def __init__(self, entries: Optional[List[CorpusEntry]] = None):
        self._entries: List[CorpusEntry] = []
        self._ids = set()
        for entry in entries or []:
            self._add(entry)

    def _add(self, entry: CorpusEntry) -> None:
        if entry.id in self._ids:
            raise RepositoryException(f"Corpus entry {entry.id} already exists")
        self._entries.append(entry)
        self._ids.add(entry.id)

    async def append(self, entry: CorpusEntry) -> CorpusEntry:
        self._add(entry)
        return entry

    async def list_entries(self) -> List[CorpusEntry]:
        return list(self._entries)

    async def get(self, entry_id: str) -> Optional[CorpusEntry]:
        return next((e for e in self._entries if e.id == entry_id), None)

    async def count(self) -> int:
        return len(self._entries)
