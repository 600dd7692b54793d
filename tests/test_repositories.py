"""
Tests for the SQLAlchemy repositories against an in-memory SQLite database.
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from conftest import PASSWORD_RESOLUTION, SCENARIO_A
from src.config import AuditAction, FinalAction, Priority, SLARisk, TicketStatus
from src.core import RepositoryException
from src.infrastructure.database import close_database, create_tables, init_database
from src.main import build_engine, build_repositories
from src.triage.domain import (
    AuditLogEntry,
    CorpusEntry,
    DecisionRecord,
    SimilarTicketRef,
    Ticket,
)
from src.triage.infrastructure import (
    SQLAlchemyAuditLogRepository,
    SQLAlchemyCorpusRepository,
    SQLAlchemyDecisionRepository,
    SQLAlchemyTicketRepository,
)

SUBMITTED_AT = datetime(2024, 2, 15, 9, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    init_database("sqlite+aiosqlite:///:memory:")
    await create_tables()
    yield
    await close_database()


def make_ticket(ticket_id: str = "TF-1001") -> Ticket:
    return Ticket(
        id=ticket_id,
        title=SCENARIO_A["title"],
        description=SCENARIO_A["description"],
        department="Finance",
        priority=Priority.MEDIUM,
        business_critical=False,
        submitted_at=SUBMITTED_AT,
        submitted_by="john.doe@company.com",
    )


def make_corpus_entry(entry_id: str, resolved_at: datetime) -> CorpusEntry:
    return CorpusEntry(
        id=entry_id,
        title="Printer offline",
        description="Shared printer shows offline",
        category="Hardware Failure",
        resolution="Power cycled printer",
        resolved_at=resolved_at,
        department="Operations",
        priority=Priority.LOW,
    )


@pytest.mark.usefixtures("database")
class TestTicketRepository:
    async def test_save_and_get(self):
        repository = SQLAlchemyTicketRepository()
        await repository.save(make_ticket())

        loaded = await repository.get("TF-1001")

        assert loaded == make_ticket()
        assert loaded.submitted_at.tzinfo is not None

    async def test_save_updates_existing_ticket(self):
        repository = SQLAlchemyTicketRepository()
        ticket = make_ticket()
        await repository.save(ticket)

        ticket.transition_to(TicketStatus.CLASSIFIED, SUBMITTED_AT)
        ticket.category = "Password Reset"
        await repository.save(ticket)

        loaded = await repository.get("TF-1001")
        assert loaded.status == TicketStatus.CLASSIFIED
        assert loaded.category == "Password Reset"
        assert len(await repository.list_all()) == 1

    async def test_missing_ticket(self):
        assert await SQLAlchemyTicketRepository().get("TF-NOPE") is None


@pytest.mark.usefixtures("database")
class TestDecisionRepository:
    async def test_round_trip_keeps_full_record(self):
        repository = SQLAlchemyDecisionRepository()
        await SQLAlchemyTicketRepository().save(make_ticket())
        record = DecisionRecord(
            ticket_id="TF-1001",
            final_action=FinalAction.AUTO_RESOLVE,
            category="Password Reset",
            confidence=94,
            similarity_score=86,
            sla_risk=SLARisk.LOW,
            rsi_score=68,
            business_critical=False,
            decision_path=("Ticket classified: Password Reset (conf: 94%)", "Decision: AUTO RESOLVE"),
            produced_at=SUBMITTED_AT,
            matched_keywords=("password", "reset"),
            similar_tickets=(SimilarTicketRef(
                id="KB-006",
                similarity=100,
                title=SCENARIO_A["title"],
                resolution=PASSWORD_RESOLUTION,
                resolved_at=datetime(2024, 2, 15, 9, 24, 12, tzinfo=timezone.utc),
                category="Password Reset",
            ),),
            suggested_resolution=PASSWORD_RESOLUTION,
        )

        await repository.save(record)

        assert await repository.get("TF-1001") == record
        assert await repository.list_all() == [record]


@pytest.mark.usefixtures("database")
class TestAuditLogRepository:
    async def test_entries_come_back_in_order(self):
        repository = SQLAlchemyAuditLogRepository()
        base = datetime(2024, 2, 15, 9, 0, tzinfo=timezone.utc)
        entries = [
            AuditLogEntry(id=f"A-{i}", ticket_id="TF-1001", action=action, actor="engine",
                          timestamp=base.replace(second=i), details=action.value, sequence=i)
            for i, action in enumerate([AuditAction.PENDING_REVIEW, AuditAction.APPROVED])
        ]
        for entry in reversed(entries):
            await repository.append(entry)

        loaded = await repository.query_by_ticket("TF-1001")

        assert [e.id for e in loaded] == ["A-0", "A-1"]
        assert (await repository.last_for_ticket("TF-1001")).id == "A-1"
        assert await repository.last_for_ticket("TF-NOPE") is None

    async def test_payload_round_trip(self):
        repository = SQLAlchemyAuditLogRepository()
        await repository.append(AuditLogEntry(
            id="A-0", ticket_id="TF-1001", action=AuditAction.AUTO_RESOLVED, actor="engine",
            timestamp=SUBMITTED_AT, details="Decision: AUTO RESOLVE",
            payload={"decision": {"ticket_id": "TF-1001", "confidence": 94}},
        ))

        loaded = (await repository.query_by_ticket("TF-1001"))[0]

        assert loaded.payload == {"decision": {"ticket_id": "TF-1001", "confidence": 94}}
        assert loaded.timestamp == SUBMITTED_AT


@pytest.mark.usefixtures("database")
class TestCorpusRepository:
    async def test_append_and_read(self):
        repository = SQLAlchemyCorpusRepository()
        await repository.append(make_corpus_entry("KB-1", datetime(2024, 1, 1, tzinfo=timezone.utc)))
        await repository.append(make_corpus_entry("KB-2", datetime(2024, 1, 2, tzinfo=timezone.utc)))

        assert await repository.count() == 2
        assert {e.id for e in await repository.list_entries()} == {"KB-1", "KB-2"}
        loaded = await repository.get("KB-2")
        assert loaded == make_corpus_entry("KB-2", datetime(2024, 1, 2, tzinfo=timezone.utc))

    async def test_duplicate_id_is_rejected(self):
        repository = SQLAlchemyCorpusRepository()
        entry = make_corpus_entry("KB-1", datetime(2024, 1, 1, tzinfo=timezone.utc))
        await repository.append(entry)

        with pytest.raises(RepositoryException):
            await repository.append(entry)
        assert await repository.count() == 1


@pytest.mark.usefixtures("database")
class TestEngineOnDatabase:
    async def test_scenario_round_trip(self, policy_manager):
        engine = build_engine(build_repositories("database"), policy_manager)
        await engine.add_corpus_entry(
            title=SCENARIO_A["title"],
            description=SCENARIO_A["description"],
            category="Password Reset",
            resolution=PASSWORD_RESOLUTION,
            department="Finance",
            resolved_at=datetime(2024, 2, 15, 9, 24, 12, tzinfo=timezone.utc),
        )

        record = await engine.submit(ticket_id="TF-1001", **SCENARIO_A)

        assert record.final_action == FinalAction.AUTO_RESOLVE
        assert await engine.get_decision("TF-1001") == record
        assert (await engine.get_ticket("TF-1001")).status == TicketStatus.AUTO_RESOLVED
        assert [e.action for e in await engine.audit_log("TF-1001")] == [AuditAction.AUTO_RESOLVED]
        assert await engine.corpus_size() == 2
