"""
Tests for ordered, retried audit appends.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from src.config import AuditAction
from src.core import AuditWriteException, RepositoryException
from src.triage.application import AuditLogger
from src.triage.infrastructure import InMemoryAuditLogRepository

FROZEN = datetime(2024, 2, 15, 9, 0, tzinfo=timezone.utc)


class FlakyAuditLogRepository(InMemoryAuditLogRepository):
    """Fails the first ``failures`` appends."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def append(self, entry):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise RepositoryException("database is locked")
        await super().append(entry)


class TestAuditLogger:
    async def test_entries_are_ordered_with_strictly_increasing_timestamps(self):
        repository = InMemoryAuditLogRepository()
        audit = AuditLogger(repository, clock=lambda: FROZEN)

        for action in (AuditAction.PENDING_REVIEW, AuditAction.APPROVED):
            await audit.record("TF-1", action, "engine", action.value)
        await audit.record("TF-2", AuditAction.AUTO_RESOLVED, "engine", "Decision: AUTO RESOLVE")

        entries = await audit.query_by_ticket("TF-1")
        assert [e.action for e in entries] == [AuditAction.PENDING_REVIEW, AuditAction.APPROVED]
        assert [e.sequence for e in entries] == [0, 1]
        assert entries[0].timestamp < entries[1].timestamp
        assert (await audit.query_by_ticket("TF-2"))[0].sequence == 0

    async def test_concurrent_appends_for_one_ticket_are_serialized(self):
        repository = InMemoryAuditLogRepository()
        audit = AuditLogger(repository, clock=lambda: FROZEN)

        await asyncio.gather(*[
            audit.record("TF-1", AuditAction.MODIFIED, f"reviewer-{i}", "edit") for i in range(5)
        ])

        entries = await audit.query_by_ticket("TF-1")
        assert [e.sequence for e in entries] == [0, 1, 2, 3, 4]
        assert len({e.timestamp for e in entries}) == 5

    async def test_payload_is_kept(self):
        audit = AuditLogger(InMemoryAuditLogRepository())

        entry = await audit.record(
            "TF-1", AuditAction.ESCALATED, "engine", "Decision: ESCALATE TO HUMAN",
            payload={"decision": {"ticket_id": "TF-1"}},
        )

        assert entry.payload == {"decision": {"ticket_id": "TF-1"}}
        assert entry.is_decision

    async def test_transient_failure_is_retried(self):
        repository = FlakyAuditLogRepository(failures=2)
        audit = AuditLogger(repository, retries=3, backoff_seconds=0)

        await audit.record("TF-1", AuditAction.AUTO_RESOLVED, "engine", "Decision: AUTO RESOLVE")

        assert repository.attempts == 3
        assert len(repository) == 1

    async def test_exhausted_retries_raise_audit_write_failure(self):
        repository = FlakyAuditLogRepository(failures=10)
        audit = AuditLogger(repository, retries=3, backoff_seconds=0)

        with pytest.raises(AuditWriteException) as exc_info:
            await audit.record("TF-1", AuditAction.AUTO_RESOLVED, "engine", "Decision: AUTO RESOLVE")

        assert exc_info.value.error_code == "AuditWriteFailure"
        assert exc_info.value.details["attempts"] == 3
        assert len(repository) == 0
