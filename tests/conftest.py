"""
Test Configuration
==================

Pytest fixtures for the triage engine tests.
"""

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment before settings are read
os.environ["ENVIRONMENT"] = "testing"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["POLICY_HOT_RELOAD"] = "false"

from src.config import DEFAULT_DEPARTMENTS, Priority  # noqa: E402
from src.triage.application import (  # noqa: E402
    AuditLogger,
    CorpusFeatureCache,
    KeywordClassifier,
    KeywordSimilarityIndex,
    TriageEngine,
)
from src.triage.domain import CorpusEntry, EnginePolicy  # noqa: E402
from src.triage.infrastructure import (  # noqa: E402
    InMemoryAuditLogRepository,
    InMemoryCorpusRepository,
    InMemoryDecisionRepository,
    InMemoryTicketRepository,
    PolicyConfigManager,
)


SCENARIO_A = {
    "title": "Cannot reset my Active Directory password",
    "description": (
        "I am unable to reset my AD password through the self-service portal. "
        "The reset link is not arriving in my email."
    ),
    "department": "Finance",
    "priority": "medium",
}

SCENARIO_B = {
    "title": "Suspicious login attempts from unknown IPs",
    "description": (
        "Security team flagged repeated failed login attempts from unknown IP addresses. "
        "MFA was bypassed on one account."
    ),
    "department": "Security",
    "priority": "critical",
    "business_critical": True,
}

PASSWORD_RESOLUTION = (
    "Automated password reset triggered via LDAP. Confirmation email dispatched. "
    "User account unlocked in AD."
)


def corpus_entry(
    entry_id: str,
    title: str,
    description: str,
    category: str,
    resolution: str,
    resolved_at: datetime,
    **kwargs: Any,
) -> CorpusEntry:
    return CorpusEntry(
        id=entry_id,
        title=title,
        description=description,
        category=category,
        resolution=resolution,
        resolved_at=resolved_at,
        **kwargs,
    )


@pytest.fixture
def resolved_tickets() -> list[CorpusEntry]:
    """Resolved tickets, including an exact duplicate of scenario A."""
    return [
        corpus_entry(
            "KB-001",
            "User cannot reset password via portal",
            "Self-service password reset portal rejects the request and no reset link is sent.",
            "Password Reset",
            "Sent password reset link via admin console. User confirmed access.",
            datetime(2024, 1, 10, 10, 0, tzinfo=timezone.utc),
            department="Finance",
        ),
        corpus_entry(
            "KB-003",
            "VPN disconnects every 30 minutes",
            "GlobalProtect VPN tunnel drops every half hour for a remote user.",
            "VPN Problem",
            "Updated split-tunneling config and pushed policy update.",
            datetime(2024, 1, 18, 10, 0, tzinfo=timezone.utc),
            department="Engineering",
        ),
        corpus_entry(
            "KB-004",
            "Can't access SharePoint files from home",
            "SharePoint documents are blocked when working from home, access denied message.",
            "Access Request",
            "Re-enrolled device in Intune and applied conditional access policy.",
            datetime(2024, 1, 22, 10, 0, tzinfo=timezone.utc),
            priority=Priority.LOW,
        ),
        corpus_entry(
            "KB-005",
            "Outlook not syncing calendar on mobile",
            "Outlook calendar and mailbox stopped syncing on the phone after a password change.",
            "Email Issue",
            "Cleared cache, re-added Exchange account via MDM profile.",
            datetime(2024, 1, 25, 10, 0, tzinfo=timezone.utc),
        ),
        corpus_entry(
            "KB-006",
            SCENARIO_A["title"],
            SCENARIO_A["description"],
            "Password Reset",
            PASSWORD_RESOLUTION,
            datetime(2024, 2, 15, 9, 24, 12, tzinfo=timezone.utc),
            department="Finance",
        ),
        corpus_entry(
            "KB-007",
            "Request access to Salesforce Production environment",
            "I need read-only access to Salesforce Production to generate quarterly reports.",
            "Access Request",
            "Read-only Salesforce role provisioned via Okta workflow.",
            datetime(2024, 2, 14, 14, 31, 45, tzinfo=timezone.utc),
        ),
    ]


@pytest.fixture
def policy() -> EnginePolicy:
    return EnginePolicy()


@pytest.fixture
def policy_manager(policy: EnginePolicy) -> PolicyConfigManager:
    manager = PolicyConfigManager()
    manager.use(policy)
    return manager


@pytest.fixture
def corpus(resolved_tickets: list[CorpusEntry]) -> InMemoryCorpusRepository:
    return InMemoryCorpusRepository(resolved_tickets)


@pytest.fixture
def empty_corpus() -> InMemoryCorpusRepository:
    return InMemoryCorpusRepository()


@pytest.fixture
def audit_repository() -> InMemoryAuditLogRepository:
    return InMemoryAuditLogRepository()


@pytest.fixture
def ticket_repository() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def decision_repository() -> InMemoryDecisionRepository:
    return InMemoryDecisionRepository()


@pytest.fixture
def make_engine(policy_manager, ticket_repository, decision_repository, audit_repository):
    """Factory for engines over in-memory stores; parts can be swapped per test."""

    def factory(
        corpus=None,
        audit_repository=audit_repository,
        decisions=decision_repository,
        classifier=None,
        similarity_index=None,
        **kwargs: Any,
    ) -> TriageEngine:
        corpus = corpus if corpus is not None else InMemoryCorpusRepository()

        def policy_provider():
            return policy_manager.config

        cache = CorpusFeatureCache()
        return TriageEngine(
            tickets=ticket_repository,
            decisions=decisions,
            corpus=corpus,
            audit_logger=AuditLogger(audit_repository, retries=2, backoff_seconds=0),
            classifier=classifier or KeywordClassifier(corpus, policy_provider, cache),
            similarity_index=similarity_index or KeywordSimilarityIndex(corpus, policy_provider, cache),
            policy_provider=policy_provider,
            departments=DEFAULT_DEPARTMENTS,
            **kwargs,
        )

    return factory


@pytest.fixture
def engine(make_engine, corpus) -> TriageEngine:
    """Engine over the standard resolved-ticket corpus."""
    return make_engine(corpus=corpus)


@pytest_asyncio.fixture
async def client(engine, policy_manager) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with the engine wired into app state."""
    from src.main import app

    app.state.engine = engine
    app.state.policy_manager = policy_manager
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    del app.state.engine
    del app.state.policy_manager
