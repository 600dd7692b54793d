"""
Triage Infrastructure Layer
============================

Infrastructure implementations for the triage module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: SQLAlchemy and in-memory data access implementations
- External: engine policy loader with file watching
"""

from src.triage.infrastructure.models import (
    AuditLogModel,
    CorpusEntryModel,
    DecisionModel,
    TicketModel,
)
from src.triage.infrastructure.repositories import (
    InMemoryAuditLogRepository,
    InMemoryCorpusRepository,
    InMemoryDecisionRepository,
    InMemoryTicketRepository,
    SQLAlchemyAuditLogRepository,
    SQLAlchemyCorpusRepository,
    SQLAlchemyDecisionRepository,
    SQLAlchemyTicketRepository,
)
from src.triage.infrastructure.external import PolicyConfigManager, PolicyFileHandler

__all__ = [
    "AuditLogModel",
    "CorpusEntryModel",
    "DecisionModel",
    "TicketModel",
    "InMemoryAuditLogRepository",
    "InMemoryCorpusRepository",
    "InMemoryDecisionRepository",
    "InMemoryTicketRepository",
    "SQLAlchemyAuditLogRepository",
    "SQLAlchemyCorpusRepository",
    "SQLAlchemyDecisionRepository",
    "SQLAlchemyTicketRepository",
    "PolicyConfigManager",
    "PolicyFileHandler",
]
