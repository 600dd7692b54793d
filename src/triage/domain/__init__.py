"""
Triage Domain Layer
===================

Domain layer for the ticket triage decision engine.

Contains:
- Entities: Ticket and the records produced for it (ClassificationResult,
  SimilarityResult, RiskAssessment, DecisionRecord, AuditLogEntry, CorpusEntry)
- Value Objects: TextFeatures, CategoryProfile, EnginePolicy
- Domain Services: RiskAssessor, DecisionPolicy

This layer is framework-agnostic and contains pure business logic.
"""

from src.triage.domain.entities import (
    ALLOWED_TRANSITIONS,
    AnalyticsSummary,
    AuditLogEntry,
    CategoryStats,
    ClassificationResult,
    CorpusEntry,
    DailyTrend,
    DecisionRecord,
    RiskAssessment,
    SimilarityResult,
    SimilarTicketRef,
    Ticket,
)
from src.triage.domain.services import (
    SLA_RISK_TABLE,
    DecisionPolicy,
    RiskAssessor,
    ScopeLevel,
    rsi_label,
)
from src.triage.domain.value_objects import (
    CategoryProfile,
    EnginePolicy,
    TextFeatures,
    extract_terms,
    tokenize,
)

__all__ = [
    # Entities
    "ALLOWED_TRANSITIONS",
    "AnalyticsSummary",
    "AuditLogEntry",
    "CategoryStats",
    "ClassificationResult",
    "CorpusEntry",
    "DailyTrend",
    "DecisionRecord",
    "RiskAssessment",
    "SimilarityResult",
    "SimilarTicketRef",
    "Ticket",
    # Value Objects
    "CategoryProfile",
    "EnginePolicy",
    "TextFeatures",
    "extract_terms",
    "tokenize",
    # Domain Services
    "SLA_RISK_TABLE",
    "DecisionPolicy",
    "RiskAssessor",
    "ScopeLevel",
    "rsi_label",
]
