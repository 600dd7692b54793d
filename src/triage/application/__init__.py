"""
Triage Application Layer
=========================

Application layer for the triage decision engine.

Contains:
- Interfaces: repository and capability ABCs
- Services: keyword classifier, similarity index, audit logger, analytics
- Engine: the TriageEngine orchestrator
- DTOs: Data transfer objects for API serialization
"""

from src.triage.application.dto import (
    AnalyticsSummaryResponse,
    AnalyzeResponse,
    AuditLogEntryInfo,
    AuditLogResponse,
    CorpusEntryRequest,
    CorpusEntryResponse,
    DecisionResponse,
    HumanActionRequest,
    SimilarTicketInfo,
    TicketListResponse,
    TicketStatusResponse,
    TicketSubmitRequest,
    TicketSummaryInfo,
)
from src.triage.application.services import (
    AnalyticsService,
    AuditLogger,
    CorpusFeatureCache,
    IAuditLogRepository,
    IClassifier,
    ICorpusRepository,
    IDecisionRepository,
    ISimilarityIndex,
    ITicketRepository,
    KeyedLocks,
    KeywordClassifier,
    KeywordSimilarityIndex,
)
from src.triage.application.engine import Analysis, TicketListing, TriageEngine, decision_outcome

__all__ = [
    # DTOs
    "AnalyticsSummaryResponse",
    "AnalyzeResponse",
    "AuditLogEntryInfo",
    "AuditLogResponse",
    "CorpusEntryRequest",
    "CorpusEntryResponse",
    "DecisionResponse",
    "HumanActionRequest",
    "SimilarTicketInfo",
    "TicketListResponse",
    "TicketStatusResponse",
    "TicketSubmitRequest",
    "TicketSummaryInfo",
    # Services
    "AnalyticsService",
    "AuditLogger",
    "CorpusFeatureCache",
    "KeyedLocks",
    "KeywordClassifier",
    "KeywordSimilarityIndex",
    "TriageEngine",
    "Analysis",
    "TicketListing",
    "decision_outcome",
    # Interfaces
    "IAuditLogRepository",
    "IClassifier",
    "ICorpusRepository",
    "IDecisionRepository",
    "ISimilarityIndex",
    "ITicketRepository",
]
