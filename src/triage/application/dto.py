"""
Triage Application DTOs
========================

Data Transfer Objects for the triage API layer.

Pydantic models for request/response validation. Fields are exposed in
camelCase on the wire and accepted in either camelCase or snake_case.
Content rules (non-empty title, recognized department) are enforced by the
engine so they surface as named ValidationError results.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.triage.domain import (
    AnalyticsSummary,
    AuditLogEntry,
    CorpusEntry,
    DecisionRecord,
    RiskAssessment,
    SimilarTicketRef,
    Ticket,
)


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ========== Request DTOs ==========

class TicketSubmitRequest(CamelModel):
    """Request model for ticket submission and preview analysis."""
    id: Optional[str] = Field(None, description="Ticket ID; assigned on intake when omitted")
    title: str = Field(..., description="Ticket title")
    description: str = Field(..., description="Ticket description")
    department: str = Field(..., description="Requesting department")
    priority: str = Field(default="medium", description="low, medium, high or critical")
    business_critical: bool = Field(default=False, description="Forces human review")
    submitted_by: Optional[str] = Field(None, description="Requester identifier")
    submitted_at: Optional[datetime] = None


class HumanActionRequest(CamelModel):
    """Request model for a reviewer's action on an escalated ticket."""
    action: str = Field(..., description="approve, modify or override")
    actor: str = Field(..., description="Reviewer identifier")
    details: Optional[str] = Field(None, description="Resolution text or reason")


class CorpusEntryRequest(CamelModel):
    """Request model for adding a resolved ticket to the corpus."""
    title: str
    description: str = ""
    category: str
    resolution: str
    department: Optional[str] = None
    priority: str = "medium"
    resolved_at: Optional[datetime] = None


# ========== Response DTOs ==========

class SimilarTicketInfo(CamelModel):
    """Similar historical ticket in a decision."""
    id: str
    similarity: int = Field(..., ge=0, le=100)
    title: str
    resolution: str
    resolved_at: datetime
    category: Optional[str] = None

    @classmethod
    def from_domain(cls, ref: SimilarTicketRef) -> "SimilarTicketInfo":
        return cls(
            id=ref.id,
            similarity=ref.similarity,
            title=ref.title,
            resolution=ref.resolution,
            resolved_at=ref.resolved_at,
            category=ref.category,
        )


class DecisionResponse(CamelModel):
    """Response model for a decision record."""
    ticket_id: str
    category: str
    confidence: int = Field(..., ge=0, le=100)
    similarity_score: int = Field(..., ge=0, le=100)
    sla_risk: str
    rsi_score: int = Field(..., ge=0, le=100)
    final_action: str
    business_critical: bool
    decision_path: List[str]
    produced_at: datetime
    matched_keywords: List[str] = []
    similar_tickets: List[SimilarTicketInfo] = []
    suggested_resolution: Optional[str] = None

    @classmethod
    def from_domain(cls, record: DecisionRecord) -> "DecisionResponse":
        return cls(
            ticket_id=record.ticket_id,
            category=record.category,
            confidence=record.confidence,
            similarity_score=record.similarity_score,
            sla_risk=record.sla_risk.value,
            rsi_score=record.rsi_score,
            final_action=record.final_action.value,
            business_critical=record.business_critical,
            decision_path=list(record.decision_path),
            produced_at=record.produced_at,
            matched_keywords=list(record.matched_keywords),
            similar_tickets=[SimilarTicketInfo.from_domain(r) for r in record.similar_tickets],
            suggested_resolution=record.suggested_resolution,
        )


class AnalyzeResponse(DecisionResponse):
    """Preview of a decision; nothing was stored."""
    scope_signals: List[str] = []

    @classmethod
    def from_preview(cls, record: DecisionRecord, risk: RiskAssessment) -> "AnalyzeResponse":
        base = DecisionResponse.from_domain(record)
        return cls(**base.model_dump(), scope_signals=list(risk.scope_signals))


class TicketStatusResponse(CamelModel):
    """Ticket state after a human action."""
    ticket_id: str
    status: str
    category: Optional[str] = None
    resolution: Optional[str] = None
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, ticket: Ticket) -> "TicketStatusResponse":
        return cls(
            ticket_id=ticket.id,
            status=ticket.status.value,
            category=ticket.category,
            resolution=ticket.resolution,
            resolved_at=ticket.resolved_at,
        )


class TicketSummaryInfo(CamelModel):
    """Stored ticket with its decision, for review queues and ticket lists."""
    id: str
    title: str
    department: str
    priority: str
    business_critical: bool
    status: str
    category: Optional[str] = None
    submitted_at: datetime
    submitted_by: Optional[str] = None
    resolution: Optional[str] = None
    resolved_at: Optional[datetime] = None
    decision: Optional[DecisionResponse] = None

    @classmethod
    def from_domain(cls, ticket: Ticket, decision: Optional[DecisionRecord]) -> "TicketSummaryInfo":
        return cls(
            id=ticket.id,
            title=ticket.title,
            department=ticket.department,
            priority=ticket.priority.value,
            business_critical=ticket.business_critical,
            status=ticket.status.value,
            category=ticket.category,
            submitted_at=ticket.submitted_at,
            submitted_by=ticket.submitted_by,
            resolution=ticket.resolution,
            resolved_at=ticket.resolved_at,
            decision=DecisionResponse.from_domain(decision) if decision else None,
        )


class TicketListResponse(CamelModel):
    """Response model for a filtered ticket list."""
    tickets: List[TicketSummaryInfo]
    count: int


class AuditLogEntryInfo(CamelModel):
    """One audit log entry."""
    id: str
    ticket_id: str
    action: str
    actor: str
    timestamp: datetime
    details: str
    sequence: int

    @classmethod
    def from_domain(cls, entry: AuditLogEntry) -> "AuditLogEntryInfo":
        return cls(
            id=entry.id,
            ticket_id=entry.ticket_id,
            action=entry.action.value,
            actor=entry.actor,
            timestamp=entry.timestamp,
            details=entry.details,
            sequence=entry.sequence,
        )


class AuditLogResponse(CamelModel):
    """Response model for a ticket's audit trail."""
    ticket_id: str
    entries: List[AuditLogEntryInfo]


class CategoryBreakdownInfo(CamelModel):
    name: str
    count: int
    auto_rate: int


class DailyTrendInfo(CamelModel):
    day: str
    date: str
    auto: int
    escalated: int
    total: int


class AnalyticsSummaryResponse(CamelModel):
    """Response model for the analytics summary."""
    total_tickets: int
    auto_resolved: int
    escalated: int
    pending_review: int
    avg_confidence: float
    auto_resolve_rate: float
    sla_compliance: float
    category_breakdown: List[CategoryBreakdownInfo]
    confidence_distribution: Dict[str, int]
    weekly_trend: List[DailyTrendInfo] = []

    @classmethod
    def from_domain(cls, summary: AnalyticsSummary) -> "AnalyticsSummaryResponse":
        return cls(
            total_tickets=summary.total_tickets,
            auto_resolved=summary.auto_resolved,
            escalated=summary.escalated,
            pending_review=summary.pending_review,
            avg_confidence=summary.avg_confidence,
            auto_resolve_rate=summary.auto_resolve_rate,
            sla_compliance=summary.sla_compliance,
            category_breakdown=[
                CategoryBreakdownInfo(name=s.name, count=s.count, auto_rate=s.auto_rate)
                for s in summary.category_breakdown
            ],
            confidence_distribution=summary.confidence_distribution,
            weekly_trend=[
                DailyTrendInfo(
                    day=d.label,
                    date=d.day.isoformat(),
                    auto=d.auto_resolved,
                    escalated=d.escalated,
                    total=d.total,
                )
                for d in summary.weekly_trend
            ],
        )


class CorpusEntryResponse(CamelModel):
    """Response model for a corpus append."""
    id: str
    title: str
    category: str
    resolved_at: datetime
    corpus_size: int

    @classmethod
    def from_domain(cls, entry: CorpusEntry, corpus_size: int) -> "CorpusEntryResponse":
        return cls(
            id=entry.id,
            title=entry.title,
            category=entry.category,
            resolved_at=entry.resolved_at,
            corpus_size=corpus_size,
        )
