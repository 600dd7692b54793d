"""
Triage Domain Entities
======================

Domain entities for the ticket triage decision engine.

Contains pure Python business objects: the ticket and its status machine,
the analysis results produced for it, the decision record and the
append-only audit and corpus records.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from src.config import (
    AuditAction, FinalAction, Priority, SLARisk, TicketStatus,
    DECISION_AUDIT_ACTIONS, REVIEW_STATUSES,
)
from src.core import InvalidTransitionException


ALLOWED_TRANSITIONS: Dict[TicketStatus, Tuple[TicketStatus, ...]] = {
    TicketStatus.SUBMITTED: (TicketStatus.CLASSIFIED,),
    TicketStatus.CLASSIFIED: (
        TicketStatus.AUTO_RESOLVED, TicketStatus.PENDING_REVIEW, TicketStatus.ESCALATED,
    ),
    TicketStatus.AUTO_RESOLVED: (),
    TicketStatus.PENDING_REVIEW: (
        TicketStatus.APPROVED, TicketStatus.MODIFIED, TicketStatus.OVERRIDDEN,
    ),
    TicketStatus.ESCALATED: (
        TicketStatus.APPROVED, TicketStatus.MODIFIED, TicketStatus.OVERRIDDEN,
    ),
    TicketStatus.APPROVED: (),
    TicketStatus.MODIFIED: (),
    TicketStatus.OVERRIDDEN: (),
}


WEEKDAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def _check_score(name: str, value: int) -> None:
    if not 0 <= value <= 100:
        raise ValueError(f"{name} must be between 0 and 100, got {value}")


@dataclass
class Ticket:
    """
    Support ticket as seen by the engine.

    ``business_critical`` is caller-supplied and never changed by the engine.
    ``category`` is filled in by the classifier.
    """
    id: str
    title: str
    description: str
    department: str
    priority: Priority
    business_critical: bool
    submitted_at: datetime
    status: TicketStatus = TicketStatus.SUBMITTED
    category: Optional[str] = None
    submitted_by: Optional[str] = None
    resolution: Optional[str] = None
    resolved_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def full_text(self) -> str:
        """Get combined title and description for analysis."""
        return f"{self.title}\n\n{self.description}"

    @property
    def is_awaiting_review(self) -> bool:
        """Check if a human action is expected on this ticket."""
        return self.status in REVIEW_STATUSES

    def can_transition_to(self, new_status: TicketStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

    def transition_to(self, new_status: TicketStatus, timestamp: Optional[datetime] = None) -> None:
        """
        Move the ticket to ``new_status``.

        Raises:
            InvalidTransitionException: If the status machine forbids the move
        """
        if not self.can_transition_to(new_status):
            raise InvalidTransitionException(self.id, self.status.value, new_status.value)
        self.status = new_status
        self.updated_at = timestamp or datetime.now(timezone.utc)

    def mark_resolved(self, resolution: Optional[str], timestamp: datetime) -> None:
        """Record the resolution applied to the ticket."""
        self.resolution = resolution
        self.resolved_at = timestamp
        self.updated_at = timestamp


@dataclass(frozen=True)
class ClassificationResult:
    """
    Result of ticket classification.

    ``degraded_reason`` is set when the classifier could not run and the
    fail-safe default was substituted.
    """
    category: str
    confidence: int  # 0 to 100
    matched_keywords: frozenset = field(default_factory=frozenset)
    degraded_reason: Optional[str] = None

    def __post_init__(self):
        _check_score("confidence", self.confidence)

    @classmethod
    def degraded(cls, category: str, reason: str) -> "ClassificationResult":
        return cls(category=category, confidence=0, degraded_reason=reason)


@dataclass(frozen=True)
class SimilarTicketRef:
    """Read-only snapshot of a corpus entry matched by similarity search."""
    id: str
    similarity: int  # 0 to 100
    title: str
    resolution: str
    resolved_at: datetime
    category: Optional[str] = None

    def __post_init__(self):
        _check_score("similarity", self.similarity)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "similarity": self.similarity,
            "title": self.title,
            "resolution": self.resolution,
            "resolved_at": self.resolved_at.isoformat(),
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SimilarTicketRef":
        return cls(
            id=data["id"],
            similarity=data["similarity"],
            title=data["title"],
            resolution=data["resolution"],
            resolved_at=datetime.fromisoformat(data["resolved_at"]),
            category=data.get("category"),
        )


@dataclass(frozen=True)
class SimilarityResult:
    """Ranked similar tickets plus their aggregate similarity."""
    matches: Tuple[SimilarTicketRef, ...] = ()
    aggregate: int = 0
    degraded_reason: Optional[str] = None

    def __post_init__(self):
        _check_score("aggregate similarity", self.aggregate)

    @property
    def match_count(self) -> int:
        return len(self.matches)

    @classmethod
    def from_matches(cls, matches: List[SimilarTicketRef]) -> "SimilarityResult":
        """Build a result whose aggregate is the mean of the match scores."""
        if not matches:
            return cls()
        aggregate = round(sum(m.similarity for m in matches) / len(matches))
        return cls(matches=tuple(matches), aggregate=aggregate)

    @classmethod
    def degraded(cls, reason: str) -> "SimilarityResult":
        return cls(degraded_reason=reason)


@dataclass(frozen=True)
class RiskAssessment:
    """SLA risk level and Resolution Stability Index for a ticket."""
    sla_risk: SLARisk
    rsi_score: int
    scope_signals: Tuple[str, ...] = ()

    def __post_init__(self):
        _check_score("rsi_score", self.rsi_score)


@dataclass(frozen=True)
class DecisionRecord:
    """
    Final decision for a submitted ticket.

    ``decision_path`` is the ordered audit narrative; its order is significant.
    """
    ticket_id: str
    final_action: FinalAction
    category: str
    confidence: int
    similarity_score: int
    sla_risk: SLARisk
    rsi_score: int
    business_critical: bool
    decision_path: Tuple[str, ...]
    produced_at: datetime
    matched_keywords: Tuple[str, ...] = ()
    similar_tickets: Tuple[SimilarTicketRef, ...] = ()
    suggested_resolution: Optional[str] = None

    def __post_init__(self):
        _check_score("confidence", self.confidence)
        _check_score("similarity_score", self.similarity_score)
        _check_score("rsi_score", self.rsi_score)

    @property
    def is_auto_resolved(self) -> bool:
        return self.final_action == FinalAction.AUTO_RESOLVE

    def to_dict(self) -> dict:
        """Serialize for audit payloads and storage."""
        return {
            "ticket_id": self.ticket_id,
            "final_action": self.final_action.value,
            "category": self.category,
            "confidence": self.confidence,
            "similarity_score": self.similarity_score,
            "sla_risk": self.sla_risk.value,
            "rsi_score": self.rsi_score,
            "business_critical": self.business_critical,
            "decision_path": list(self.decision_path),
            "produced_at": self.produced_at.isoformat(),
            "matched_keywords": list(self.matched_keywords),
            "similar_tickets": [ref.to_dict() for ref in self.similar_tickets],
            "suggested_resolution": self.suggested_resolution,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DecisionRecord":
        return cls(
            ticket_id=data["ticket_id"],
            final_action=FinalAction(data["final_action"]),
            category=data["category"],
            confidence=data["confidence"],
            similarity_score=data["similarity_score"],
            sla_risk=SLARisk(data["sla_risk"]),
            rsi_score=data["rsi_score"],
            business_critical=data["business_critical"],
            decision_path=tuple(data["decision_path"]),
            produced_at=datetime.fromisoformat(data["produced_at"]),
            matched_keywords=tuple(data.get("matched_keywords", ())),
            similar_tickets=tuple(
                SimilarTicketRef.from_dict(ref) for ref in data.get("similar_tickets", ())
            ),
            suggested_resolution=data.get("suggested_resolution"),
        )


@dataclass(frozen=True)
class AuditLogEntry:
    """
    Immutable audit record.

    Entries of one ticket are totally ordered by ``(timestamp, sequence)``.
    """
    id: str
    ticket_id: str
    action: AuditAction
    actor: str
    timestamp: datetime
    details: str
    sequence: int = 0
    payload: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def is_decision(self) -> bool:
        return self.action in DECISION_AUDIT_ACTIONS


@dataclass(frozen=True)
class CorpusEntry:
    """A resolved ticket kept as reference data. Immutable once appended."""
    id: str
    title: str
    description: str
    category: str
    resolution: str
    resolved_at: datetime
    department: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    source_ticket_id: Optional[str] = None

    @property
    def full_text(self) -> str:
        return f"{self.title}\n\n{self.description}"


@dataclass
class CategoryStats:
    """Per-category aggregate for the analytics projection."""
    name: str
    count: int = 0
    auto_resolved: int = 0

    @property
    def auto_rate(self) -> int:
        return round(100 * self.auto_resolved / self.count) if self.count else 0


@dataclass
class DailyTrend:
    """Decisions produced on one UTC day."""
    day: date
    auto_resolved: int = 0
    escalated: int = 0

    @property
    def total(self) -> int:
        return self.auto_resolved + self.escalated

    @property
    def label(self) -> str:
        return WEEKDAY_LABELS[self.day.weekday()]


@dataclass
class AnalyticsSummary:
    """Read-only aggregate over all stored decisions."""
    total_tickets: int
    auto_resolved: int
    escalated: int
    pending_review: int
    avg_confidence: float
    auto_resolve_rate: float
    sla_compliance: float
    category_breakdown: List[CategoryStats] = field(default_factory=list)
    confidence_distribution: Dict[str, int] = field(default_factory=dict)
    weekly_trend: List[DailyTrend] = field(default_factory=list)
