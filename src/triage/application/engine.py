"""
Triage Engine
=============

Orchestrates one ticket through classification, similarity search, risk
assessment and the decision policy, then records the outcome.

Write order for a submission: ticket stored as submitted, decision audit
entry appended (carrying the full decision), decision stored, ticket moved
to its final status. If the audit append fails nothing past the first step
is written and the caller gets ServiceUnavailable. If a later step fails the
next retry rebuilds the decision from the audit entry instead of deciding
again.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple, Union
from uuid import uuid4

from src.config import (
    ID_MAX_LENGTH,
    OTHER_CATEGORY,
    TITLE_MAX_LENGTH,
    VALID_PRIORITIES,
    AuditAction,
    FinalAction,
    HumanAction,
    Priority,
    SLARisk,
    TicketStatus,
)
from src.core import (
    AuditWriteException,
    CorpusUnavailableException,
    InvalidTransitionException,
    RepositoryException,
    ResourceNotFoundException,
    ServiceUnavailableException,
    TimeoutDegradedException,
    ValidationException,
)
from src.shared.infrastructure.logging import get_logger, log_latency
from src.triage.application.services import (
    AnalyticsService,
    AuditLogger,
    IClassifier,
    ICorpusRepository,
    IDecisionRepository,
    ISimilarityIndex,
    ITicketRepository,
    KeyedLocks,
    PolicyProvider,
    as_utc,
    utc_now,
)
from src.triage.domain import (
    AnalyticsSummary,
    AuditLogEntry,
    ClassificationResult,
    CorpusEntry,
    DecisionPolicy,
    DecisionRecord,
    EnginePolicy,
    RiskAssessment,
    RiskAssessor,
    SimilarityResult,
    Ticket,
)

logger = get_logger(__name__)


HUMAN_ACTION_OUTCOMES = {
    HumanAction.APPROVE: (TicketStatus.APPROVED, AuditAction.APPROVED),
    HumanAction.MODIFY: (TicketStatus.MODIFIED, AuditAction.MODIFIED),
    HumanAction.OVERRIDE: (TicketStatus.OVERRIDDEN, AuditAction.OVERRIDDEN),
}

PREVIEW_TICKET_ID = "preview"
CORPUS_SUFFIX_LENGTH = 6
# room for the "-<suffix>" appended when a resolved ticket joins the corpus
MAX_TICKET_ID_LENGTH = ID_MAX_LENGTH - CORPUS_SUFFIX_LENGTH - 1


@dataclass(frozen=True)
class Analysis:
    """Everything computed for a ticket before anything is stored."""
    classification: ClassificationResult
    similarity: SimilarityResult
    risk: RiskAssessment
    decision: DecisionRecord


@dataclass(frozen=True)
class TicketListing:
    """A stored ticket with its decision, if one was produced."""
    ticket: Ticket
    decision: Optional[DecisionRecord]


def decision_outcome(record: DecisionRecord) -> Tuple[TicketStatus, AuditAction]:
    """
    Ticket status and audit action for a decision.

    Escalations go to ``escalated`` when business critical or high SLA
    risk, otherwise to ``pending_review``.
    """
    if record.final_action == FinalAction.AUTO_RESOLVE:
        return TicketStatus.AUTO_RESOLVED, AuditAction.AUTO_RESOLVED
    if record.business_critical or record.sla_risk == SLARisk.HIGH:
        return TicketStatus.ESCALATED, AuditAction.ESCALATED
    return TicketStatus.PENDING_REVIEW, AuditAction.PENDING_REVIEW


class TriageEngine:
    """
    Decision engine entry point.

    Stateless across requests apart from the injected repositories. Work on
    one ticket id is serialized; different tickets proceed concurrently.
    """

    def __init__(
        self,
        tickets: ITicketRepository,
        decisions: IDecisionRepository,
        corpus: ICorpusRepository,
        audit_logger: AuditLogger,
        classifier: IClassifier,
        similarity_index: ISimilarityIndex,
        policy_provider: PolicyProvider,
        departments: Iterable[str],
        classification_timeout: float = 2.0,
        similarity_timeout: float = 2.0,
        actor: str = "engine",
        id_prefix: str = "TF",
        clock: Callable[[], datetime] = utc_now
    ):
        self._tickets = tickets
        self._decisions = decisions
        self._corpus = corpus
        self._audit = audit_logger
        self._classifier = classifier
        self._similarity = similarity_index
        self._policy_provider = policy_provider
        self._departments = frozenset(departments)
        self._classification_timeout = classification_timeout
        self._similarity_timeout = similarity_timeout
        self._actor = actor
        self._id_prefix = id_prefix
        self._clock = clock
        self._locks = KeyedLocks()
        self._corpus_lock = asyncio.Lock()
        self._analytics = AnalyticsService(decisions, tickets, policy_provider, clock)

    # ========== Intake ==========

    def _new_ticket_id(self) -> str:
        return f"{self._id_prefix}-{uuid4().hex[:10].upper()}"

    def _build_ticket(
        self,
        title: str,
        description: str,
        department: str,
        priority: str,
        business_critical: bool,
        ticket_id: Optional[str],
        submitted_by: Optional[str],
        submitted_at: Optional[datetime],
    ) -> Ticket:
        """
        Validate a submission and build the ticket.

        Raises:
            ValidationException: If title or description is empty, the title
                or id is too long, or the department or priority is not
                recognized
        """
        if not title or not title.strip():
            raise ValidationException("Ticket title must not be empty", {"field": "title"})
        if len(title.strip()) > TITLE_MAX_LENGTH:
            raise ValidationException(
                f"Ticket title exceeds {TITLE_MAX_LENGTH} characters",
                {"field": "title", "max_length": TITLE_MAX_LENGTH}
            )
        if not description or not description.strip():
            raise ValidationException("Ticket description must not be empty", {"field": "description"})
        if department not in self._departments:
            raise ValidationException(
                f"Unknown department '{department}'",
                {"field": "department", "allowed": sorted(self._departments)}
            )
        if priority not in VALID_PRIORITIES:
            raise ValidationException(
                f"Unknown priority '{priority}'",
                {"field": "priority", "allowed": VALID_PRIORITIES}
            )
        if ticket_id is not None and not ticket_id.strip():
            raise ValidationException("Ticket id must not be blank", {"field": "id"})
        if ticket_id is not None and len(ticket_id) > MAX_TICKET_ID_LENGTH:
            raise ValidationException(
                f"Ticket id exceeds {MAX_TICKET_ID_LENGTH} characters",
                {"field": "id", "max_length": MAX_TICKET_ID_LENGTH}
            )

        return Ticket(
            id=ticket_id or self._new_ticket_id(),
            title=title.strip(),
            description=description.strip(),
            department=department,
            priority=Priority(priority),
            business_critical=business_critical,
            submitted_at=as_utc(submitted_at) if submitted_at else self._clock(),
            submitted_by=submitted_by,
        )

    # ========== Analysis ==========

    async def _within_budget(self, stage: str, budget: float, work: Awaitable):
        try:
            return await asyncio.wait_for(work, timeout=budget)
        except asyncio.TimeoutError as e:
            raise TimeoutDegradedException(stage, budget) from e

    async def _classify(self, ticket: Ticket, policy: EnginePolicy) -> ClassificationResult:
        try:
            with log_latency(logger, "classification", ticket_id=ticket.id):
                return await self._within_budget(
                    "classification",
                    self._classification_timeout,
                    self._classifier.classify(ticket.title, ticket.description, policy=policy),
                )
        except (TimeoutDegradedException, CorpusUnavailableException) as e:
            logger.warning(
                "Classification degraded",
                extra={"ticket_id": ticket.id, "error_code": e.error_code, "reason": e.message}
            )
            return ClassificationResult.degraded(OTHER_CATEGORY, e.message)

    async def _search(self, ticket: Ticket, policy: EnginePolicy) -> SimilarityResult:
        try:
            with log_latency(logger, "similarity_search", ticket_id=ticket.id):
                return await self._within_budget(
                    "similarity search",
                    self._similarity_timeout,
                    self._similarity.search(ticket, policy=policy),
                )
        except (TimeoutDegradedException, CorpusUnavailableException) as e:
            logger.warning(
                "Similarity search degraded",
                extra={"ticket_id": ticket.id, "error_code": e.error_code, "reason": e.message}
            )
            return SimilarityResult.degraded(e.message)

    async def _analyze(self, ticket: Ticket, produced_at: datetime) -> Analysis:
        """Run the read-only pipeline against one policy snapshot."""
        policy = self._policy_provider()

        classification, similarity = await asyncio.gather(
            self._classify(ticket, policy),
            self._search(ticket, policy),
        )
        risk = RiskAssessor.from_policy(policy).assess(ticket, similarity)
        decision = DecisionPolicy.from_policy(policy).decide(
            classification,
            similarity,
            risk,
            ticket.business_critical,
            ticket_id=ticket.id,
            produced_at=produced_at,
        )
        return Analysis(classification, similarity, risk, decision)

    # ========== Operations ==========

    async def submit(
        self,
        title: str,
        description: str,
        department: str,
        priority: str = Priority.MEDIUM.value,
        business_critical: bool = False,
        ticket_id: Optional[str] = None,
        submitted_by: Optional[str] = None,
        submitted_at: Optional[datetime] = None,
    ) -> DecisionRecord:
        """
        Decide a ticket.

        Idempotent per ticket id: a ticket that already has a decision gets
        that decision back and no new audit entry is written.

        Raises:
            ValidationException: Malformed submission, nothing recorded
            ServiceUnavailableException: Audit append failed, ticket left
                undecided
        """
        ticket = self._build_ticket(
            title, description, department, getattr(priority, "value", priority),
            business_critical, ticket_id, submitted_by, submitted_at,
        )

        async with self._locks.lock_for(ticket.id):
            existing = await self._existing_decision(ticket.id)
            if existing is not None:
                logger.info(
                    "Returning existing decision",
                    extra={"ticket_id": ticket.id, "final_action": existing.final_action.value}
                )
                return existing

            logger.info(
                "Ticket submitted",
                extra={"ticket_id": ticket.id, "priority": ticket.priority.value,
                       "business_critical": ticket.business_critical}
            )
            await self._tickets.save(ticket)

            analysis = await self._analyze(ticket, self._clock())
            decision = analysis.decision
            ticket.category = decision.category
            ticket.transition_to(TicketStatus.CLASSIFIED, decision.produced_at)

            final_status, audit_action = decision_outcome(decision)
            try:
                await self._audit.record(
                    ticket.id,
                    audit_action,
                    self._actor,
                    decision.decision_path[-1],
                    payload={"decision": decision.to_dict()},
                )
            except AuditWriteException as e:
                raise ServiceUnavailableException(
                    "Decision could not be audited; resubmit the ticket",
                    details={"ticket_id": ticket.id}
                ) from e

            await self._finalize(ticket, decision, final_status)

        logger.info(
            "Decision produced",
            extra={
                "ticket_id": ticket.id,
                "final_action": decision.final_action.value,
                "category": decision.category,
                "confidence": decision.confidence,
                "similarity_score": decision.similarity_score,
                "sla_risk": decision.sla_risk.value,
                "rsi_score": decision.rsi_score,
            }
        )
        return decision

    async def _existing_decision(self, ticket_id: str) -> Optional[DecisionRecord]:
        """
        Return the stored decision, or rebuild it from its audit entry when
        an earlier attempt stopped after auditing.
        """
        decision = await self._decisions.get(ticket_id)
        if decision is not None:
            return decision

        entries = await self._audit.query_by_ticket(ticket_id)
        audited = next((e for e in entries if e.is_decision and "decision" in e.payload), None)
        if audited is None:
            return None

        decision = DecisionRecord.from_dict(audited.payload["decision"])
        logger.warning("Recovering decision from audit log", extra={"ticket_id": ticket_id})

        ticket = await self._tickets.get(ticket_id)
        if ticket is not None and ticket.status in (TicketStatus.SUBMITTED, TicketStatus.CLASSIFIED):
            ticket.category = decision.category
            if ticket.status == TicketStatus.SUBMITTED:
                ticket.transition_to(TicketStatus.CLASSIFIED, decision.produced_at)
            final_status, _ = decision_outcome(decision)
            await self._finalize(ticket, decision, final_status)
        else:
            await self._decisions.save(decision)
        return decision

    async def _finalize(self, ticket: Ticket, decision: DecisionRecord, final_status: TicketStatus) -> None:
        await self._decisions.save(decision)
        ticket.transition_to(final_status, decision.produced_at)
        if decision.is_auto_resolved:
            ticket.mark_resolved(decision.suggested_resolution, decision.produced_at)
        await self._tickets.save(ticket)

        if decision.is_auto_resolved and decision.suggested_resolution:
            await self._grow_corpus(ticket)

    async def record_human_action(
        self,
        ticket_id: str,
        action: str,
        actor: str,
        details: Optional[str] = None,
    ) -> Ticket:
        """
        Apply a reviewer's action to a ticket awaiting review.

        Raises:
            ValidationException: Unknown action or missing actor
            ResourceNotFoundException: Unknown ticket
            InvalidTransitionException: Ticket is not awaiting review
            ServiceUnavailableException: Audit append failed, nothing changed
        """
        try:
            human_action = HumanAction(getattr(action, "value", action))
        except ValueError:
            raise ValidationException(
                f"Unknown action '{action}'",
                {"field": "action", "allowed": [a.value for a in HumanAction]}
            )
        if not actor or not actor.strip():
            raise ValidationException("Actor must not be empty", {"field": "actor"})

        target_status, audit_action = HUMAN_ACTION_OUTCOMES[human_action]

        async with self._locks.lock_for(ticket_id):
            ticket = await self._tickets.get(ticket_id)
            if ticket is None:
                raise ResourceNotFoundException("Ticket", ticket_id)
            previous_status = ticket.status
            if not ticket.is_awaiting_review:
                raise InvalidTransitionException(ticket_id, previous_status.value, target_status.value)

            decision = await self._decisions.get(ticket_id)
            if human_action == HumanAction.APPROVE:
                resolution = decision.suggested_resolution if decision else None
            else:
                resolution = details.strip() if details and details.strip() else None

            try:
                await self._audit.record(
                    ticket_id,
                    audit_action,
                    actor.strip(),
                    self._action_details(human_action, actor.strip(), details),
                    payload={"previous_status": previous_status.value, "resolution": resolution},
                )
            except AuditWriteException as e:
                raise ServiceUnavailableException(
                    "Human action could not be audited; retry the action",
                    details={"ticket_id": ticket_id}
                ) from e

            now = self._clock()
            ticket.transition_to(target_status, now)
            ticket.mark_resolved(resolution, now)
            await self._tickets.save(ticket)

            if resolution:
                await self._grow_corpus(ticket)

        logger.info(
            "Human action recorded",
            extra={"ticket_id": ticket_id, "action": human_action.value,
                   "status": ticket.status.value}
        )
        return ticket

    @staticmethod
    def _action_details(action: HumanAction, actor: str, details: Optional[str]) -> str:
        if action == HumanAction.APPROVE:
            text = f"Engine decision approved by {actor}"
        elif action == HumanAction.MODIFY:
            text = f"Resolution modified by {actor}"
        else:
            text = f"Engine decision overridden by {actor}"
        if details and details.strip():
            text += f": {details.strip()}"
        return text

    async def _grow_corpus(self, ticket: Ticket) -> None:
        """Append a resolved ticket to the corpus; failures are logged, not raised."""
        entry = CorpusEntry(
            id=f"{ticket.id}-{uuid4().hex[:CORPUS_SUFFIX_LENGTH]}",
            title=ticket.title,
            description=ticket.description,
            category=ticket.category or OTHER_CATEGORY,
            resolution=ticket.resolution,
            resolved_at=ticket.resolved_at,
            department=ticket.department,
            priority=ticket.priority,
            source_ticket_id=ticket.id,
        )
        try:
            async with self._corpus_lock:
                await self._corpus.append(entry)
        except RepositoryException as e:
            logger.error(
                "Corpus append failed",
                extra={"ticket_id": ticket.id, "error_code": e.error_code, "error": e.message}
            )
            return
        logger.info("Corpus grown", extra={"ticket_id": ticket.id, "corpus_entry_id": entry.id})

    # ========== Queries ==========

    async def get_decision(self, ticket_id: str) -> DecisionRecord:
        decision = await self._decisions.get(ticket_id)
        if decision is None:
            raise ResourceNotFoundException("Decision", ticket_id)
        return decision

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._tickets.get(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    async def list_tickets(
        self,
        status: Union[str, Iterable[str], None] = None,
        category: Optional[str] = None,
        query: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[TicketListing]:
        """
        Stored tickets, most recently submitted first.

        ``status`` takes one status or several (the review queue is
        ``pending_review`` plus ``escalated``). ``query`` matches a
        case-insensitive substring of the id, title or department.

        Raises:
            ValidationException: Unknown status or non-positive limit
        """
        if isinstance(status, (str, TicketStatus)):
            status = [status]
        try:
            statuses = {TicketStatus(getattr(s, "value", s)) for s in status} if status else None
        except ValueError:
            raise ValidationException(
                f"Unknown status in {list(status)}",
                {"field": "status", "allowed": [s.value for s in TicketStatus]}
            )
        if limit is not None and limit < 1:
            raise ValidationException("Limit must be positive", {"field": "limit"})
        needle = query.strip().lower() if query and query.strip() else None

        tickets = [
            t for t in await self._tickets.list_all()
            if (statuses is None or t.status in statuses)
            and (category is None or t.category == category)
            and (needle is None or any(
                needle in value.lower() for value in (t.id, t.title, t.department)
            ))
        ]
        tickets.sort(key=lambda t: (t.submitted_at, t.id), reverse=True)
        if limit is not None:
            tickets = tickets[:limit]

        decisions = {d.ticket_id: d for d in await self._decisions.list_all()} if tickets else {}
        return [TicketListing(t, decisions.get(t.id)) for t in tickets]

    async def audit_log(self, ticket_id: str) -> List[AuditLogEntry]:
        """Ordered audit entries for a ticket."""
        entries = await self._audit.query_by_ticket(ticket_id)
        if not entries and await self._tickets.get(ticket_id) is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return entries

    async def analytics_summary(self) -> AnalyticsSummary:
        return await self._analytics.summary()

    async def preview(
        self,
        title: str,
        description: str,
        department: str,
        priority: str = Priority.MEDIUM.value,
        business_critical: bool = False,
    ) -> Analysis:
        """Analyze a ticket without storing or auditing anything."""
        ticket = self._build_ticket(
            title, description, department, getattr(priority, "value", priority),
            business_critical, PREVIEW_TICKET_ID, None, None,
        )
        return await self._analyze(ticket, self._clock())

    async def add_corpus_entry(
        self,
        title: str,
        description: str,
        category: str,
        resolution: str,
        department: Optional[str] = None,
        priority: str = Priority.MEDIUM.value,
        resolved_at: Optional[datetime] = None,
    ) -> CorpusEntry:
        """
        Append a resolved ticket supplied by an operator or seed script.

        Raises:
            ValidationException: Empty title or resolution, unknown category
                or priority
        """
        known = set(self._policy_provider().category_names) | {OTHER_CATEGORY}
        if not title or not title.strip():
            raise ValidationException("Corpus entry title must not be empty", {"field": "title"})
        if len(title.strip()) > TITLE_MAX_LENGTH:
            raise ValidationException(
                f"Corpus entry title exceeds {TITLE_MAX_LENGTH} characters",
                {"field": "title", "max_length": TITLE_MAX_LENGTH}
            )
        if not resolution or not resolution.strip():
            raise ValidationException("Corpus entry resolution must not be empty", {"field": "resolution"})
        if category not in known:
            raise ValidationException(
                f"Unknown category '{category}'", {"field": "category", "allowed": sorted(known)}
            )
        priority = getattr(priority, "value", priority)
        if priority not in VALID_PRIORITIES:
            raise ValidationException(f"Unknown priority '{priority}'", {"field": "priority"})

        entry = CorpusEntry(
            id=f"KB-{uuid4().hex[:10].upper()}",
            title=title.strip(),
            description=(description or "").strip(),
            category=category,
            resolution=resolution.strip(),
            resolved_at=as_utc(resolved_at) if resolved_at else self._clock(),
            department=department,
            priority=Priority(priority),
        )
        async with self._corpus_lock:
            await self._corpus.append(entry)
        logger.info("Corpus entry added", extra={"corpus_entry_id": entry.id, "category": category})
        return entry

    async def corpus_size(self) -> int:
        return await self._corpus.count()
