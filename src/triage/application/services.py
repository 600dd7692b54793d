"""
Triage Application Services
============================

Application services for the triage decision engine.

Defines the repository and capability interfaces the engine depends on and
the default implementations of the swappable capabilities:

- KeywordClassifier: weighted term overlap against ordered category profiles
- KeywordSimilarityIndex: cosine similarity over bag-of-words vectors
- AuditLogger: ordered, retried audit appends
- AnalyticsService: read-only projection over stored decisions
"""

import asyncio
import heapq
import math
import weakref
from abc import ABC, abstractmethod
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional
from uuid import uuid4

from src.config import OTHER_CATEGORY, AuditAction
from src.core import AuditWriteException, RepositoryException
from src.shared.infrastructure.logging import get_logger
from src.triage.domain import (
    AnalyticsSummary,
    AuditLogEntry,
    CategoryStats,
    ClassificationResult,
    CorpusEntry,
    DailyTrend,
    DecisionRecord,
    EnginePolicy,
    SimilarityResult,
    SimilarTicketRef,
    TextFeatures,
    Ticket,
)

logger = get_logger(__name__)

PolicyProvider = Callable[[], EnginePolicy]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ========== Repository Interfaces ==========

class ICorpusRepository(ABC):
    """Interface for the append-only corpus of resolved tickets."""

    @abstractmethod
    async def append(self, entry: CorpusEntry) -> CorpusEntry:
        """Append a resolved ticket. Entries are never updated."""

    @abstractmethod
    async def list_entries(self) -> List[CorpusEntry]:
        """Snapshot of all entries in append order."""

    @abstractmethod
    async def get(self, entry_id: str) -> Optional[CorpusEntry]:
        """Get entry by ID."""

    @abstractmethod
    async def count(self) -> int:
        """Number of entries."""


class IAuditLogRepository(ABC):
    """Interface for the append-only audit log."""

    @abstractmethod
    async def append(self, entry: AuditLogEntry) -> None:
        """Durably append an entry or raise AuditWriteException."""

    @abstractmethod
    async def query_by_ticket(self, ticket_id: str) -> List[AuditLogEntry]:
        """Entries for a ticket ordered by (timestamp, sequence)."""

    @abstractmethod
    async def last_for_ticket(self, ticket_id: str) -> Optional[AuditLogEntry]:
        """Most recent entry for a ticket."""


class IDecisionRepository(ABC):
    """Interface for decision record storage."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[DecisionRecord]:
        """Get the decision for a ticket."""

    @abstractmethod
    async def save(self, record: DecisionRecord) -> None:
        """Store a decision. At most one per ticket."""

    @abstractmethod
    async def list_all(self) -> List[DecisionRecord]:
        """All stored decisions."""


class ITicketRepository(ABC):
    """Interface for ticket storage."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def save(self, ticket: Ticket) -> None:
        """Insert or update a ticket."""

    @abstractmethod
    async def list_all(self) -> List[Ticket]:
        """All tickets."""


# ========== Capability Interfaces ==========

class IClassifier(ABC):
    """Maps ticket text to a category and a confidence score."""

    @abstractmethod
    async def classify(
        self,
        title: str,
        description: str,
        policy: Optional[EnginePolicy] = None
    ) -> ClassificationResult:
        """Classify a ticket. Read-only."""


class ISimilarityIndex(ABC):
    """Ranks corpus entries by similarity to a ticket."""

    @abstractmethod
    async def search(
        self,
        ticket: Ticket,
        k: Optional[int] = None,
        policy: Optional[EnginePolicy] = None
    ) -> SimilarityResult:
        """Top-k similar corpus entries and their aggregate similarity."""


# ========== Shared Helpers ==========

class KeyedLocks:
    """
    One asyncio.Lock per key, dropped once nobody holds a reference.

    Serializes work on the same ticket while different tickets proceed
    concurrently.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


class CorpusFeatureCache:
    """Text features per corpus entry; entries are immutable so ids are stable keys."""

    def __init__(self):
        self._features: Dict[str, TextFeatures] = {}

    def features(self, entry: CorpusEntry) -> TextFeatures:
        cached = self._features.get(entry.id)
        if cached is None:
            cached = TextFeatures.from_text(entry.title, entry.description)
            self._features[entry.id] = cached
        return cached

    def __len__(self) -> int:
        return len(self._features)


# ========== Classifier ==========

class KeywordClassifier(IClassifier):
    """
    Keyword classifier over the ordered category profiles.

    Each profile's strength is the summed weight of its terms present in the
    ticket, with title hits multiplied by ``title_weight``. Strength maps to
    a 0-100 score via ``100 * s / (s + saturation)``. The highest strength
    wins; on equal strength the profile listed first wins. Confidence is the
    winning score diluted by competing profiles, plus a small bonus for
    corpus entries of the same category sharing the matched terms.
    """

    def __init__(
        self,
        corpus: ICorpusRepository,
        policy_provider: PolicyProvider,
        feature_cache: Optional[CorpusFeatureCache] = None
    ):
        self._corpus = corpus
        self._policy_provider = policy_provider
        self._cache = feature_cache or CorpusFeatureCache()

    async def classify(
        self,
        title: str,
        description: str,
        policy: Optional[EnginePolicy] = None
    ) -> ClassificationResult:
        policy = policy or self._policy_provider()
        tunables = policy.classifier
        features = TextFeatures.from_text(title, description)
        title_terms = features.title_terms
        body_terms = features.body_terms

        scored = []
        for profile in policy.category_profiles:
            strength = 0.0
            matched = set()
            for term, weight in profile.terms.items():
                if term in title_terms:
                    strength += weight * tunables.title_weight
                    matched.add(term)
                elif term in body_terms:
                    strength += weight
                    matched.add(term)
            scored.append((profile.name, strength, frozenset(matched)))

        # Strictly greater, so earlier profiles win ties
        best = 0
        for index in range(1, len(scored)):
            if scored[index][1] > scored[best][1]:
                best = index
        category, strength, matched = scored[best]

        top_score = 100 * strength / (strength + tunables.saturation)
        if top_score < tunables.min_score:
            return ClassificationResult(
                category=OTHER_CATEGORY,
                confidence=min(tunables.other_confidence_cap, round(top_score)),
                matched_keywords=matched,
            )

        competing = sum(s for i, (_, s, _) in enumerate(scored) if i != best)
        share = strength / (strength + tunables.ambiguity_weight * competing)
        bonus = await self._corpus_agreement(category, matched, policy)

        return ClassificationResult(
            category=category,
            confidence=min(100, round(top_score * share) + bonus),
            matched_keywords=matched,
        )

    async def _corpus_agreement(
        self,
        category: str,
        matched: frozenset,
        policy: EnginePolicy
    ) -> int:
        tunables = policy.classifier
        if tunables.corpus_bonus_cap == 0:
            return 0

        agreeing = 0
        for entry in await self._corpus.list_entries():
            if entry.category != category:
                continue
            shared = matched & self._cache.features(entry).terms
            if len(shared) >= tunables.corpus_min_shared_terms:
                agreeing += 1
                if agreeing >= tunables.corpus_bonus_cap:
                    break
        return agreeing


# ========== Similarity Index ==========

def _cosine(a: Counter, b: Counter, b_norm: Optional[float] = None) -> float:
    if not a or not b:
        return 0.0
    if len(a) > len(b):
        a, b = b, a
    dot = sum(weight * b[token] for token, weight in a.items() if token in b)
    if dot == 0:
        return 0.0
    norm_a = math.sqrt(sum(w * w for w in a.values()))
    norm_b = b_norm if b_norm is not None else math.sqrt(sum(w * w for w in b.values()))
    return dot / (norm_a * norm_b)


class KeywordSimilarityIndex(ISimilarityIndex):
    """
    Cosine similarity between bag-of-words vectors of ticket text.

    Independent of the classification, so it can run alongside the
    classifier against the same corpus snapshot.
    """

    def __init__(
        self,
        corpus: ICorpusRepository,
        policy_provider: PolicyProvider,
        feature_cache: Optional[CorpusFeatureCache] = None
    ):
        self._corpus = corpus
        self._policy_provider = policy_provider
        self._cache = feature_cache or CorpusFeatureCache()

    def iter_ranked(
        self,
        title: str,
        description: str,
        entries: Iterable[CorpusEntry],
        policy: EnginePolicy
    ) -> Iterator[SimilarTicketRef]:
        """
        Lazily score every entry, yielding those above the similarity floor.

        Unordered and finite: one pass over ``entries``. Call again to
        restart.
        """
        tunables = policy.similarity
        query = TextFeatures.from_text(title, description).vector(tunables.title_weight)
        if not query:
            return
        query_norm = math.sqrt(sum(w * w for w in query.values()))

        for entry in entries:
            vector = self._cache.features(entry).vector(tunables.title_weight)
            score = round(100 * _cosine(vector, query, query_norm))
            if score > 0 and score >= tunables.min_score:
                yield SimilarTicketRef(
                    id=entry.id,
                    similarity=min(100, score),
                    title=entry.title,
                    resolution=entry.resolution,
                    resolved_at=entry.resolved_at,
                    category=entry.category,
                )

    async def search(
        self,
        ticket: Ticket,
        k: Optional[int] = None,
        policy: Optional[EnginePolicy] = None
    ) -> SimilarityResult:
        policy = policy or self._policy_provider()
        k = k or policy.similarity.top_k
        entries = await self._corpus.list_entries()

        # Highest similarity first; more recently resolved wins ties
        top = heapq.nlargest(
            k,
            self.iter_ranked(ticket.title, ticket.description, entries, policy),
            key=lambda ref: (ref.similarity, ref.resolved_at, ref.id),
        )
        return SimilarityResult.from_matches(top)


# ========== Audit Logger ==========

class AuditLogger:
    """
    Appends audit entries with a strict per-ticket order.

    Appends for one ticket are serialized; timestamps are made strictly
    increasing per ticket and every entry carries a sequence number. Failed
    appends are retried with linear backoff, then AuditWriteException is
    raised.
    """

    def __init__(
        self,
        repository: IAuditLogRepository,
        retries: int = 3,
        backoff_seconds: float = 0.05,
        clock: Callable[[], datetime] = utc_now
    ):
        self._repository = repository
        self._retries = max(1, retries)
        self._backoff = backoff_seconds
        self._clock = clock
        self._locks = KeyedLocks()

    async def record(
        self,
        ticket_id: str,
        action: AuditAction,
        actor: str,
        details: str,
        payload: Optional[Dict[str, Any]] = None
    ) -> AuditLogEntry:
        """Build the next entry for a ticket and append it."""
        async with self._locks.lock_for(ticket_id):
            last = await self._repository.last_for_ticket(ticket_id)
            timestamp = self._clock()
            sequence = 0
            if last is not None:
                if timestamp <= last.timestamp:
                    timestamp = last.timestamp + timedelta(microseconds=1)
                sequence = last.sequence + 1

            entry = AuditLogEntry(
                id=str(uuid4()),
                ticket_id=ticket_id,
                action=action,
                actor=actor,
                timestamp=timestamp,
                details=details,
                sequence=sequence,
                payload=payload or {},
            )
            await self.append(entry)
            return entry

    async def append(self, entry: AuditLogEntry) -> None:
        """
        Durably append an entry.

        Raises:
            AuditWriteException: If every attempt failed
        """
        for attempt in range(1, self._retries + 1):
            try:
                await self._repository.append(entry)
                return
            except RepositoryException as e:
                if attempt == self._retries:
                    logger.error(
                        "Audit append failed, retries exhausted",
                        extra={"ticket_id": entry.ticket_id, "attempts": attempt, "error": e.message}
                    )
                    raise AuditWriteException(
                        f"Audit append for ticket {entry.ticket_id} failed after {attempt} attempts",
                        details={"ticket_id": entry.ticket_id, "attempts": attempt}
                    ) from e
                logger.warning(
                    "Audit append failed, retrying",
                    extra={"ticket_id": entry.ticket_id, "attempt": attempt, "error": e.message}
                )
                await asyncio.sleep(self._backoff * attempt)

    async def query_by_ticket(self, ticket_id: str) -> List[AuditLogEntry]:
        return await self._repository.query_by_ticket(ticket_id)


# ========== Analytics ==========

CONFIDENCE_BUCKETS = [
    ("90-100", 90),
    ("80-89", 80),
    ("70-79", 70),
    ("60-69", 60),
    ("50-59", 50),
    ("<50", 0),
]


def confidence_bucket(confidence: int) -> str:
    for label, floor in CONFIDENCE_BUCKETS:
        if confidence >= floor:
            return label
    return CONFIDENCE_BUCKETS[-1][0]


TREND_DAYS = 7


def trend_window(now: datetime, days: int = TREND_DAYS) -> Dict[date, DailyTrend]:
    """Empty per-day buckets for the last ``days`` UTC days, oldest first."""
    today = as_utc(now).date()
    return {
        today - timedelta(days=offset): DailyTrend(day=today - timedelta(days=offset))
        for offset in range(days - 1, -1, -1)
    }


class AnalyticsService:
    """Aggregates stored decisions into the dashboard summary."""

    def __init__(
        self,
        decisions: IDecisionRepository,
        tickets: ITicketRepository,
        policy_provider: PolicyProvider,
        clock: Callable[[], datetime] = utc_now
    ):
        self._decisions = decisions
        self._tickets = tickets
        self._policy_provider = policy_provider
        self._clock = clock

    async def summary(self) -> AnalyticsSummary:
        decisions = await self._decisions.list_all()
        tickets = {t.id: t for t in await self._tickets.list_all()}
        return self.summarize(decisions, tickets, self._policy_provider(), self._clock())

    @staticmethod
    def summarize(
        decisions: List[DecisionRecord],
        tickets: Dict[str, Ticket],
        policy: EnginePolicy,
        now: datetime
    ) -> AnalyticsSummary:
        """
        Pure aggregation over decisions and their tickets.

        A ticket complies with its SLA when it was resolved before its
        priority's resolution target, or is still open and within it. The
        weekly trend counts decisions by the UTC day they were produced.
        """
        total = len(decisions)
        distribution = {label: 0 for label, _ in CONFIDENCE_BUCKETS}
        categories: Dict[str, CategoryStats] = {}
        auto_resolved = escalated = pending = compliant = 0
        confidence_sum = 0
        trend = trend_window(now)

        for record in decisions:
            ticket = tickets.get(record.ticket_id)
            confidence_sum += record.confidence
            distribution[confidence_bucket(record.confidence)] += 1

            stats = categories.setdefault(record.category, CategoryStats(name=record.category))
            stats.count += 1
            day = trend.get(as_utc(record.produced_at).date())
            if record.is_auto_resolved:
                auto_resolved += 1
                stats.auto_resolved += 1
                if day is not None:
                    day.auto_resolved += 1
            else:
                escalated += 1
                if day is not None:
                    day.escalated += 1

            if ticket is None:
                compliant += 1
                continue
            if ticket.is_awaiting_review:
                pending += 1

            deadline = ticket.submitted_at + timedelta(
                minutes=policy.get_sla_minutes(ticket.priority)
            )
            finished_at = ticket.resolved_at or now
            if finished_at <= deadline:
                compliant += 1

        breakdown = sorted(categories.values(), key=lambda s: (-s.count, s.name))

        return AnalyticsSummary(
            total_tickets=total,
            auto_resolved=auto_resolved,
            escalated=escalated,
            pending_review=pending,
            avg_confidence=round(confidence_sum / total, 1) if total else 0.0,
            auto_resolve_rate=round(100 * auto_resolved / total, 1) if total else 0.0,
            sla_compliance=round(100 * compliant / total, 1) if total else 100.0,
            category_breakdown=breakdown,
            confidence_distribution=distribution,
            weekly_trend=list(trend.values()),
        )
