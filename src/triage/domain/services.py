"""
Triage Domain Services
======================

Pure domain services of the decision engine.

- RiskAssessor: SLA risk level from an explicit rule table plus the
  Resolution Stability Index from similarity results
- DecisionPolicy: the three ordered rules that produce the final action and
  its decision path

Neither service performs I/O or reads the clock; everything they need is
passed in, so identical inputs always give identical outputs.
"""

import re
import statistics
from collections import Counter
from datetime import datetime
from enum import Enum
from typing import Dict, List, Tuple

from src.config import FinalAction, Priority, SLARisk
from src.triage.domain.entities import (
    ClassificationResult,
    DecisionRecord,
    RiskAssessment,
    SimilarityResult,
    Ticket,
)
from src.triage.domain.value_objects import EnginePolicy, RSIPolicy, ScopePolicy


class ScopeLevel(str, Enum):
    """How widely a ticket's problem appears to reach."""
    NONE = "none"
    MODERATE = "moderate"


# Exhaustive: every (business_critical, priority, scope) combination has a row.
SLA_RISK_TABLE: Dict[Tuple[bool, Priority, ScopeLevel], SLARisk] = {
    (True, Priority.CRITICAL, ScopeLevel.MODERATE): SLARisk.HIGH,
    (True, Priority.CRITICAL, ScopeLevel.NONE): SLARisk.HIGH,
    (True, Priority.HIGH, ScopeLevel.MODERATE): SLARisk.HIGH,
    (True, Priority.HIGH, ScopeLevel.NONE): SLARisk.HIGH,
    (True, Priority.MEDIUM, ScopeLevel.MODERATE): SLARisk.HIGH,
    (True, Priority.MEDIUM, ScopeLevel.NONE): SLARisk.HIGH,
    (True, Priority.LOW, ScopeLevel.MODERATE): SLARisk.HIGH,
    (True, Priority.LOW, ScopeLevel.NONE): SLARisk.HIGH,
    (False, Priority.CRITICAL, ScopeLevel.MODERATE): SLARisk.HIGH,
    (False, Priority.CRITICAL, ScopeLevel.NONE): SLARisk.HIGH,
    (False, Priority.HIGH, ScopeLevel.MODERATE): SLARisk.MEDIUM,
    (False, Priority.HIGH, ScopeLevel.NONE): SLARisk.MEDIUM,
    (False, Priority.MEDIUM, ScopeLevel.MODERATE): SLARisk.MEDIUM,
    (False, Priority.MEDIUM, ScopeLevel.NONE): SLARisk.LOW,
    (False, Priority.LOW, ScopeLevel.MODERATE): SLARisk.MEDIUM,
    (False, Priority.LOW, ScopeLevel.NONE): SLARisk.LOW,
}

_USER_COUNT_RE = re.compile(
    r"\b(\d+)\s*\+?\s*(?:users|people|employees|staff|colleagues|machines|laptops|devices)\b"
)


def _clamp_score(value: float) -> int:
    return max(0, min(100, round(value)))


def rsi_label(rsi: int) -> str:
    if rsi >= 85:
        return "stable pattern"
    if rsi >= 60:
        return "partial pattern"
    if rsi >= 40:
        return "unstable pattern"
    return "no stable pattern"


class RiskAssessor:
    """
    Derives SLA risk and the Resolution Stability Index.

    SLA risk is a lookup in ``SLA_RISK_TABLE``; the scope level is extracted
    from the ticket text and department. RSI grows with aggregate similarity
    and with the number of matches that were resolved the same way, and
    shrinks with the spread of match scores.
    """

    def __init__(self, scope: ScopePolicy, rsi: RSIPolicy):
        self._scope = scope
        self._rsi = rsi
        self._phrase_patterns = [
            (phrase, re.compile(r"(?<![a-z0-9])" + re.escape(phrase.lower()) + r"(?![a-z0-9])"))
            for phrase in scope.phrases
        ]

    @classmethod
    def from_policy(cls, policy: EnginePolicy) -> "RiskAssessor":
        return cls(policy.scope, policy.rsi)

    def scope_signals(self, ticket: Ticket) -> List[str]:
        """Return the affected-scope signals found for the ticket, in a fixed order."""
        text = ticket.full_text.lower()
        signals = [f"'{phrase}'" for phrase, pattern in self._phrase_patterns if pattern.search(text)]

        counts = [int(m.group(1)) for m in _USER_COUNT_RE.finditer(text)]
        if counts and max(counts) >= self._scope.user_count_threshold:
            signals.append(f"{max(counts)} users affected")

        if ticket.department in self._scope.wide_impact_departments:
            signals.append(f"{ticket.department} department")
        return signals

    def sla_risk(self, ticket: Ticket, signals: List[str]) -> SLARisk:
        scope = ScopeLevel.MODERATE if signals else ScopeLevel.NONE
        return SLA_RISK_TABLE[(ticket.business_critical, Priority(ticket.priority), scope)]

    def rsi_score(self, similarity: SimilarityResult) -> int:
        """
        Compute the Resolution Stability Index from similarity results.

        Matches count as consistent when they share a category, falling back
        to identical resolution text when a match has no category.
        """
        policy = self._rsi
        if not similarity.matches:
            return _clamp_score(policy.baseline)

        groups = Counter(
            ref.category or ref.resolution.strip().lower() for ref in similarity.matches
        )
        consistent = max(groups.values())

        scores = [ref.similarity for ref in similarity.matches]
        spread = statistics.pstdev(scores) if len(scores) > 1 else 0.0

        # raw mean, not the rounded aggregate
        return _clamp_score(
            policy.baseline
            + policy.similarity_weight * statistics.fmean(scores)
            + policy.consistency_bonus * consistent
            - policy.variance_weight * spread
        )

    def assess(self, ticket: Ticket, similarity: SimilarityResult) -> RiskAssessment:
        signals = self.scope_signals(ticket)
        return RiskAssessment(
            sla_risk=self.sla_risk(ticket, signals),
            rsi_score=self.rsi_score(similarity),
            scope_signals=tuple(signals),
        )


class DecisionPolicy:
    """
    Ordered decision rules, first match wins.

    1. Business critical: escalate.
    2. Confidence, similarity and SLA risk all within thresholds: auto resolve.
    3. Otherwise: escalate.
    """

    def __init__(self, min_confidence: int = 80, min_similarity: int = 65):
        self.min_confidence = min_confidence
        self.min_similarity = min_similarity

    @classmethod
    def from_policy(cls, policy: EnginePolicy) -> "DecisionPolicy":
        return cls(policy.thresholds.min_confidence, policy.thresholds.min_similarity)

    def decide(
        self,
        classification: ClassificationResult,
        similarity: SimilarityResult,
        risk: RiskAssessment,
        business_critical: bool,
        *,
        ticket_id: str,
        produced_at: datetime,
    ) -> DecisionRecord:
        path = [
            f"Ticket classified: {classification.category} (conf: {classification.confidence}%)"
        ]
        if classification.degraded_reason:
            path.append(
                f"Degraded analysis: classification unavailable ({classification.degraded_reason}), "
                "confidence set to 0"
            )

        path.append(
            f"Similarity search: {similarity.match_count} matches found (avg: {similarity.aggregate}%)"
        )
        if similarity.degraded_reason:
            path.append(
                f"Degraded analysis: similarity search unavailable ({similarity.degraded_reason}), "
                "similarity set to 0"
            )

        risk_step = f"SLA risk assessed: {risk.sla_risk.value.upper()}"
        if risk.scope_signals:
            risk_step += f" (signals: {', '.join(risk.scope_signals)})"
        path.append(risk_step)
        path.append(f"Business critical: {'YES' if business_critical else 'NO'}")
        path.append(f"RSI score: {risk.rsi_score} ({rsi_label(risk.rsi_score)})")

        if business_critical:
            final_action = FinalAction.ESCALATE
            path.append("Business critical flag forces human review")
            path.append("Decision: ESCALATE TO HUMAN")
        else:
            failures = self._unmet_criteria(classification, similarity, risk)
            if not failures:
                final_action = FinalAction.AUTO_RESOLVE
                path.append(
                    f"Auto-resolve criteria met: confidence {classification.confidence}% >= "
                    f"{self.min_confidence}%, SLA risk low, similarity {similarity.aggregate}% >= "
                    f"{self.min_similarity}%"
                )
                path.append("Decision: AUTO RESOLVE")
            else:
                final_action = FinalAction.ESCALATE
                path.append(f"Auto-resolve criteria not met: {'; '.join(failures)}")
                path.append("Decision: ESCALATE TO HUMAN")

        return DecisionRecord(
            ticket_id=ticket_id,
            final_action=final_action,
            category=classification.category,
            confidence=classification.confidence,
            similarity_score=similarity.aggregate,
            sla_risk=risk.sla_risk,
            rsi_score=risk.rsi_score,
            business_critical=business_critical,
            decision_path=tuple(path),
            produced_at=produced_at,
            matched_keywords=tuple(sorted(classification.matched_keywords)),
            similar_tickets=similarity.matches,
            suggested_resolution=similarity.matches[0].resolution if similarity.matches else None,
        )

    def _unmet_criteria(
        self,
        classification: ClassificationResult,
        similarity: SimilarityResult,
        risk: RiskAssessment,
    ) -> List[str]:
        failures = []
        if classification.confidence < self.min_confidence:
            failures.append(f"confidence {classification.confidence}% < {self.min_confidence}%")
        if risk.sla_risk != SLARisk.LOW:
            failures.append(f"SLA risk {risk.sla_risk.value} is not low")
        if similarity.aggregate < self.min_similarity:
            failures.append(f"similarity {similarity.aggregate}% < {self.min_similarity}%")
        return failures
