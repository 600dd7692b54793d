"""
Tests for the decision rules and the decision path.
"""

from datetime import datetime, timezone

import pytest

from src.config import FinalAction, SLARisk
from src.triage.domain import (
    ClassificationResult,
    DecisionPolicy,
    RiskAssessment,
    SimilarityResult,
    SimilarTicketRef,
)

PRODUCED_AT = datetime(2024, 2, 15, 9, 24, tzinfo=timezone.utc)


def similarity(score: int) -> SimilarityResult:
    if score == 0:
        return SimilarityResult()
    match = SimilarTicketRef(
        id="KB-006",
        similarity=score,
        title="Cannot reset my Active Directory password",
        resolution="Automated password reset triggered via LDAP.",
        resolved_at=datetime(2024, 2, 15, tzinfo=timezone.utc),
        category="Password Reset",
    )
    return SimilarityResult(matches=(match,), aggregate=score)


def decide(confidence=94, sim=86, risk=SLARisk.LOW, business_critical=False,
           category="Password Reset", rsi=68):
    return DecisionPolicy().decide(
        ClassificationResult(category, confidence, frozenset({"reset", "password"})),
        similarity(sim),
        RiskAssessment(risk, rsi),
        business_critical,
        ticket_id="TF-1001",
        produced_at=PRODUCED_AT,
    )


class TestDecisionRules:
    def test_all_criteria_met_auto_resolves(self):
        record = decide()

        assert record.final_action == FinalAction.AUTO_RESOLVE
        assert record.decision_path[-1] == "Decision: AUTO RESOLVE"
        assert record.suggested_resolution == "Automated password reset triggered via LDAP."
        assert record.matched_keywords == ("password", "reset")

    def test_thresholds_are_inclusive(self):
        assert decide(confidence=80, sim=65).final_action == FinalAction.AUTO_RESOLVE

    @pytest.mark.parametrize("overrides, reason", [
        ({"confidence": 79}, "confidence 79% < 80%"),
        ({"sim": 64}, "similarity 64% < 65%"),
        ({"risk": SLARisk.MEDIUM}, "SLA risk medium is not low"),
        ({"risk": SLARisk.HIGH}, "SLA risk high is not low"),
    ])
    def test_any_unmet_criterion_escalates(self, overrides, reason):
        record = decide(**overrides)

        assert record.final_action == FinalAction.ESCALATE
        assert record.decision_path[-1] == "Decision: ESCALATE TO HUMAN"
        assert reason in record.decision_path[-2]

    def test_all_unmet_criteria_are_listed(self):
        record = decide(confidence=40, sim=0, risk=SLARisk.MEDIUM)

        assert record.decision_path[-2] == (
            "Auto-resolve criteria not met: confidence 40% < 80%; "
            "SLA risk medium is not low; similarity 0% < 65%"
        )

    def test_business_critical_overrides_perfect_scores(self):
        record = decide(confidence=100, sim=100, business_critical=True)

        assert record.final_action == FinalAction.ESCALATE
        assert "Business critical flag forces human review" in record.decision_path

    def test_security_alert_with_low_similarity_escalates(self):
        record = decide(
            category="Security Alert", confidence=88, sim=29,
            risk=SLARisk.HIGH, business_critical=True, rsi=40,
        )

        assert record.final_action == FinalAction.ESCALATE
        assert record.similarity_score == 29
        assert record.decision_path[-2:] == (
            "Business critical flag forces human review",
            "Decision: ESCALATE TO HUMAN",
        )

    def test_custom_thresholds(self):
        strict = DecisionPolicy(min_confidence=95, min_similarity=90)
        record = strict.decide(
            ClassificationResult("Password Reset", 94),
            similarity(92),
            RiskAssessment(SLARisk.LOW, 80),
            False,
            ticket_id="TF-1001",
            produced_at=PRODUCED_AT,
        )

        assert record.final_action == FinalAction.ESCALATE
        assert "confidence 94% < 95%" in record.decision_path[-2]


class TestDecisionPath:
    def test_steps_are_in_order(self):
        record = decide()

        assert record.decision_path[:5] == (
            "Ticket classified: Password Reset (conf: 94%)",
            "Similarity search: 1 matches found (avg: 86%)",
            "SLA risk assessed: LOW",
            "Business critical: NO",
            "RSI score: 68 (partial pattern)",
        )

    def test_scope_signals_appear_in_risk_step(self):
        record = DecisionPolicy().decide(
            ClassificationResult("Network Issue", 90),
            similarity(70),
            RiskAssessment(SLARisk.MEDIUM, 60, ("'entire office'",)),
            False,
            ticket_id="TF-2001",
            produced_at=PRODUCED_AT,
        )

        assert "SLA risk assessed: MEDIUM (signals: 'entire office')" in record.decision_path

    def test_degraded_inputs_are_explained(self):
        record = DecisionPolicy().decide(
            ClassificationResult.degraded("Other", "classification exceeded its 2s latency budget"),
            SimilarityResult.degraded("Corpus could not be read"),
            RiskAssessment(SLARisk.LOW, 20),
            False,
            ticket_id="TF-3001",
            produced_at=PRODUCED_AT,
        )

        assert record.final_action == FinalAction.ESCALATE
        assert record.decision_path[1] == (
            "Degraded analysis: classification unavailable "
            "(classification exceeded its 2s latency budget), confidence set to 0"
        )
        assert record.decision_path[3] == (
            "Degraded analysis: similarity search unavailable "
            "(Corpus could not be read), similarity set to 0"
        )

    def test_same_inputs_give_identical_records(self):
        assert decide() == decide()
