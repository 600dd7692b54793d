"""
Tests for SLA risk and the Resolution Stability Index.
"""

import itertools
from datetime import datetime, timezone

import pytest

from src.config import Priority, SLARisk
from src.triage.domain import (
    SLA_RISK_TABLE,
    EnginePolicy,
    RiskAssessor,
    ScopeLevel,
    SimilarityResult,
    SimilarTicketRef,
    Ticket,
)


def make_ticket(title="Laptop battery drains fast", description="Battery lasts an hour",
                department="Finance", priority=Priority.MEDIUM, business_critical=False) -> Ticket:
    return Ticket(
        id="TF-RISK",
        title=title,
        description=description,
        department=department,
        priority=priority,
        business_critical=business_critical,
        submitted_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
    )


def ref(ref_id: str, similarity: int, category: str = "Password Reset") -> SimilarTicketRef:
    return SimilarTicketRef(
        id=ref_id,
        similarity=similarity,
        title="Reset password",
        resolution="Reset via console",
        resolved_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        category=category,
    )


@pytest.fixture
def assessor(policy) -> RiskAssessor:
    return RiskAssessor.from_policy(policy)


class TestSLARiskTable:
    def test_covers_every_combination(self):
        combos = set(itertools.product([True, False], list(Priority), list(ScopeLevel)))
        assert set(SLA_RISK_TABLE) == combos

    @pytest.mark.parametrize("priority", list(Priority))
    def test_business_critical_is_always_high(self, priority):
        for scope in ScopeLevel:
            assert SLA_RISK_TABLE[(True, priority, scope)] == SLARisk.HIGH

    def test_low_only_without_scope_signals(self):
        low = [key for key, risk in SLA_RISK_TABLE.items() if risk == SLARisk.LOW]
        assert low
        assert all(scope == ScopeLevel.NONE and not critical for critical, _, scope in low)


class TestScopeSignals:
    def test_plain_ticket_has_no_signals(self, assessor):
        assert assessor.scope_signals(make_ticket()) == []

    def test_scope_phrase_detected(self, assessor):
        ticket = make_ticket(title="Wi-Fi down for the entire office")
        assert assessor.scope_signals(ticket) == ["'entire office'"]

    def test_large_user_count_detected(self, assessor):
        ticket = make_ticket(description="The shared printer is broken for 25 people on our floor")
        assert assessor.scope_signals(ticket) == ["25 users affected"]

    def test_small_user_count_ignored(self, assessor):
        ticket = make_ticket(description="Two monitors broken, 3 users waiting")
        assert assessor.scope_signals(ticket) == []

    def test_wide_impact_department(self, assessor):
        ticket = make_ticket(department="Security")
        assert assessor.scope_signals(ticket) == ["Security department"]

    def test_phrase_must_be_whole_words(self, assessor):
        ticket = make_ticket(description="Reproduction steps attached")
        assert assessor.scope_signals(ticket) == []


class TestAssess:
    def test_medium_priority_without_scope_is_low(self, assessor):
        assert assessor.assess(make_ticket(), SimilarityResult()).sla_risk == SLARisk.LOW

    def test_scope_raises_medium_priority_risk(self, assessor):
        ticket = make_ticket(description="Outage affecting everyone in accounts payable")
        risk = assessor.assess(ticket, SimilarityResult())

        assert risk.sla_risk == SLARisk.MEDIUM
        assert risk.scope_signals == ("'everyone'", "'outage'")

    def test_business_critical_low_priority_is_high(self, assessor):
        ticket = make_ticket(priority=Priority.LOW, business_critical=True)
        assert assessor.assess(ticket, SimilarityResult()).sla_risk == SLARisk.HIGH


class TestRSI:
    def test_no_matches_gives_baseline(self, assessor, policy):
        assert assessor.rsi_score(SimilarityResult()) == round(policy.rsi.baseline)

    def test_higher_similarity_never_lowers_rsi(self, assessor):
        scores = [
            assessor.rsi_score(SimilarityResult.from_matches([ref("KB-1", s), ref("KB-2", s)]))
            for s in (30, 50, 70, 90)
        ]
        assert scores == sorted(scores)
        assert scores[0] < scores[-1]

    def test_consistent_history_scores_higher(self, assessor):
        consistent = SimilarityResult.from_matches([ref("KB-1", 80), ref("KB-2", 80)])
        mixed = SimilarityResult.from_matches([
            ref("KB-1", 80), ref("KB-2", 80, category="Email Issue"),
        ])
        assert assessor.rsi_score(consistent) > assessor.rsi_score(mixed)

    def test_spread_of_scores_lowers_rsi(self, assessor):
        tight = SimilarityResult(matches=(ref("KB-1", 70), ref("KB-2", 70)), aggregate=70)
        spread = SimilarityResult(matches=(ref("KB-1", 100), ref("KB-2", 40)), aggregate=70)
        assert assessor.rsi_score(tight) > assessor.rsi_score(spread)

    def test_rsi_is_clamped(self, assessor):
        matches = [ref(f"KB-{i}", 100) for i in range(20)]
        assert assessor.rsi_score(SimilarityResult.from_matches(matches)) == 100

    @pytest.mark.parametrize("others", [
        [50, 50, 50, 50],
        [20, 20, 20, 20],
        [20, 40, 60, 80],
        [95, 90, 30, 25],
    ])
    def test_raising_one_match_never_lowers_rsi(self, assessor, others):
        def rsi_with(top: int) -> int:
            matches = [ref("KB-0", top)] + [ref(f"KB-{i}", s) for i, s in enumerate(others, 1)]
            return assessor.rsi_score(SimilarityResult.from_matches(matches))

        scores = [rsi_with(top) for top in range(20, 101)]

        assert all(a <= b for a, b in zip(scores, scores[1:]))

    def test_single_outlier_rise(self, assessor):
        lower = [ref("KB-1", 90)] + [ref(f"KB-{i}", 50) for i in range(2, 6)]
        higher = [ref("KB-1", 100)] + [ref(f"KB-{i}", 50) for i in range(2, 6)]

        assert assessor.rsi_score(SimilarityResult.from_matches(higher)) >= \
            assessor.rsi_score(SimilarityResult.from_matches(lower))


class TestRSIPolicyBounds:
    def test_default_weights_are_accepted(self):
        policy = EnginePolicy()
        assert policy.rsi.variance_weight * 2 <= policy.rsi.similarity_weight

    def test_spread_weight_above_bound_is_rejected(self):
        with pytest.raises(ValueError):
            EnginePolicy(rsi={"similarity_weight": 0.5, "variance_weight": 0.5})

    def test_bound_tightens_with_more_matches(self):
        EnginePolicy(similarity={"top_k": 2}, rsi={"variance_weight": 0.5})
        with pytest.raises(ValueError):
            EnginePolicy(similarity={"top_k": 10}, rsi={"variance_weight": 0.25})
