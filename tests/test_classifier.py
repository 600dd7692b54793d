"""
Tests for the keyword classifier.
"""

import pytest

from conftest import SCENARIO_A
from src.config import OTHER_CATEGORY
from src.triage.application import KeywordClassifier
from src.triage.domain import EnginePolicy, TextFeatures, tokenize
from src.triage.infrastructure import InMemoryCorpusRepository


def classifier_for(policy: EnginePolicy, corpus=None) -> KeywordClassifier:
    return KeywordClassifier(corpus or InMemoryCorpusRepository(), lambda: policy)


class TestTokenize:
    def test_drops_stopwords_and_punctuation(self):
        assert tokenize("Cannot reset my Active Directory password!") == [
            "cannot", "reset", "active", "directory", "password",
        ]

    def test_hyphenated_words_become_one_token(self):
        assert tokenize("Wi-Fi keeps dropping") == ["wifi", "keep", "dropping"]

    def test_terms_include_bigrams(self):
        features = TextFeatures.from_text("Active Directory locked", "")
        assert "active directory" in features.terms
        assert "directory locked" in features.terms


class TestKeywordClassifier:
    async def test_password_reset_ticket_is_classified_confidently(self, policy):
        result = await classifier_for(policy).classify(SCENARIO_A["title"], SCENARIO_A["description"])

        assert result.category == "Password Reset"
        assert result.confidence >= 90
        assert {"password", "reset", "active directory"} <= result.matched_keywords
        assert result.degraded_reason is None

    async def test_corpus_agreement_adds_confidence(self, policy, corpus):
        without = await classifier_for(policy).classify(SCENARIO_A["title"], SCENARIO_A["description"])
        with_corpus = await classifier_for(policy, corpus).classify(
            SCENARIO_A["title"], SCENARIO_A["description"]
        )

        assert with_corpus.category == without.category
        assert without.confidence < with_corpus.confidence <= without.confidence + 5

    async def test_is_deterministic(self, policy, corpus):
        classifier = classifier_for(policy, corpus)
        first = await classifier.classify("VPN keeps disconnecting", "GlobalProtect tunnel drops hourly")
        second = await classifier.classify("VPN keeps disconnecting", "GlobalProtect tunnel drops hourly")

        assert first == second
        assert first.category == "VPN Problem"

    async def test_unmatched_text_falls_back_to_other(self, policy):
        result = await classifier_for(policy).classify("Coffee machine on third floor", "It makes noise")

        assert result.category == OTHER_CATEGORY
        assert result.confidence == 0

    async def test_weak_match_below_floor_is_other_with_capped_confidence(self):
        policy = EnginePolicy(classifier={"min_score": 90})

        result = await classifier_for(policy).classify("Question about laptop", "Where do I pick it up")

        assert result.category == OTHER_CATEGORY
        assert result.confidence == 55

    async def test_hyphenated_spelling_matches_profile(self, policy):
        result = await classifier_for(policy).classify("Wi-Fi keeps dropping in the east wing", "")

        assert result.category == "Network Issue"

    @pytest.mark.parametrize("order, expected", [
        (["Alpha", "Beta"], "Alpha"),
        (["Beta", "Alpha"], "Beta"),
    ])
    async def test_equal_scores_resolve_to_first_listed_profile(self, order, expected):
        policy = EnginePolicy(category_profiles=[
            {"name": name, "terms": {"widget": 1.0}} for name in order
        ])

        result = await classifier_for(policy).classify("Widget broken", "")

        assert result.category == expected

    async def test_competing_profiles_dilute_confidence(self, policy):
        clear = await classifier_for(policy).classify("Printer jammed", "")
        mixed = await classifier_for(policy).classify("Printer jammed", "The printer email alerts stopped")

        assert clear.category == mixed.category == "Hardware Failure"
        assert mixed.confidence < clear.confidence
