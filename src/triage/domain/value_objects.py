"""
Triage Value Objects
====================

Immutable value objects for the triage domain.

- TextFeatures: normalized token/term view of ticket text shared by the
  classifier and the similarity index
- CategoryProfile: weighted trigger terms for one category
- EnginePolicy: every tunable threshold and coefficient of the engine,
  loaded from YAML and swapped atomically on reload
"""

import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from src.config import OTHER_CATEGORY, VALID_PRIORITIES


STOPWORDS = frozenset({
    "a", "about", "after", "also", "am", "an", "and", "any", "are", "as", "at",
    "be", "been", "before", "being", "but", "by", "can", "could", "did", "do",
    "does", "for", "from", "had", "has", "have", "he", "her", "his", "how",
    "i", "if", "in", "into", "is", "it", "its", "just", "me", "my", "no",
    "not", "of", "on", "or", "our", "please", "she", "should", "since", "so",
    "than", "that", "the", "their", "them", "then", "there", "these", "they",
    "this", "those", "through", "to", "too", "us", "very", "was", "we",
    "were", "what", "when", "which", "while", "who", "will", "with", "would",
    "you", "your", "all",
})

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def _stem(token: str) -> str:
    if len(token) > 3 and token.endswith("s") and not token.endswith(("ss", "us", "is")):
        return token[:-1]
    return token


def tokenize(text: str) -> List[str]:
    """
    Split text into normalized content tokens.

    Hyphens and apostrophes are dropped before splitting so "wi-fi" and
    "can't" become single tokens; stopwords and one-letter tokens are removed
    and plural "s" is stripped.
    """
    cleaned = text.lower().replace("-", "").replace("'", "")
    return [
        _stem(t) for t in _TOKEN_RE.findall(cleaned)
        if len(t) > 1 and t not in STOPWORDS
    ]


def extract_terms(tokens: List[str]) -> FrozenSet[str]:
    """Unigrams plus adjacent bigrams, so profile phrases like "active directory" match."""
    bigrams = {f"{a} {b}" for a, b in zip(tokens, tokens[1:])}
    return frozenset(tokens) | frozenset(bigrams)


def normalize_term(term: str) -> str:
    return " ".join(tokenize(term))


@dataclass(frozen=True)
class TextFeatures:
    """Token and term view of a ticket's title and description."""
    title_tokens: Tuple[str, ...]
    body_tokens: Tuple[str, ...]

    @classmethod
    def from_text(cls, title: str, description: str) -> "TextFeatures":
        return cls(tuple(tokenize(title)), tuple(tokenize(description)))

    @property
    def title_terms(self) -> FrozenSet[str]:
        return extract_terms(list(self.title_tokens))

    @property
    def body_terms(self) -> FrozenSet[str]:
        return extract_terms(list(self.body_tokens))

    @property
    def terms(self) -> FrozenSet[str]:
        return self.title_terms | self.body_terms

    def vector(self, title_weight: float) -> Counter:
        """Bag-of-words vector with title tokens weighted up."""
        vec: Counter = Counter()
        for token in self.title_tokens:
            vec[token] += title_weight
        for token in self.body_tokens:
            vec[token] += 1.0
        return vec


class CategoryProfile(BaseModel):
    """Weighted trigger terms for one ticket category."""
    name: str = Field(..., min_length=1)
    terms: Dict[str, float] = Field(..., description="Trigger term -> weight")

    @field_validator("terms")
    @classmethod
    def normalize_terms(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Normalize terms the same way ticket text is tokenized."""
        normalized: Dict[str, float] = {}
        for term, weight in v.items():
            if weight <= 0:
                raise ValueError(f"weight for '{term}' must be positive")
            key = normalize_term(term)
            if key:
                normalized[key] = max(weight, normalized.get(key, 0.0))
        if not normalized:
            raise ValueError("profile needs at least one usable term")
        return normalized


# Ordered by historical ticket volume, most common first. The order is the
# classifier's tie-break.
DEFAULT_CATEGORY_PROFILES: List[dict] = [
    {"name": "Password Reset", "terms": {
        "password": 2.0, "reset": 1.5, "active directory": 1.0, "ad": 1.0,
        "locked out": 1.5, "locked": 1.0, "unlock": 1.0, "expired": 1.0,
        "credential": 1.0, "forgot": 1.5, "reset link": 1.0, "passcode": 1.0,
        "login": 0.5,
    }},
    {"name": "Access Request", "terms": {
        "access": 1.5, "permission": 1.5, "request access": 1.5, "role": 1.0,
        "provision": 1.0, "provisioning": 1.0, "read-only": 1.0, "grant": 1.0,
        "shared drive": 1.0, "folder": 0.5, "sharepoint": 0.5, "salesforce": 0.5,
        "okta": 0.5,
    }},
    {"name": "Software Install", "terms": {
        "install": 2.0, "installation": 1.5, "software": 1.5, "license": 1.0,
        "upgrade": 1.0, "update": 0.5, "crash": 1.0, "crashes": 1.0,
        "application": 0.5, "app": 0.5,
    }},
    {"name": "Network Issue", "terms": {
        "network": 2.0, "wifi": 2.0, "wireless": 1.5, "internet": 1.5,
        "ethernet": 1.5, "connectivity": 1.5, "dns": 1.0, "dhcp": 1.0,
        "access point": 1.0, "router": 1.0, "latency": 1.0, "slow": 0.5,
    }},
    {"name": "VPN Problem", "terms": {
        "vpn": 3.0, "tunnel": 1.0, "tunneling": 1.0, "globalprotect": 1.0,
        "anyconnect": 1.0, "remote access": 1.0, "disconnect": 1.0, "drop": 0.5,
    }},
    {"name": "Email Issue", "terms": {
        "email": 2.0, "outlook": 1.5, "mailbox": 1.5, "exchange": 1.0,
        "inbox": 1.0, "calendar": 1.0, "attachment": 1.0, "spam": 1.0,
        "distribution list": 1.0,
    }},
    {"name": "Hardware Failure", "terms": {
        "hardware": 2.0, "laptop": 1.5, "printer": 1.5, "monitor": 1.0,
        "keyboard": 1.0, "mouse": 1.0, "battery": 1.0, "screen": 1.0,
        "macbook": 1.0, "dock": 1.0, "broken": 1.0, "device": 0.5,
    }},
    {"name": "Database Error", "terms": {
        "database": 2.5, "sql": 1.5, "postgresql": 1.5, "mysql": 1.5, "db": 1.5,
        "query": 1.0, "deadlock": 1.5, "replication": 1.0,
        "connection pool": 1.0, "cpu": 0.5,
    }},
    {"name": "Security Alert", "terms": {
        "security": 2.0, "breach": 2.0, "phishing": 2.0, "malware": 2.0,
        "ransomware": 2.0, "suspicious": 1.5, "hack": 1.5, "hacked": 1.5,
        "virus": 1.5, "compromised": 1.5, "unauthorized": 1.5, "mfa": 1.0,
        "login attempt": 1.0,
    }},
]


DEFAULT_SCOPE_PHRASES = [
    "entire office", "entire team", "entire company", "entire floor",
    "everyone", "all users", "all staff", "multiple users", "multiple teams",
    "company-wide", "office-wide", "production", "outage", "customer-facing",
]


class DecisionThresholds(BaseModel):
    """Rule 2 gates: auto-resolve only above these."""
    min_confidence: int = Field(default=80, ge=0, le=100)
    min_similarity: int = Field(default=65, ge=0, le=100)


class ClassifierPolicy(BaseModel):
    """Tunables of the keyword classifier."""
    title_weight: float = Field(default=1.5, ge=1.0, description="Multiplier for terms found in the title")
    saturation: float = Field(default=0.5, gt=0, description="Strength at which a profile scores 50")
    min_score: int = Field(default=40, ge=0, le=100, description="Floor below which the ticket is Other")
    other_confidence_cap: int = Field(default=55, ge=0, le=100)
    ambiguity_weight: float = Field(default=0.1, ge=0, description="How much competing profiles dilute confidence")
    corpus_bonus_cap: int = Field(default=5, ge=0, le=100)
    corpus_min_shared_terms: int = Field(default=2, ge=1)


class SimilarityPolicy(BaseModel):
    """Tunables of the similarity index."""
    top_k: int = Field(default=5, ge=1, le=50)
    min_score: int = Field(default=20, ge=0, le=100, description="Matches below this are not returned")
    title_weight: float = Field(default=2.0, ge=1.0)


class RSIPolicy(BaseModel):
    """
    Coefficients of the Resolution Stability Index.

    rsi = clamp(0, 100, baseline + similarity_weight * mean(match similarities)
                + consistency_bonus * consistent_matches
                - variance_weight * stdev(match similarities))

    Raising one match score moves the stdev by at most sqrt(k - 1) times
    what it moves the mean, so variance_weight is bounded by
    similarity_weight / sqrt(top_k - 1) (checked on EnginePolicy).
    """
    baseline: float = Field(default=20.0, ge=0, le=100)
    similarity_weight: float = Field(default=0.5, ge=0)
    consistency_bonus: float = Field(default=6.0, ge=0)
    variance_weight: float = Field(default=0.25, ge=0)


class ScopePolicy(BaseModel):
    """Signals that a ticket affects more than one person."""
    phrases: List[str] = Field(default_factory=lambda: list(DEFAULT_SCOPE_PHRASES))
    user_count_threshold: int = Field(default=10, ge=2)
    wide_impact_departments: List[str] = Field(default_factory=lambda: ["Security"])


class EnginePolicy(BaseModel):
    """
    Engine policy loaded from YAML.

    This is a value object: each decision reads one snapshot, reloads swap
    the whole object.
    """
    thresholds: DecisionThresholds = Field(default_factory=DecisionThresholds)
    classifier: ClassifierPolicy = Field(default_factory=ClassifierPolicy)
    similarity: SimilarityPolicy = Field(default_factory=SimilarityPolicy)
    rsi: RSIPolicy = Field(default_factory=RSIPolicy)
    scope: ScopePolicy = Field(default_factory=ScopePolicy)
    sla_resolution_minutes: Dict[str, int] = Field(
        default_factory=lambda: {"critical": 240, "high": 480, "medium": 1440, "low": 4320},
        description="Resolution target in minutes by priority"
    )
    category_profiles: List[CategoryProfile] = Field(
        default_factory=lambda: [CategoryProfile(**p) for p in DEFAULT_CATEGORY_PROFILES]
    )

    @field_validator("sla_resolution_minutes")
    @classmethod
    def validate_sla_targets(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Fill in missing priorities with a one-day target."""
        for priority in VALID_PRIORITIES:
            v.setdefault(priority, 1440)
        return v

    @model_validator(mode="after")
    def validate_profiles(self) -> "EnginePolicy":
        names = [p.name for p in self.category_profiles]
        if not names:
            raise ValueError("at least one category profile is required")
        if len(set(names)) != len(names):
            raise ValueError("category profile names must be unique")
        if OTHER_CATEGORY in names:
            raise ValueError(f"'{OTHER_CATEGORY}' is the fallback and cannot be a profile")
        return self

    @model_validator(mode="after")
    def validate_rsi_weights(self) -> "EnginePolicy":
        bound = self.rsi.similarity_weight / math.sqrt(max(self.similarity.top_k - 1, 1))
        if self.rsi.variance_weight > bound + 1e-9:
            raise ValueError(
                f"rsi.variance_weight must be at most {bound:.3f} for top_k={self.similarity.top_k}"
            )
        return self

    @property
    def category_names(self) -> List[str]:
        return [p.name for p in self.category_profiles]

    def get_sla_minutes(self, priority) -> int:
        """Resolution target for a priority given as enum or plain string."""
        key = getattr(priority, "value", priority)
        return self.sla_resolution_minutes.get(key, 1440)
