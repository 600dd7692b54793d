"""
Configuration Module
====================

Application settings and configuration management using Pydantic.

Decision thresholds and scoring coefficients live in the engine policy
(see ``src.triage.domain.value_objects.EnginePolicy``); this module only
holds process-level settings and the shared vocabulary of the domain.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DEPARTMENTS = [
    "Engineering", "Finance", "HR", "Marketing", "Operations",
    "Security", "Facilities", "Legal", "Product", "Sales",
]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="ticketflow-triage", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Storage ==========
    storage_backend: str = Field(
        default="database",
        description="Where tickets, decisions, audit log and corpus live: database or memory"
    )
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/triage",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Engine Policy ==========
    policy_config_path: Path = Field(
        default=Path("triage_policy.yaml"),
        description="Path to the engine policy YAML file (defaults apply if missing)"
    )
    policy_hot_reload: bool = Field(
        default=True,
        description="Reload the policy file when it changes on disk"
    )
    departments: List[str] = Field(
        default_factory=lambda: list(DEFAULT_DEPARTMENTS),
        description="Recognized departments for ticket intake"
    )

    # ========== Latency Budgets ==========
    classification_timeout_seconds: float = Field(
        default=2.0,
        description="Latency budget for classification before falling back to safe defaults",
        gt=0,
        le=30
    )
    similarity_timeout_seconds: float = Field(
        default=2.0,
        description="Latency budget for similarity search before falling back to safe defaults",
        gt=0,
        le=30
    )

    # ========== Audit ==========
    audit_write_retries: int = Field(
        default=3,
        description="Attempts made to durably append an audit entry",
        ge=1,
        le=10
    )
    audit_retry_backoff_seconds: float = Field(
        default=0.05,
        description="Linear backoff between audit append attempts",
        ge=0
    )
    engine_actor: str = Field(default="engine", description="Actor recorded for engine decisions")
    ticket_id_prefix: str = Field(default="TF", description="Prefix for engine-assigned ticket ids")

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "testing"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        """Ensure storage backend is supported."""
        allowed = {"database", "memory"}
        if v not in allowed:
            raise ValueError(f"storage_backend must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str, Enum):
    """Ticket priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    SUBMITTED = "submitted"
    CLASSIFIED = "classified"
    AUTO_RESOLVED = "auto_resolved"
    PENDING_REVIEW = "pending_review"
    ESCALATED = "escalated"
    APPROVED = "approved"
    MODIFIED = "modified"
    OVERRIDDEN = "overridden"


class SLARisk(str, Enum):
    """Risk that a ticket breaches its service-level deadline."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FinalAction(str, Enum):
    """Outcome of the decision policy."""
    AUTO_RESOLVE = "auto_resolve"
    ESCALATE = "escalate"


class HumanAction(str, Enum):
    """Actions a reviewer can take on a ticket awaiting review."""
    APPROVE = "approve"
    MODIFY = "modify"
    OVERRIDE = "override"


class AuditAction(str, Enum):
    """Actions recorded in the audit log."""
    AUTO_RESOLVED = "AUTO_RESOLVED"
    PENDING_REVIEW = "PENDING_REVIEW"
    ESCALATED = "ESCALATED"
    APPROVED = "APPROVED"
    MODIFIED = "MODIFIED"
    OVERRIDDEN = "OVERRIDDEN"


OTHER_CATEGORY = "Other"

# Column sizes shared by the ORM models and intake validation
ID_MAX_LENGTH = 64
TITLE_MAX_LENGTH = 500


# ========== Lists for validation ==========

VALID_PRIORITIES = [p.value for p in Priority]
REVIEW_STATUSES = (TicketStatus.PENDING_REVIEW, TicketStatus.ESCALATED)
DECISION_AUDIT_ACTIONS = (
    AuditAction.AUTO_RESOLVED, AuditAction.PENDING_REVIEW, AuditAction.ESCALATED
)
