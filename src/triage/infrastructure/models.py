"""
Triage Infrastructure Models
=============================

SQLAlchemy ORM models for the triage module.

Audit and corpus rows are only ever inserted; repositories never issue
UPDATE or DELETE against them.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.config import ID_MAX_LENGTH, TITLE_MAX_LENGTH
from src.infrastructure.database import Base


class TicketModel(Base):
    """
    Database model for the Ticket entity.

    The id is the caller-supplied or engine-assigned business identifier.
    """
    __tablename__ = "triage_tickets"

    id: Mapped[str] = mapped_column(String(ID_MAX_LENGTH), primary_key=True)

    # Ticket content
    title: Mapped[str] = mapped_column(String(TITLE_MAX_LENGTH), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    department: Mapped[str] = mapped_column(String(100), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    business_critical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    submitted_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Engine state
    status: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class DecisionModel(Base):
    """
    Database model for the DecisionRecord.

    One row per ticket; ``record`` holds the full serialized decision.
    """
    __tablename__ = "triage_decisions"

    ticket_id: Mapped[str] = mapped_column(
        String(ID_MAX_LENGTH),
        ForeignKey("triage_tickets.id", ondelete="CASCADE"),
        primary_key=True
    )

    # Indexed copies for analytics queries
    final_action: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)

    record: Mapped[dict] = mapped_column(JSON, nullable=False)
    produced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AuditLogModel(Base):
    """Database model for AuditLogEntry. Insert-only."""
    __tablename__ = "triage_audit_log"
    __table_args__ = (
        Index("ix_triage_audit_log_ticket_order", "ticket_id", "timestamp", "sequence"),
    )

    id: Mapped[str] = mapped_column(String(ID_MAX_LENGTH), primary_key=True)
    ticket_id: Mapped[str] = mapped_column(String(ID_MAX_LENGTH), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    details: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


class CorpusEntryModel(Base):
    """Database model for CorpusEntry. Insert-only."""
    __tablename__ = "triage_corpus"

    id: Mapped[str] = mapped_column(String(ID_MAX_LENGTH), primary_key=True)
    title: Mapped[str] = mapped_column(String(TITLE_MAX_LENGTH), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resolution: Mapped[str] = mapped_column(Text, nullable=False)
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    source_ticket_id: Mapped[Optional[str]] = mapped_column(String(ID_MAX_LENGTH), nullable=True)
    resolved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
