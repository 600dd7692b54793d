"""
Triage Controllers (API Routes)
================================

FastAPI routes for the triage decision engine.

Controllers delegate to the TriageEngine held on ``app.state``. Engine
errors propagate as ApplicationException subclasses and are rendered by the
shared exception handler.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from src.core import ServiceUnavailableException
from src.shared.infrastructure.logging import get_logger
from src.triage.application import (
    AnalyticsSummaryResponse,
    AnalyzeResponse,
    AuditLogEntryInfo,
    AuditLogResponse,
    CorpusEntryRequest,
    CorpusEntryResponse,
    DecisionResponse,
    HumanActionRequest,
    TicketListResponse,
    TicketStatusResponse,
    TicketSubmitRequest,
    TicketSummaryInfo,
    TriageEngine,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/triage", tags=["Ticket Triage"])


# ========== Example payloads for Swagger ==========

SUBMIT_REQUEST_EXAMPLE = {
    "id": "TF-1001",
    "title": "Cannot reset my Active Directory password",
    "description": "I am unable to reset my AD password through the self-service portal. "
                   "The reset link is not arriving in my email.",
    "department": "Engineering",
    "priority": "medium",
    "businessCritical": False,
    "submittedBy": "john.smith@company.com"
}

DECISION_RESPONSE_EXAMPLE = {
    "ticketId": "TF-1001",
    "category": "Password Reset",
    "confidence": 94,
    "similarityScore": 78,
    "slaRisk": "low",
    "rsiScore": 87,
    "finalAction": "auto_resolve",
    "businessCritical": False,
    "decisionPath": [
        "Ticket classified: Password Reset (conf: 94%)",
        "Similarity search: 3 matches found (avg: 78%)",
        "SLA risk assessed: LOW",
        "Business critical: NO",
        "RSI score: 87 (stable pattern)",
        "Auto-resolve criteria met: confidence 94% >= 80%, SLA risk low, similarity 78% >= 65%",
        "Decision: AUTO RESOLVE"
    ],
    "producedAt": "2026-01-15T09:30:00Z",
    "matchedKeywords": ["active directory", "password", "reset"],
    "similarTickets": [],
    "suggestedResolution": "Reset password via AD admin console and sent temporary credentials"
}


# ========== Dependencies ==========

def get_engine(request: Request) -> TriageEngine:
    """Get the triage engine from app state."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise ServiceUnavailableException("Triage engine not initialized")
    return engine


# ========== Route Handlers ==========

@router.post(
    "/tickets",
    response_model=DecisionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a ticket for a triage decision",
    description="""
    Classify the ticket, search similar resolved tickets, assess SLA risk and
    stability, and decide between auto-resolve and escalation.

    Submitting the same ticket id again returns the original decision.

    **Errors**:
    - `ValidationError` (422): empty title or description, unknown department
    - `ServiceUnavailable` (503): the decision could not be audited; resubmit
    """,
    responses={
        201: {
            "description": "Decision produced",
            "content": {"application/json": {"example": DECISION_RESPONSE_EXAMPLE}}
        },
        422: {"description": "Invalid submission"},
        503: {"description": "Audit log unavailable"}
    },
    openapi_extra={"requestBody": {"content": {"application/json": {"example": SUBMIT_REQUEST_EXAMPLE}}}}
)
async def submit_ticket(
    request: Request,
    payload: TicketSubmitRequest,
    engine: TriageEngine = Depends(get_engine)
):
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    logger.info(
        "Submitting ticket",
        extra={"correlation_id": correlation_id, "has_ticket_id": payload.id is not None}
    )

    record = await engine.submit(
        title=payload.title,
        description=payload.description,
        department=payload.department,
        priority=payload.priority,
        business_critical=payload.business_critical,
        ticket_id=payload.id,
        submitted_by=payload.submitted_by,
        submitted_at=payload.submitted_at,
    )
    return DecisionResponse.from_domain(record)


@router.get(
    "/tickets",
    response_model=TicketListResponse,
    summary="List tickets",
    description="""
    Stored tickets with their decisions, most recently submitted first.

    - `status`: repeat to match several, e.g. `?status=pending_review&status=escalated`
      for the review queue
    - `category`: exact category name
    - `q`: case-insensitive text in the id, title or department
    """,
    responses={422: {"description": "Unknown status"}}
)
async def list_tickets(
    ticket_status: Optional[List[str]] = Query(None, alias="status", description="Filter by ticket status; repeatable"),
    category: Optional[str] = Query(None, description="Filter by category"),
    q: Optional[str] = Query(None, description="Text in the ticket id, title or department"),
    limit: Optional[int] = Query(None, ge=1, le=500, description="Maximum number of tickets"),
    engine: TriageEngine = Depends(get_engine)
):
    listings = await engine.list_tickets(status=ticket_status, category=category, query=q, limit=limit)
    return TicketListResponse(
        tickets=[TicketSummaryInfo.from_domain(item.ticket, item.decision) for item in listings],
        count=len(listings),
    )


@router.get(
    "/tickets/{ticket_id}/decision",
    response_model=DecisionResponse,
    summary="Get the decision for a ticket",
    responses={404: {"description": "No decision for this ticket"}}
)
async def get_decision(ticket_id: str, engine: TriageEngine = Depends(get_engine)):
    record = await engine.get_decision(ticket_id)
    return DecisionResponse.from_domain(record)


@router.post(
    "/tickets/{ticket_id}/actions",
    response_model=TicketStatusResponse,
    summary="Record a reviewer action",
    description="""
    Approve, modify or override the engine's decision for a ticket that is
    pending review or escalated.

    **Errors**:
    - `NotFound` (404): unknown ticket
    - `InvalidTransition` (409): ticket is not awaiting review
    """,
    responses={
        404: {"description": "Ticket not found"},
        409: {"description": "Ticket is not awaiting review"}
    }
)
async def record_human_action(
    request: Request,
    ticket_id: str,
    payload: HumanActionRequest,
    engine: TriageEngine = Depends(get_engine)
):
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    logger.info(
        "Recording human action",
        extra={"correlation_id": correlation_id, "ticket_id": ticket_id, "action": payload.action}
    )

    ticket = await engine.record_human_action(
        ticket_id, payload.action, payload.actor, payload.details
    )
    return TicketStatusResponse.from_domain(ticket)


@router.get(
    "/tickets/{ticket_id}/audit",
    response_model=AuditLogResponse,
    summary="Get the audit trail for a ticket",
    responses={404: {"description": "Ticket not found"}}
)
async def get_audit_log(ticket_id: str, engine: TriageEngine = Depends(get_engine)):
    entries = await engine.audit_log(ticket_id)
    return AuditLogResponse(
        ticket_id=ticket_id,
        entries=[AuditLogEntryInfo.from_domain(e) for e in entries]
    )


@router.get(
    "/analytics/summary",
    response_model=AnalyticsSummaryResponse,
    summary="Aggregate decision analytics"
)
async def get_analytics_summary(engine: TriageEngine = Depends(get_engine)):
    summary = await engine.analytics_summary()
    return AnalyticsSummaryResponse.from_domain(summary)


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    summary="Preview a decision without recording it",
    description="Runs the full analysis and returns the predicted decision. Nothing is stored or audited."
)
async def analyze_ticket(payload: TicketSubmitRequest, engine: TriageEngine = Depends(get_engine)):
    analysis = await engine.preview(
        title=payload.title,
        description=payload.description,
        department=payload.department,
        priority=payload.priority,
        business_critical=payload.business_critical,
    )
    return AnalyzeResponse.from_preview(analysis.decision, analysis.risk)


@router.post(
    "/corpus",
    response_model=CorpusEntryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a resolved ticket to the corpus"
)
async def add_corpus_entry(payload: CorpusEntryRequest, engine: TriageEngine = Depends(get_engine)):
    entry = await engine.add_corpus_entry(
        title=payload.title,
        description=payload.description,
        category=payload.category,
        resolution=payload.resolution,
        department=payload.department,
        priority=payload.priority,
        resolved_at=payload.resolved_at,
    )
    return CorpusEntryResponse.from_domain(entry, await engine.corpus_size())


triage_router = router
